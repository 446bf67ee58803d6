"""
Farms Package

CRUD endpoints for the ``list_farms`` table under ``/api/farms``.
"""

from .routes import farms_router

__all__ = ["farms_router"]

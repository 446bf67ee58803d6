"""
Azure PostgreSQL management package.

Modules:
- management: Azure Resource Manager client for server start/stop
- routes: admin-only /api/azure-postgres endpoints
"""

from .routes import azure_postgres_router

__all__ = ["azure_postgres_router"]

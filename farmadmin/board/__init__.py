"""
Board Package

Notice board endpoints under ``/api/board``: read for every signed-in user,
write for admins.
"""

from .routes import board_router

__all__ = ["board_router"]

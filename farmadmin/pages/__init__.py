"""
Pages Package

Session-gated HTML pages (home, board list, board detail).
"""

from .routes import STATIC_DIR, pages_router

__all__ = ["STATIC_DIR", "pages_router"]

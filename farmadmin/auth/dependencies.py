"""
FastAPI dependencies for the access gate and shared components.

Usage in routes:
    router = APIRouter(dependencies=[Depends(ensure_authenticated)])

    @router.post("/", dependencies=[Depends(ensure_admin)])
    async def create(...): ...

Rejections are raised as ``Unauthorized`` / ``Forbidden``; the handlers in
``farmadmin.main`` turn them into ``401 {"error": "AUTH_REQUIRED"}`` for API
paths, a redirect to ``/login`` for pages and ``403 {"error": "Forbidden"}``.
"""

import logging
from typing import TYPE_CHECKING, Optional

from fastapi import Depends, Request

from farmadmin.auth.oidc import EntraClient
from farmadmin.auth.utils import is_admin
from farmadmin.config import Settings
from farmadmin.errors import ConfigurationError, Forbidden, Unauthorized
from farmadmin.models import SessionUser

if TYPE_CHECKING:
    from farmadmin.db.pool import TokenRefreshingPool

logger = logging.getLogger(__name__)


# =============================================================================
# Component Accessors
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_oidc_client(request: Request) -> EntraClient:
    return request.app.state.oidc_client


def get_db_pool(request: Request) -> "TokenRefreshingPool":
    pool = request.app.state.db_pool
    if pool is None:
        raise ConfigurationError("Database is not configured")
    return pool


# =============================================================================
# Session Identity
# =============================================================================

def get_session_user(request: Request) -> Optional[SessionUser]:
    """Return the signed-in principal, or None for anonymous requests."""
    user = request.session.get("user")
    if not user:
        return None
    return SessionUser.model_validate(user)


def user_is_admin(user: Optional[SessionUser], settings: Settings) -> bool:
    if user is None:
        return False
    return is_admin(user.preferred_username, settings.admin_upns)


# =============================================================================
# Gates
# =============================================================================

async def ensure_authenticated(request: Request) -> SessionUser:
    """Proceed only when the request carries an authenticated session."""
    user = get_session_user(request)
    if user is None:
        raise Unauthorized("AUTH_REQUIRED")
    return user


async def ensure_admin(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> SessionUser:
    """Require a session whose username is on the admin allow-list."""
    user = get_session_user(request)
    if user is None:
        raise Unauthorized("Unauthorized")

    if not user_is_admin(user, settings):
        logger.warning(
            "Admin access denied",
            extra={"path": request.url.path, "user": user.preferred_username},
        )
        raise Forbidden()

    return user

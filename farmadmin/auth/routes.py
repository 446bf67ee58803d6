"""
Authentication routes for Entra ID sign-in, sign-out and account switching.

This module implements the OAuth 2.0 / OIDC authorization code flow with
PKCE. The pending ``state`` and ``code_verifier`` are kept in the server-side
session between ``/auth/login`` and ``/auth/redirect`` and are consumed by
the first callback that presents them.
"""

import base64
import hashlib
import html
import json
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from farmadmin.auth.dependencies import (
    ensure_authenticated,
    get_app_settings,
    get_oidc_client,
    get_session_user,
    user_is_admin,
)
from farmadmin.auth.oidc import EntraClient
from farmadmin.auth.session import destroy_session, rotate_session
from farmadmin.auth.utils import validate_state
from farmadmin.config import Settings
from farmadmin.errors import AuthProviderError, AuthValidationError
from farmadmin.models import SessionUser

logger = logging.getLogger(__name__)

PENDING_LOGIN_KEY = "entra"


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(prefix="/auth", tags=["authentication"])

# /login, /logout, /switch-account and the sample protected page
account_router = APIRouter(tags=["authentication"])

# /api/me must answer for anonymous callers, so it sits outside the gated API routers
me_router = APIRouter(prefix="/api", tags=["authentication"])


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_state() -> str:
    """128-bit random hex string for CSRF correlation."""
    return secrets.token_hex(16)


def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded 32 random bytes without padding (43 characters)
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode("utf-8").rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Returns:
        Base64-URL-encoded SHA256 hash of verifier, without padding
    """
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


# =============================================================================
# Login / Callback
# =============================================================================

@auth_router.get("/login")
async def login(
    request: Request,
    prompt: Optional[str] = Query(None, description="Forwarded to Entra, e.g. select_account"),
    oidc: EntraClient = Depends(get_oidc_client),
):
    """
    Start the sign-in flow.

    Stores ``{state, verifier}`` in the session and redirects the browser to
    the Entra authorization endpoint with the S256 code challenge.
    """
    try:
        state = generate_state()
        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)

        request.session[PENDING_LOGIN_KEY] = {"state": state, "verifier": code_verifier}

        authorization_url = oidc.build_authorization_url(
            state=state,
            code_challenge=code_challenge,
            prompt=prompt,
        )
    except Exception:
        logger.exception("Login start failed")
        return PlainTextResponse("Login start failed", status_code=500)

    return RedirectResponse(url=authorization_url, status_code=status.HTTP_302_FOUND)


@auth_router.get("/redirect")
async def redirect(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Entra"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if sign-in failed"),
    oidc: EntraClient = Depends(get_oidc_client),
):
    """
    Handle the Entra callback.

    1. Requires ``code`` and ``state``
    2. Requires ``state`` to match the pending login in this session
    3. Deletes the pending login (single use, whatever the outcome)
    4. Exchanges the code with the stored verifier and verifies the ID token
    5. Writes the session user under a fresh session id and redirects home
    """
    if error:
        request.session.pop(PENDING_LOGIN_KEY, None)
        logger.warning("Entra returned an error on callback", extra={"error_code": error})
        return PlainTextResponse("Auth redirect failed", status_code=500)

    if not code or not state:
        raise AuthValidationError("Missing code/state")

    pending = request.session.get(PENDING_LOGIN_KEY) or {}
    if not validate_state(state, pending.get("state")):
        raise AuthValidationError("Invalid state")

    request.session.pop(PENDING_LOGIN_KEY, None)

    try:
        claims = await oidc.exchange_code(code=code, code_verifier=pending.get("verifier", ""))
    except AuthProviderError as e:
        logger.error(f"Auth redirect failed: {e.message}")
        return PlainTextResponse("Auth redirect failed", status_code=500)
    except Exception:
        logger.exception("Unexpected error in auth redirect")
        return PlainTextResponse("Auth redirect failed", status_code=500)

    user = SessionUser.from_claims(claims)
    request.session["user"] = user.model_dump()
    rotate_session(request)

    logger.info("User signed in", extra={"user": user.preferred_username, "tid": user.tid})

    return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)


# =============================================================================
# Logout / Account Switching
# =============================================================================

@account_router.get("/logout")
async def logout(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    oidc: EntraClient = Depends(get_oidc_client),
):
    """Destroy the session, then sign out of Entra."""
    await destroy_session(request)
    return RedirectResponse(
        url=oidc.build_logout_url(settings.post_logout_redirect),
        status_code=status.HTTP_302_FOUND,
    )


@account_router.get("/switch-account")
async def switch_account_page(request: Request):
    """Clear the session and restart sign-in with Entra's account chooser."""
    user = get_session_user(request)
    logger.info(
        "Switch account requested",
        extra={"user": user.preferred_username if user else None},
    )
    try:
        await destroy_session(request)
    except Exception:
        logger.exception("Session destroy failed during switch-account")
        return RedirectResponse(url="/auth/login", status_code=status.HTTP_302_FOUND)

    return RedirectResponse(
        url="/auth/login?prompt=select_account",
        status_code=status.HTTP_302_FOUND,
    )


@me_router.post("/switch-account")
async def switch_account_api(
    request: Request,
    user: SessionUser = Depends(ensure_authenticated),
):
    """API form of switch-account; the page follows the returned redirect."""
    logger.info("Switch account requested", extra={"user": user.preferred_username})
    try:
        await destroy_session(request)
    except Exception:
        logger.exception("Session destroy failed during switch-account")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to destroy session"},
        )
    return {"redirect": "/auth/login"}


# =============================================================================
# Identity Check
# =============================================================================

@me_router.get("/me")
async def me(request: Request, settings: Settings = Depends(get_app_settings)):
    """Let pages discover their own auth state."""
    user = get_session_user(request)
    if user is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"authenticated": False, "isAdmin": False},
        )

    return {
        "authenticated": True,
        "user": user.model_dump(),
        "isAdmin": user_is_admin(user, settings),
    }


# =============================================================================
# HTML Pages
# =============================================================================

@account_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, settings: Settings = Depends(get_app_settings)):
    user = get_session_user(request)
    return _render_login_page(user, settings.ENTRA_REDIRECT_URI)


@account_router.get("/protected", response_class=HTMLResponse)
async def protected_page(user: SessionUser = Depends(ensure_authenticated)):
    profile = html.escape(json.dumps(user.model_dump(), indent=2, ensure_ascii=False))
    return HTMLResponse(
        content=f"""
    <h2>Protected page</h2>
    <pre>{profile}</pre>
    <p><a href="/">Home</a> | <a href="/logout">Sign out</a></p>
    """
    )


def _render_login_page(user: Optional[SessionUser], redirect_uri: str) -> HTMLResponse:
    """
    Render the sign-in page.

    Anonymous visitors get the Microsoft sign-in button; signed-in users see
    who they are with links onward. Every dynamic value is HTML-escaped.
    """
    if user:
        profile = html.escape(json.dumps(user.model_dump(), indent=2, ensure_ascii=False))
        body = f"""
        <p>Signed in as <b>{html.escape(user.display_name)}</b></p>
        <p>
            <a class="btn" href="/protected">Protected page</a>
            <a class="btn" href="/switch-account">Use another account</a>
            <a class="btn" href="/logout">Sign out</a>
        </p>
        <pre>{profile}</pre>
        """
    else:
        body = '<p><a class="btn primary" href="/auth/login">Sign in with Microsoft</a></p>'

    html_content = f"""
    <!DOCTYPE html>
    <html lang="ko">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>Sign in</title>
        <style>
            body {{
                font-family: system-ui, 'Segoe UI', 'Apple SD Gothic Neo', 'Malgun Gothic', sans-serif;
                max-width: 720px;
                margin: 40px auto;
                padding: 0 16px;
            }}
            .card {{ border: 1px solid #ddd; border-radius: 14px; padding: 20px; }}
            .btn {{
                display: inline-block;
                padding: 10px 14px;
                border-radius: 10px;
                border: 1px solid #333;
                text-decoration: none;
                color: #111;
            }}
            .btn.primary {{ background: #111; color: #fff; }}
            pre {{ background: #f6f6f6; padding: 12px; border-radius: 10px; overflow: auto; }}
        </style>
    </head>
    <body>
        <div class="card">
            <h1>Farm Management Admin</h1>
            {body}
            <p style="color:#666">Redirect URI: {html.escape(redirect_uri)}</p>
        </div>
    </body>
    </html>
    """

    return HTMLResponse(content=html_content, status_code=200)

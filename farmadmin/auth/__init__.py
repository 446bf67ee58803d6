"""
Authentication Package

This package handles sign-in and authorization for the admin service using
Microsoft Entra ID and OpenID Connect (OIDC).

Key responsibilities:
- Authorization-code + PKCE login flow and callback handling
- ID token validation using the tenant JWKS
- Server-side sessions behind an HTTP-only cookie
- Access gates for signed-in users and allow-listed admins

Modules:
- routes: /auth/login, /auth/redirect, /login, /logout, /switch-account, /api/me
- oidc: Entra authorization, token and end-session endpoints
- session: session store and cookie middleware
- dependencies: ensure_authenticated / ensure_admin gates
- utils: JWKS caching, ID token verification, allow-list checks

The authentication flow:
1. Browser hits /auth/login; state and PKCE verifier go into the session
2. User authenticates with Entra ID
3. Entra redirects to /auth/redirect with code and state
4. State is checked, the code exchanged, and the user written to the session
5. Subsequent requests are identified by the session cookie alone
"""

from .routes import account_router, auth_router, me_router

__all__ = [
    "account_router",
    "auth_router",
    "me_router",
]

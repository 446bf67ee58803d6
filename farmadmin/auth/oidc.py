"""
Entra ID OpenID Connect client.

Builds authorization and end-session URLs and performs the
authorization-code + PKCE exchange against the tenant's v2.0 endpoints.
One instance is created per application and shares a single
``httpx.AsyncClient``.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from farmadmin.auth.utils import JwksCache, verify_id_token
from farmadmin.config import Settings
from farmadmin.errors import AuthProviderError

logger = logging.getLogger(__name__)

OIDC_SCOPES = ("openid", "profile", "email")


class EntraClient:
    """Confidential-client OIDC flow against one Entra tenant."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.authority = settings.entra_authority
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS)
        )
        self.jwks = JwksCache(f"{self.authority}/discovery/v2.0/keys", self._http)

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/logout"

    def build_authorization_url(
        self,
        state: str,
        code_challenge: str,
        prompt: Optional[str] = None,
    ) -> str:
        params = {
            "client_id": self.settings.ENTRA_CLIENT_ID,
            "response_type": "code",
            "redirect_uri": self.settings.ENTRA_REDIRECT_URI,
            "response_mode": "query",
            "scope": " ".join(OIDC_SCOPES),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if prompt:
            params["prompt"] = prompt
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def build_logout_url(self, post_logout_redirect_uri: str) -> str:
        return (
            f"{self.logout_endpoint}"
            f"?post_logout_redirect_uri={quote(post_logout_redirect_uri, safe='')}"
        )

    async def exchange_code(self, code: str, code_verifier: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens and return verified ID
        token claims.

        Raises:
            AuthProviderError: On any transport, provider or verification
                failure. The message is for server logs only.
        """
        payload = {
            "client_id": self.settings.ENTRA_CLIENT_ID,
            "client_secret": self.settings.ENTRA_CLIENT_SECRET,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.ENTRA_REDIRECT_URI,
            "scope": " ".join(OIDC_SCOPES),
            "code_verifier": code_verifier,
        }

        try:
            response = await self._http.post(
                self.token_endpoint,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise AuthProviderError(f"Token endpoint unreachable: {e}") from e

        if not response.is_success:
            error_data: Dict[str, Any] = {}
            if response.headers.get("content-type", "").startswith("application/json"):
                error_data = response.json()
            error_msg = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"HTTP {response.status_code}"
            )
            raise AuthProviderError(f"Token exchange failed: {error_msg}")

        id_token = response.json().get("id_token")
        if not id_token:
            raise AuthProviderError("Token response missing id_token")

        try:
            return await verify_id_token(
                id_token,
                self.jwks,
                client_id=self.settings.ENTRA_CLIENT_ID,
                tenant_id=self.settings.ENTRA_TENANT_ID,
            )
        except Exception as e:
            raise AuthProviderError(f"ID token verification failed: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

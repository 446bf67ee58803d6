"""
Azure Resource Manager client for the PostgreSQL flexible server.

Starts and stops the server with an app-only (client credentials) token for
``https://management.azure.com/.default``. Upstream failures are raised as
``DownstreamError`` carrying the upstream status and body so admin tooling
can show them verbatim.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from azure.core.exceptions import AzureError
from azure.identity.aio import ClientSecretCredential

from farmadmin.config import Settings
from farmadmin.errors import ConfigurationError, DownstreamError
from farmadmin.models import ServerTarget

logger = logging.getLogger(__name__)

MANAGEMENT_SCOPE = "https://management.azure.com/.default"
MANAGEMENT_ENDPOINT = "https://management.azure.com"

MISSING_TARGET_MESSAGE = (
    "Missing target: set AZURE_RESOURCE_GROUP and AZURE_PG_SERVER_NAME in .env "
    "or include resourceGroup/serverName in request body"
)


class AzurePostgresManagement:
    """Start/stop calls against one subscription's flexible servers."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        credential: Optional[ClientSecretCredential] = None,
    ):
        self.settings = settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS),
            follow_redirects=False,
        )
        self._credential = credential

    # =========================================================================
    # Target Resolution
    # =========================================================================

    def defaults(self) -> ServerTarget:
        return ServerTarget(
            resourceGroup=self.settings.AZURE_RESOURCE_GROUP or None,
            serverName=self.settings.AZURE_PG_SERVER_NAME or None,
            subscriptionId=self.settings.AZURE_SUBSCRIPTION_ID or None,
        )

    def resolve_target(self, override: Optional[ServerTarget] = None) -> ServerTarget:
        """Fill each field from the request when given, else from configuration."""
        override = override or ServerTarget()
        configured = self.defaults()
        return ServerTarget(
            resourceGroup=override.resourceGroup or configured.resourceGroup,
            serverName=override.serverName or configured.serverName,
            subscriptionId=override.subscriptionId or configured.subscriptionId,
        )

    def server_action_url(self, target: ServerTarget, action: str) -> str:
        return (
            f"{MANAGEMENT_ENDPOINT}/subscriptions/{quote(target.subscriptionId, safe='')}"
            f"/resourceGroups/{quote(target.resourceGroup, safe='')}"
            f"/providers/Microsoft.DBforPostgreSQL/flexibleServers/{quote(target.serverName, safe='')}"
            f"/{action}?api-version={self.settings.AZURE_MGMT_API_VERSION}"
        )

    # =========================================================================
    # Token
    # =========================================================================

    def _get_credential(self) -> ClientSecretCredential:
        if self._credential is None:
            tenant = self.settings.AZURE_TENANT_ID
            client_id = self.settings.AZURE_CLIENT_ID
            client_secret = self.settings.AZURE_CLIENT_SECRET
            if not tenant or not client_id or not client_secret:
                raise ConfigurationError(
                    "Missing Azure AD credentials "
                    "(AZURE_TENANT_ID/AZURE_CLIENT_ID/AZURE_CLIENT_SECRET)"
                )
            self._credential = ClientSecretCredential(tenant, client_id, client_secret)
        return self._credential

    async def _get_token(self) -> str:
        credential = self._get_credential()
        try:
            access_token = await credential.get_token(MANAGEMENT_SCOPE)
        except AzureError as e:
            logger.error(f"Management token request failed: {e}")
            raise DownstreamError(f"Failed to acquire management token: {e}") from e
        return access_token.token

    # =========================================================================
    # Server Actions
    # =========================================================================

    async def start(self, override: Optional[ServerTarget] = None) -> Any:
        return await self._server_action("start", override)

    async def stop(self, override: Optional[ServerTarget] = None) -> Any:
        return await self._server_action("stop", override)

    async def _server_action(self, action: str, override: Optional[ServerTarget]) -> Any:
        """
        POST ``{action}`` for the resolved server and return the response body.

        Raises:
            ConfigurationError: Target or credentials are not configured
            DownstreamError: Token or management call failed; carries the
                upstream status code and body
        """
        target = self.resolve_target(override)
        if not target.resourceGroup or not target.serverName:
            raise ConfigurationError(MISSING_TARGET_MESSAGE, status_code=400)
        if not target.subscriptionId:
            raise ConfigurationError(
                "Missing subscription id (pass in body or set AZURE_SUBSCRIPTION_ID)"
            )

        logger.info(
            f"Database server {action} requested",
            extra={"resource_group": target.resourceGroup, "server": target.serverName},
        )

        token = await self._get_token()
        url = self.server_action_url(target, action)

        # ARM rejects form bodies; send an explicit empty JSON object
        try:
            response = await self._http.post(
                url,
                json={},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Management API unreachable: {e}")
            raise DownstreamError(f"Management API unreachable: {e}") from e

        details = _response_body(response)
        if response.is_error:
            logger.error(
                f"Database server {action} failed",
                extra={"status_code": response.status_code},
            )
            raise DownstreamError(
                f"Management API returned {response.status_code}",
                status_code=response.status_code,
                details=details,
            )

        return details

    async def aclose(self) -> None:
        if self._credential is not None:
            await self._credential.close()
        if self._owns_client:
            await self._http.aclose()


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text

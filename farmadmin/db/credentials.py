"""
Delegated credentials for Azure Database for PostgreSQL.

The database accepts a short-lived Entra access token as the password. The
token source is chosen once at startup:

- MANAGED_IDENTITY when running on an Azure host (App Service, Functions,
  Container Apps), detected through the platform's identity variables
- AZURE_CLI otherwise, i.e. a developer machine signed in with ``az login``

``PG_CREDENTIAL_MODE`` overrides the detection.
"""

import enum
import logging
import os
from typing import Mapping, Optional

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import CredentialUnavailableError
from azure.identity.aio import AzureCliCredential, ManagedIdentityCredential

from farmadmin.errors import CredentialUnavailable

logger = logging.getLogger(__name__)

PG_SCOPE = "https://ossrdbms-aad.database.windows.net/.default"

MANAGED_IDENTITY_MARKERS = ("WEBSITE_INSTANCE_ID", "MSI_ENDPOINT", "IDENTITY_ENDPOINT")


class CredentialMode(str, enum.Enum):
    MANAGED_IDENTITY = "managed_identity"
    AZURE_CLI = "azure_cli"


def resolve_credential_mode(
    environ: Optional[Mapping[str, str]] = None,
    override: Optional[str] = None,
) -> CredentialMode:
    """
    Decide which credential source to use.

    Args:
        environ: Environment to inspect (defaults to ``os.environ``)
        override: Explicit mode from configuration; wins when set

    Returns:
        MANAGED_IDENTITY if any Azure host identity marker is present,
        AZURE_CLI otherwise.
    """
    if override:
        return CredentialMode(override)

    env = os.environ if environ is None else environ
    if any(env.get(marker) for marker in MANAGED_IDENTITY_MARKERS):
        return CredentialMode.MANAGED_IDENTITY
    return CredentialMode.AZURE_CLI


class CredentialProvider:
    """Fetches access tokens from the credential selected at startup."""

    def __init__(self, mode: CredentialMode, credential=None):
        self.mode = mode
        self._credential = credential or self._build_credential(mode)

    @staticmethod
    def _build_credential(mode: CredentialMode):
        if mode is CredentialMode.MANAGED_IDENTITY:
            return ManagedIdentityCredential()
        return AzureCliCredential()

    async def fetch(self, scope: str = PG_SCOPE) -> AccessToken:
        """
        Get an access token for ``scope``.

        Raises:
            CredentialUnavailable: The selected source cannot issue a token
                (no managed identity on this host, CLI not signed in, ...)
        """
        try:
            return await self._credential.get_token(scope)
        except (CredentialUnavailableError, ClientAuthenticationError) as e:
            logger.error(
                "Database credential unavailable",
                extra={"mode": self.mode.value, "error": str(e)},
            )
            raise CredentialUnavailable(
                f"{self.mode.value} credential could not issue a token: {e}"
            ) from e

    async def close(self) -> None:
        await self._credential.close()

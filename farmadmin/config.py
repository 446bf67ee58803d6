"""
Configuration module for the Farm Admin service.

This module uses Pydantic Settings to load and validate environment variables
for Entra ID sign-in, server-side sessions, the admin allow-list, the
PostgreSQL connection pool and the Azure management API.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import FrozenSet, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from farmadmin.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Entra ID (OIDC) sign-in and the session secret are required; database and
    management values are validated where they are used so the login flow can
    run against a partially provisioned environment.
    """

    # =========================================================================
    # Entra ID Configuration (OIDC Sign-in)
    # =========================================================================

    ENTRA_TENANT_ID: str = Field(
        ...,
        description="Entra tenant ID (GUID or verified domain)",
        min_length=1,
    )

    ENTRA_CLIENT_ID: str = Field(
        ...,
        description="Application (client) ID registered for the admin web app",
        min_length=1,
    )

    ENTRA_CLIENT_SECRET: str = Field(
        ...,
        description="Client secret for the confidential web app",
        min_length=1,
    )

    ENTRA_REDIRECT_URI: str = Field(
        ...,
        description="Redirect URI registered in Entra (e.g., https://farm.example.com/auth/redirect)",
        min_length=1,
    )

    POST_LOGOUT_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Where Entra sends the browser after sign-out (defaults to '/')",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret used to sign session ids in the session cookie",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="farmadmin.sid",
        description="Name of the HTTP-only session cookie",
    )

    SESSION_TTL_SECONDS: int = Field(
        default=8 * 3600,
        description="Idle lifetime of a server-side session",
        ge=60,
        le=7 * 24 * 3600,
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Mark the session cookie Secure (enable behind HTTPS)",
    )

    # =========================================================================
    # Authorization
    # =========================================================================

    ADMIN_UPNS: str = Field(
        default="",
        description="Comma-separated usernames (UPNs) granted the admin role",
    )

    FARM_WRITES_REQUIRE_ADMIN: bool = Field(
        default=False,
        description="Require the admin role for farm create/update/delete",
    )

    # =========================================================================
    # PostgreSQL (Entra token authentication)
    # =========================================================================

    PGHOST: Optional[str] = Field(None, description="PostgreSQL flexible server host name")
    PGUSER: Optional[str] = Field(
        None,
        description="Database role bound to the Entra principal (user UPN or managed identity name)",
    )
    PGPORT: int = Field(default=5432, ge=1, le=65535)
    PGDATABASE: str = Field(default="postgres")
    PGPOOL_MAX: int = Field(default=5, ge=1, le=100)
    PG_CONN_TIMEOUT_MS: int = Field(default=20_000, ge=100)

    PG_DEBUG_TOKEN: bool = Field(
        default=False,
        description="Log identity claims (never the token) of each new database credential",
    )

    PG_VALIDATE_ON_CREATE: bool = Field(
        default=False,
        description="Run SELECT 1 whenever a new pool is created",
    )

    PG_CREDENTIAL_MODE: Optional[str] = Field(
        None,
        description="Force 'managed_identity' or 'azure_cli' instead of detecting the host",
    )

    PG_AUTO_START: bool = Field(
        default=False,
        description="Ask Azure to start the database server once when the app starts",
    )

    # =========================================================================
    # Azure Management API (server start/stop)
    # =========================================================================

    AZURE_TENANT_ID: Optional[str] = Field(None)
    AZURE_CLIENT_ID: Optional[str] = Field(None)
    AZURE_CLIENT_SECRET: Optional[str] = Field(None)
    AZURE_SUBSCRIPTION_ID: Optional[str] = Field(None)
    AZURE_RESOURCE_GROUP: Optional[str] = Field(None)
    AZURE_PG_SERVER_NAME: Optional[str] = Field(None)
    AZURE_MGMT_API_VERSION: str = Field(default="2021-06-01")

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")
    PORT: int = Field(default=3000, ge=1, le=65535, description="Port to bind the server")

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO")

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to Entra and the Azure management API",
        gt=0,
        le=120,
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def entra_authority(self) -> str:
        """Authority URL for the Entra OIDC endpoints."""
        return f"https://login.microsoftonline.com/{self.ENTRA_TENANT_ID}"

    @property
    def admin_upns(self) -> FrozenSet[str]:
        """
        Parse ADMIN_UPNS into the normalized allow-list.

        Returns:
            Lower-cased usernames without whitespace or empty entries.
        """
        # Imported here: the auth package imports this module.
        from farmadmin.auth.utils import parse_allow_list

        return parse_allow_list(self.ADMIN_UPNS)

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return []
        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def post_logout_redirect(self) -> str:
        return self.POST_LOGOUT_REDIRECT_URI or "/"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got: {v}")
        return level

    @field_validator("PG_CREDENTIAL_MODE")
    @classmethod
    def validate_credential_mode(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        mode = v.strip().lower()
        if mode not in {"managed_identity", "azure_cli"}:
            raise ValueError(
                f"PG_CREDENTIAL_MODE must be 'managed_identity' or 'azure_cli', got: {v}"
            )
        return mode

    @field_validator("ENTRA_REDIRECT_URI")
    @classmethod
    def validate_redirect_uri(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"ENTRA_REDIRECT_URI must be an absolute http(s) URL, got: {v}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Raises:
        ConfigurationError: If required environment variables are missing
                            or invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        fields = ", ".join(
            str(err["loc"][0]) for err in e.errors() if err.get("loc")
        )
        raise ConfigurationError(f"Invalid or missing configuration: {fields}") from e


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate optional configuration groups and return a status report.

    Called during application startup so partially configured deployments are
    visible in the logs before the first request fails.
    """
    errors = []
    warnings = []

    if not settings.PGHOST or not settings.PGUSER:
        errors.append("PGHOST and PGUSER must be set for database access")

    if not settings.admin_upns:
        warnings.append("ADMIN_UPNS is empty; no user will have the admin role")

    management = (
        settings.AZURE_TENANT_ID,
        settings.AZURE_CLIENT_ID,
        settings.AZURE_CLIENT_SECRET,
    )
    if not all(management):
        warnings.append(
            "AZURE_TENANT_ID/AZURE_CLIENT_ID/AZURE_CLIENT_SECRET not set; "
            "database start/stop is unavailable"
        )

    if not settings.SESSION_COOKIE_SECURE and settings.ENTRA_REDIRECT_URI.startswith("https://"):
        warnings.append("SESSION_COOKIE_SECURE is off while serving over HTTPS")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "admin_count": len(settings.admin_upns),
    }


if __name__ == "__main__":
    """
    Run this module directly to validate your .env configuration:
        python -m farmadmin.config
    """
    print("=" * 80)
    print("FARM ADMIN CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()
    except ConfigurationError as e:
        print(f"\n✗ Configuration error: {e}")
        print("""
Required variables:
  - ENTRA_TENANT_ID
  - ENTRA_CLIENT_ID
  - ENTRA_CLIENT_SECRET
  - ENTRA_REDIRECT_URI
  - SESSION_SECRET
        """)
    else:
        print("\nEntra ID:")
        print(f"  Tenant ID:      {config.ENTRA_TENANT_ID}")
        print(f"  Client ID:      {config.ENTRA_CLIENT_ID}")
        print(f"  Redirect URI:   {config.ENTRA_REDIRECT_URI}")

        print("\nDatabase:")
        print(f"  Host:           {config.PGHOST or '-'}")
        print(f"  User:           {config.PGUSER or '-'}")
        print(f"  Database:       {config.PGDATABASE}")
        print(f"  Pool max:       {config.PGPOOL_MAX}")

        status = validate_configuration(config)
        print("\n" + "=" * 80)
        if status["valid"]:
            print("✓ All critical checks passed!")
        else:
            for error in status["errors"]:
                print(f"  ✗ {error}")
        for warning in status["warnings"]:
            print(f"  ⚠ {warning}")

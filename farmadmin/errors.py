"""
Error taxonomy for the Farm Admin service.

Routes raise these; the exception handlers registered in ``farmadmin.main``
map them to HTTP responses. API routes always answer with JSON carrying an
``error`` field, page routes redirect or return plain text.
"""

from typing import Any, Optional


class FarmAdminError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500

    def __init__(self, message: str = "", *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(FarmAdminError):
    """Required configuration is missing or invalid."""


class AuthValidationError(FarmAdminError):
    """The browser sent a callback that cannot belong to the pending login."""

    status_code = 400


class AuthProviderError(FarmAdminError):
    """The identity provider rejected or failed the code exchange."""


class Unauthorized(FarmAdminError):
    """No authenticated session."""

    status_code = 401

    def __init__(self, message: str = "AUTH_REQUIRED"):
        super().__init__(message)


class Forbidden(FarmAdminError):
    """Session present but the principal lacks the required role."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class DownstreamError(FarmAdminError):
    """
    A database or management API call failed.

    ``public_message`` is what end users see; ``details`` carries the
    upstream payload for admin-facing tooling.
    """

    public_message = "Database request failed"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message, status_code=status_code)
        self.details = details


class CredentialUnavailable(DownstreamError):
    """No usable credential source could issue a database token."""

    public_message = "Database credential unavailable"

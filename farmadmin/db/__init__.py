"""
Database access: Entra-token credentials and the refreshing connection pool.
"""

from .credentials import PG_SCOPE, CredentialMode, CredentialProvider, resolve_credential_mode
from .pool import QueryResult, TokenRefreshingPool

__all__ = [
    "PG_SCOPE",
    "CredentialMode",
    "CredentialProvider",
    "QueryResult",
    "TokenRefreshingPool",
    "resolve_credential_mode",
]

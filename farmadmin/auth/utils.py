"""
Authentication utilities for ID token verification and role checks.

This module handles:
- Fetching and caching the Entra JWKS (JSON Web Key Set)
- Verifying ID tokens returned by the token endpoint
- Deriving the admin role from the configured allow-list
- Decoding tokens for debug logging without verifying them
"""

import hmac
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

import httpx
from jose import JWTError, jwk, jwt

logger = logging.getLogger(__name__)


# =============================================================================
# JWKS Cache
# =============================================================================

class JwksCache:
    """
    Time-bounded cache of the tenant's signing keys.

    Keys are refetched after ``ttl_seconds`` or on demand when a token carries
    a ``kid`` the cached document does not know (key rotation).
    """

    def __init__(
        self,
        jwks_uri: str,
        http_client: httpx.AsyncClient,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_uri = jwks_uri
        self._http = http_client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at = 0.0

    async def get(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Return the JWKS document, fetching it when stale.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable
            ValueError: If the response has no ``keys``
        """
        now = self._clock()
        if not force_refresh and self._jwks and (now - self._fetched_at) < self.ttl_seconds:
            return self._jwks

        response = await self._http.get(self.jwks_uri)
        response.raise_for_status()
        jwks_data = response.json()

        if "keys" not in jwks_data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._fetched_at = now
        return jwks_data


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Return the JWKS entry matching the token's ``kid`` header, if any.

    Raises:
        JWTError: If the token header is malformed or has no ``kid``
    """
    unverified_header = jwt.get_unverified_header(token)

    kid = unverified_header.get("kid")
    if not kid:
        raise JWTError("Token header missing 'kid' (Key ID)")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    return None


async def verify_id_token(
    id_token: str,
    jwks_cache: JwksCache,
    client_id: str,
    tenant_id: str,
) -> Dict[str, Any]:
    """
    Verify an Entra ID token and return its claims.

    Checks the RS256 signature against the tenant JWKS, the audience (our
    client id), the standard time claims with 10 seconds of leeway, and that
    the issuer belongs to the configured tenant.

    Raises:
        JWTError: Signature, key or claim validation failed
        ValueError: Issuer is not the configured tenant
        httpx.HTTPError: JWKS endpoint unreachable
    """
    jwks = await jwks_cache.get()
    signing_key = get_signing_key(id_token, jwks)
    if not signing_key:
        jwks = await jwks_cache.get(force_refresh=True)
        signing_key = get_signing_key(id_token, jwks)
        if not signing_key:
            raise JWTError(
                "Unable to find matching signing key in JWKS. "
                "Token may be from a different tenant or keys may have rotated."
            )

    public_key = jwk.construct(signing_key, algorithm="RS256")

    claims = jwt.decode(
        id_token,
        public_key.to_pem().decode("utf-8"),
        algorithms=["RS256"],
        audience=client_id,
        options={
            "verify_at_hash": False,
            "leeway": 10,
        },
    )

    issuer = claims.get("iss", "")
    if not issuer.startswith("https://login.microsoftonline.com/"):
        raise ValueError(f"Invalid issuer: {issuer}")

    token_tenant = claims.get("tid")
    if tenant_id not in issuer and token_tenant != tenant_id:
        raise ValueError(f"Token issued by wrong tenant. Expected {tenant_id}")

    return claims


# =============================================================================
# Authorization Helpers
# =============================================================================

def normalize_username(username: Optional[str]) -> Optional[str]:
    if not username:
        return None
    normalized = str(username).strip().lower()
    return normalized or None


def parse_allow_list(raw: Optional[str]) -> frozenset:
    """Turn a comma-separated allow-list into a set of normalized usernames."""
    if not raw:
        return frozenset()
    return frozenset(
        name for name in (normalize_username(part) for part in raw.split(",")) if name
    )


def is_admin(username: Optional[str], allow_set: Iterable[str]) -> bool:
    """
    Case-insensitive allow-list membership.

    Absent or empty usernames are never admins.
    """
    normalized = normalize_username(username)
    if normalized is None:
        return False
    return normalized in {name.lower() for name in allow_set}


def validate_state(received_state: Optional[str], expected_state: Optional[str]) -> bool:
    """Constant-time comparison of the OAuth ``state`` parameter."""
    if not received_state or not expected_state:
        return False
    return hmac.compare_digest(received_state.encode("utf-8"), expected_state.encode("utf-8"))


# =============================================================================
# Debugging and Inspection
# =============================================================================

def decode_token_without_verification(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode a JWT payload without verifying it (debug logging only).

    Returns None instead of raising when the token is not a JWT.
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def token_identity_fields(token: str) -> Dict[str, Any]:
    """Pick the identity claims worth logging; never the token itself."""
    payload = decode_token_without_verification(token) or {}
    return {
        "oid": payload.get("oid"),
        "upn": payload.get("upn") or payload.get("preferred_username"),
        "tid": payload.get("tid"),
        "appid": payload.get("appid"),
    }

"""
Server-side Session Management
==============================

Sessions live in a process-wide store keyed by an opaque id. The browser only
ever holds that id, signed with SESSION_SECRET, in an HTTP-only cookie; the
identity record and the pending PKCE state stay on the server.

The ASGI middleware exposes the record as ``scope["session"]`` so handlers use
``request.session`` as a plain dict. Handlers end a session with
``destroy_session`` and issue a fresh id after sign-in with
``rotate_session``.
"""

import copy
import hashlib
import hmac
import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection, Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

SessionData = Dict[str, Any]


# =============================================================================
# Session Stores
# =============================================================================

class AbstractSessionStore(ABC):
    """Interface the session middleware and auth routes depend on."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionData]:
        """Return the record for ``session_id`` or None if absent/expired."""

    @abstractmethod
    async def set(self, session_id: str, data: SessionData) -> None:
        """Create or replace the record for ``session_id``."""

    @abstractmethod
    async def destroy(self, session_id: str) -> None:
        """Remove the record; a missing id is not an error."""

    async def close(self) -> None:
        """Release store resources on shutdown."""

    def new_session_id(self) -> str:
        return secrets.token_urlsafe(32)


class InMemorySessionStore(AbstractSessionStore):
    """
    Dict-backed store with a sliding idle TTL.

    Suitable for a single worker process. Every read refreshes the expiry.
    Expired records are dropped on access, and ``set`` sweeps the whole store
    at most once every ``purge_interval_seconds`` so abandoned logins do not
    accumulate.
    """

    def __init__(
        self,
        ttl_seconds: int = 8 * 3600,
        clock: Callable[[], float] = time.monotonic,
        purge_interval_seconds: float = 60,
    ):
        self.ttl_seconds = ttl_seconds
        self.purge_interval_seconds = purge_interval_seconds
        self._clock = clock
        self._records: Dict[str, Tuple[SessionData, float]] = {}
        self._last_purge = clock()

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, session_id: str) -> Optional[SessionData]:
        entry = self._records.get(session_id)
        if entry is None:
            return None

        data, expires_at = entry
        now = self._clock()
        if now >= expires_at:
            self._records.pop(session_id, None)
            return None

        self._records[session_id] = (data, now + self.ttl_seconds)
        return copy.deepcopy(data)

    async def set(self, session_id: str, data: SessionData) -> None:
        now = self._clock()
        if now - self._last_purge >= self.purge_interval_seconds:
            self.purge_expired()
        self._records[session_id] = (copy.deepcopy(data), now + self.ttl_seconds)

    async def destroy(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    async def close(self) -> None:
        self._records.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        self._last_purge = now
        expired = [sid for sid, (_, exp) in self._records.items() if now >= exp]
        for sid in expired:
            del self._records[sid]
        return len(expired)


# =============================================================================
# Cookie Signing
# =============================================================================

def sign_session_id(session_id: str, secret: str) -> str:
    """Append an HMAC so forged or truncated ids never reach the store."""
    mac = hmac.new(secret.encode("utf-8"), session_id.encode("utf-8"), hashlib.sha256)
    return f"{session_id}.{mac.hexdigest()}"


def unsign_session_id(value: str, secret: str) -> Optional[str]:
    session_id, sep, signature = value.rpartition(".")
    if not sep or not session_id:
        return None
    expected = sign_session_id(session_id, secret).rpartition(".")[2]
    if not hmac.compare_digest(signature, expected):
        return None
    return session_id


# =============================================================================
# ASGI Middleware
# =============================================================================

class ServerSessionMiddleware:
    """
    Load the session on the way in, persist it when the response starts.

    Scope keys used by the helpers below:
        session            -- the mutable session dict
        session_id         -- id of the loaded record (None when anonymous)
        session_destroyed  -- set by destroy_session
        session_rotate     -- set by rotate_session
    """

    def __init__(
        self,
        app: ASGIApp,
        store: AbstractSessionStore,
        secret: str,
        cookie_name: str = "farmadmin.sid",
        max_age: Optional[int] = None,
        https_only: bool = False,
        same_site: str = "lax",
        path: str = "/",
    ):
        self.app = app
        self.store = store
        self.secret = secret
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.path = path
        self.security_flags = "httponly; samesite=" + same_site
        if https_only:
            self.security_flags += "; secure"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        session_id: Optional[str] = None
        data: Optional[SessionData] = None

        cookie = connection.cookies.get(self.cookie_name)
        if cookie:
            session_id = unsign_session_id(cookie, self.secret)
            if session_id is None:
                logger.warning("Rejected session cookie with bad signature")
            else:
                data = await self.store.get(session_id)

        scope["session"] = data or {}
        scope["session_id"] = session_id if data is not None else None
        scope["session_store"] = self.store
        initial = copy.deepcopy(scope["session"])

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                await self._commit(scope, initial, had_cookie=bool(cookie), message=message)
            await send(message)

        await self.app(scope, receive, send_wrapper)

    async def _commit(
        self,
        scope: Scope,
        initial: SessionData,
        had_cookie: bool,
        message: Message,
    ) -> None:
        headers = MutableHeaders(scope=message)
        session: SessionData = scope["session"]
        session_id: Optional[str] = scope.get("session_id")

        if scope.get("session_destroyed"):
            headers.append("Set-Cookie", self._expired_cookie())
            return

        if not session:
            if session_id:
                await self.store.destroy(session_id)
            if had_cookie:
                headers.append("Set-Cookie", self._expired_cookie())
            return

        if scope.get("session_rotate") and session_id:
            await self.store.destroy(session_id)
            session_id = None

        if session_id is None or session != initial:
            session_id = session_id or self.store.new_session_id()
            await self.store.set(session_id, session)
            scope["session_id"] = session_id
            headers.append("Set-Cookie", self._cookie(sign_session_id(session_id, self.secret)))

    def _cookie(self, value: str) -> str:
        parts = [f"{self.cookie_name}={value}", f"path={self.path}"]
        if self.max_age:
            parts.append(f"Max-Age={self.max_age}")
        parts.append(self.security_flags)
        return "; ".join(parts)

    def _expired_cookie(self) -> str:
        return "; ".join(
            [
                f"{self.cookie_name}=null",
                f"path={self.path}",
                "expires=Thu, 01 Jan 1970 00:00:00 GMT",
                "Max-Age=0",
                self.security_flags,
            ]
        )


# =============================================================================
# Request Helpers
# =============================================================================

async def destroy_session(request: Request) -> None:
    """
    Remove the session from the store and clear it for this request.

    The middleware sends an expired cookie with the response, so callers can
    redirect as soon as this returns.
    """
    store: AbstractSessionStore = request.scope["session_store"]
    session_id = request.scope.get("session_id")
    if session_id:
        await store.destroy(session_id)
    request.session.clear()
    request.scope["session_id"] = None
    request.scope["session_destroyed"] = True


def rotate_session(request: Request) -> None:
    """Persist the current session under a new id when the response starts."""
    request.scope["session_rotate"] = True


__all__ = [
    "AbstractSessionStore",
    "InMemorySessionStore",
    "ServerSessionMiddleware",
    "SessionData",
    "destroy_session",
    "rotate_session",
    "sign_session_id",
    "unsign_session_id",
]

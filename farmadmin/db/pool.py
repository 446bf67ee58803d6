"""
PostgreSQL connection pool authenticated with a rotating Entra token.

The pool's password is an access token that expires after roughly an hour,
so the SQLAlchemy engine is rebuilt shortly before the token does:

- ``acquire()`` returns the current engine while ``now < expiry - skew``
- otherwise one refresh runs (concurrent callers await the same task),
  a new engine is built with the fresh token and the old one is disposed

Everything is lazy: no token is fetched and no connection is opened until
the first query.
"""

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from farmadmin.auth.utils import token_identity_fields
from farmadmin.config import Settings
from farmadmin.db.credentials import PG_SCOPE, CredentialProvider
from farmadmin.errors import ConfigurationError, DownstreamError

logger = logging.getLogger(__name__)

REFRESH_SKEW_SECONDS = 120
DEFAULT_TOKEN_LIFETIME_SECONDS = 50 * 60
IDLE_RECYCLE_SECONDS = 30


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0


def _insecure_ssl_context() -> ssl.SSLContext:
    # Azure flexible server certificates are not pinned in this deployment
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class TokenRefreshingPool:
    """
    Lazily created engine whose password is the current access token.

    Args:
        settings: Application settings (PG* values)
        credential_provider: Source of database access tokens
        engine_factory: Builds an engine from a password; defaults to an
            asyncpg engine for the configured server
        clock: Epoch-seconds clock, comparable with ``AccessToken.expires_on``

    Raises:
        ConfigurationError: PGHOST or PGUSER is missing
    """

    def __init__(
        self,
        settings: Settings,
        credential_provider: CredentialProvider,
        engine_factory: Optional[Callable[[str], AsyncEngine]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not settings.PGHOST or not settings.PGUSER:
            raise ConfigurationError("PGHOST and PGUSER must be set")

        self.settings = settings
        self._credentials = credential_provider
        self._engine_factory = engine_factory or self._create_engine
        self._clock = clock

        self._engine: Optional[AsyncEngine] = None
        self._expires_at = 0.0
        self._refresh_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Engine Lifecycle
    # =========================================================================

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def _is_fresh(self) -> bool:
        return self._engine is not None and self._clock() < self._expires_at - REFRESH_SKEW_SECONDS

    async def acquire(self) -> AsyncEngine:
        """
        Return an engine whose token is valid for at least the skew window.

        Raises:
            CredentialUnavailable: No token could be obtained
            DownstreamError: Validate-on-create query failed
        """
        if self._is_fresh():
            return self._engine

        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh())

        # shield: a cancelled caller must not cancel the refresh others await
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> AsyncEngine:
        try:
            access_token = await self._credentials.fetch(PG_SCOPE)

            if self.settings.PG_DEBUG_TOKEN:
                logger.info(
                    "Database token identity",
                    extra=token_identity_fields(access_token.token),
                )

            expires_at = access_token.expires_on or (
                self._clock() + DEFAULT_TOKEN_LIFETIME_SECONDS
            )

            engine = self._engine_factory(access_token.token)
            if self.settings.PG_VALIDATE_ON_CREATE:
                await self._validate(engine)

            old_engine = self._engine
            self._engine = engine
            self._expires_at = float(expires_at)

            logger.info(
                "Database pool refreshed",
                extra={"host": self.settings.PGHOST, "expires_at": int(self._expires_at)},
            )

            if old_engine is not None:
                await self._dispose(old_engine)

            return engine
        finally:
            self._refresh_task = None

    async def _validate(self, engine: AsyncEngine) -> None:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            await self._dispose(engine)
            raise DownstreamError(f"Database validation failed: {e}") from e

    async def _dispose(self, engine: AsyncEngine) -> None:
        try:
            await engine.dispose()
        except Exception as e:
            logger.warning(f"Failed to dispose database engine: {e}")

    def _create_engine(self, password: str) -> AsyncEngine:
        url = URL.create(
            "postgresql+asyncpg",
            username=self.settings.PGUSER,
            password=password,
            host=self.settings.PGHOST,
            port=self.settings.PGPORT,
            database=self.settings.PGDATABASE,
        )
        timeout_seconds = self.settings.PG_CONN_TIMEOUT_MS / 1000
        return create_async_engine(
            url,
            pool_size=self.settings.PGPOOL_MAX,
            max_overflow=0,
            pool_recycle=IDLE_RECYCLE_SECONDS,
            pool_timeout=timeout_seconds,
            pool_pre_ping=True,
            connect_args={"ssl": _insecure_ssl_context(), "timeout": timeout_seconds},
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._dispose(self._engine)
            self._engine = None
            self._expires_at = 0.0

    # =========================================================================
    # Queries
    # =========================================================================

    async def run_query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        """
        Execute one parameterized statement in its own transaction.

        Args:
            sql: Statement with ``:name`` bind parameters
            params: Bind values

        Raises:
            DownstreamError: Credential, connection or SQL failure
        """
        engine = await self.acquire()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                rows = [dict(row) for row in result.mappings().all()] if result.returns_rows else []
                return QueryResult(rows=rows, rowcount=result.rowcount)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Database query failed: {e}")
            raise DownstreamError(f"Database query failed: {e}") from e

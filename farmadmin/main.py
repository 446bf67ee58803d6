"""
FastAPI Application Factory
===========================

Entry point for the farm management admin service.

Architecture:
    Browser → session cookie → Access gate → Routers → Token-refreshing pool → PostgreSQL
                                                     → Azure Resource Manager

Routers:
    - /login, /logout, /switch-account, /protected : Sign-in pages
    - /auth/*               : Entra ID login and callback
    - /api/me               : Current identity (no gate)
    - /api/farms/*          : Farm CRUD (session)
    - /api/board/*          : Board read (session) / write (admin)
    - /api/azure-postgres/* : Database server start/stop (admin)
    - /, /board, /board/{id}: HTML pages (session)
    - /health               : Health check

Running the Service:
    Development:
        uvicorn farmadmin.main:app --reload --port 3000

    Production (sessions are per process, so run a single worker):
        uvicorn farmadmin.main:app --host 0.0.0.0 --port 3000
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from farmadmin import __version__
from farmadmin.auth import account_router, auth_router, me_router
from farmadmin.auth.oidc import EntraClient
from farmadmin.auth.session import AbstractSessionStore, InMemorySessionStore, ServerSessionMiddleware
from farmadmin.azure_postgres import azure_postgres_router
from farmadmin.azure_postgres.management import AzurePostgresManagement
from farmadmin.board import board_router
from farmadmin.config import Settings, get_settings, validate_configuration
from farmadmin.db.credentials import CredentialProvider, resolve_credential_mode
from farmadmin.db.pool import TokenRefreshingPool
from farmadmin.errors import (
    AuthProviderError,
    AuthValidationError,
    ConfigurationError,
    DownstreamError,
    Forbidden,
    Unauthorized,
)
from farmadmin.farms import farms_router
from farmadmin.models import HealthResponse
from farmadmin.pages import STATIC_DIR, pages_router

logger = logging.getLogger("farmadmin.main")

SERVICE_NAME = "farmadmin"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def _is_api_request(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def build_db_pool(
    settings: Settings,
    credential_provider: CredentialProvider,
) -> Optional[TokenRefreshingPool]:
    """Create the pool, or None when the database is not configured."""
    try:
        pool = TokenRefreshingPool(settings, credential_provider)
    except ConfigurationError as e:
        logger.warning(f"Database pool disabled: {e.message}")
        return None
    logger.info("Database credential source selected", extra={"mode": credential_provider.mode.value})
    return pool


async def _auto_start_database(management: AzurePostgresManagement) -> None:
    try:
        await management.start()
        logger.info("Database server start requested at startup")
    except Exception as e:
        logger.warning(f"Database auto-start failed: {e}")


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging and report configuration problems
        - Optionally ask Azure to start the database server (PG_AUTO_START)

    Shutdown tasks:
        - Dispose the database engine and credentials
        - Close the HTTP clients and the session store
    """
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL)

    status = validate_configuration(settings)
    for error in status["errors"]:
        logger.error(f"Configuration: {error}")
    for warning in status["warnings"]:
        logger.warning(f"Configuration: {warning}")

    auto_start: Optional[asyncio.Task] = None
    if settings.PG_AUTO_START:
        auto_start = asyncio.create_task(_auto_start_database(app.state.management))

    logger.info(
        "Farm admin service started",
        extra={"service": SERVICE_NAME, "version": __version__, "admin_count": status["admin_count"]},
    )

    yield

    logger.info("Shutting down farm admin service")

    if auto_start and not auto_start.done():
        auto_start.cancel()

    if app.state.db_pool is not None:
        await app.state.db_pool.close()
    if app.state.credential_provider is not None:
        try:
            await app.state.credential_provider.close()
        except Exception as e:
            logger.error(f"Error closing database credential: {e}")

    await app.state.oidc_client.aclose()
    await app.state.management.aclose()
    await app.state.session_store.close()

    logger.info("Farm admin service shutdown complete")


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    *,
    session_store: Optional[AbstractSessionStore] = None,
    oidc_client: Optional[EntraClient] = None,
    db_pool: Optional[TokenRefreshingPool] = None,
    management: Optional[AzurePostgresManagement] = None,
) -> FastAPI:
    """
    Application factory function.

    Components not passed in are built from ``settings``; tests pass fakes.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Farm Admin Service",
        description="Entra ID protected administration for farms, board posts and the database server",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    credential_provider = None
    if db_pool is None:
        credential_provider = CredentialProvider(
            resolve_credential_mode(override=settings.PG_CREDENTIAL_MODE)
        )
        db_pool = build_db_pool(settings, credential_provider)

    if session_store is None:
        session_store = InMemorySessionStore(ttl_seconds=settings.SESSION_TTL_SECONDS)

    app.state.settings = settings
    app.state.session_store = session_store
    app.state.oidc_client = oidc_client or EntraClient(settings)
    app.state.db_pool = db_pool
    app.state.credential_provider = credential_provider
    app.state.management = management or AzurePostgresManagement(settings)

    # Middleware (last added runs first): CORS → request log → session
    app.add_middleware(
        ServerSessionMiddleware,
        store=session_store,
        secret=settings.SESSION_SECRET,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_TTL_SECONDS,
        https_only=settings.SESSION_COOKIE_SECURE,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(
            f"{request.method} {request.url.path}",
            extra={"origin": request.headers.get("origin")},
        )
        return await call_next(request)

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    # Mount routers
    app.include_router(auth_router)
    app.include_router(account_router)
    app.include_router(me_router)
    app.include_router(farms_router)
    app.include_router(board_router)
    app.include_router(azure_postgres_router)
    app.include_router(pages_router)

    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service=SERVICE_NAME, version=__version__)

    # =========================================================================
    # Exception Handlers
    # =========================================================================

    @app.exception_handler(Unauthorized)
    async def unauthorized_handler(request: Request, exc: Unauthorized):
        if _is_api_request(request):
            return JSONResponse(status_code=401, content={"error": exc.message})
        return RedirectResponse(url="/login", status_code=302)

    @app.exception_handler(Forbidden)
    async def forbidden_handler(request: Request, exc: Forbidden) -> JSONResponse:
        return JSONResponse(status_code=403, content={"error": exc.message})

    @app.exception_handler(AuthValidationError)
    async def auth_validation_handler(request: Request, exc: AuthValidationError):
        logger.warning(f"Rejected auth callback: {exc.message}")
        return PlainTextResponse(exc.message, status_code=400)

    @app.exception_handler(AuthProviderError)
    async def auth_provider_handler(request: Request, exc: AuthProviderError):
        logger.error(f"Identity provider error: {exc.message}")
        return PlainTextResponse("Auth redirect failed", status_code=500)

    @app.exception_handler(DownstreamError)
    async def downstream_handler(request: Request, exc: DownstreamError) -> JSONResponse:
        logger.error(
            f"Downstream failure: {exc.message}",
            extra={"path": request.url.path, "exception_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": exc.public_message},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error(f"Configuration error: {exc.message}", extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Service is not configured"},
        )

    @app.exception_handler(StarletteHTTPException)
    async def api_http_exception_handler(request: Request, exc: StarletteHTTPException):
        if _is_api_request(request):
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": exc.detail},
                headers=getattr(exc, "headers", None),
            )
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        if not _is_api_request(request):
            return await request_validation_exception_handler(request, exc)

        errors = exc.errors()
        if any(err.get("type") == "json_invalid" for err in errors):
            message = "Invalid JSON body"
        else:
            message = "Invalid request body"
        logger.warning(
            f"Rejected request: {message}",
            extra={"path": request.url.path, "error_count": len(errors)},
        )
        return JSONResponse(status_code=400, content={"error": message})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    """
    Direct execution entry point: python -m farmadmin.main
    """
    settings = get_settings()

    uvicorn.run(
        "farmadmin.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )

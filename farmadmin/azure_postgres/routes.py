"""
Admin endpoints to start and stop the Azure PostgreSQL flexible server.

Errors from Azure are passed through with their status code and body so the
admin page can show exactly what the management API said.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from farmadmin.auth.dependencies import ensure_admin, ensure_authenticated
from farmadmin.azure_postgres.management import AzurePostgresManagement
from farmadmin.errors import DownstreamError, FarmAdminError
from farmadmin.models import ServerTarget, SessionUser

logger = logging.getLogger(__name__)

azure_postgres_router = APIRouter(
    prefix="/api/azure-postgres",
    tags=["azure-postgres"],
    dependencies=[Depends(ensure_authenticated)],
)


def get_management(request: Request) -> AzurePostgresManagement:
    return request.app.state.management


def _error_response(error: FarmAdminError) -> JSONResponse:
    body = error.details if isinstance(error, DownstreamError) and error.details else error.message
    return JSONResponse(status_code=error.status_code, content={"error": body})


@azure_postgres_router.post("/start")
async def start_server(
    target: Optional[ServerTarget] = Body(None),
    user: SessionUser = Depends(ensure_admin),
    management: AzurePostgresManagement = Depends(get_management),
):
    logger.info("Start requested", extra={"user": user.preferred_username})
    try:
        details = await management.start(target)
    except FarmAdminError as e:
        logger.error(f"Start error: {e.message}")
        return _error_response(e)
    return {"status": "started", "details": details}


@azure_postgres_router.post("/stop")
async def stop_server(
    target: Optional[ServerTarget] = Body(None),
    user: SessionUser = Depends(ensure_admin),
    management: AzurePostgresManagement = Depends(get_management),
):
    logger.info("Stop requested", extra={"user": user.preferred_username})
    try:
        details = await management.stop(target)
    except FarmAdminError as e:
        logger.error(f"Stop error: {e.message}")
        return _error_response(e)
    return {"status": "stopped", "details": details}


@azure_postgres_router.get("/defaults", dependencies=[Depends(ensure_admin)])
async def get_defaults(management: AzurePostgresManagement = Depends(get_management)):
    """Configured target, so the admin page can prefill its form."""
    return management.defaults().model_dump()

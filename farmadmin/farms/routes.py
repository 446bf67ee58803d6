"""
Farm CRUD endpoints over the ``list_farms`` table.

All routes require a signed-in session. Writes additionally require the
admin role when ``FARM_WRITES_REQUIRE_ADMIN`` is enabled.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from farmadmin.auth.dependencies import (
    ensure_admin,
    ensure_authenticated,
    get_app_settings,
    get_db_pool,
)
from farmadmin.config import Settings
from farmadmin.db.pool import TokenRefreshingPool
from farmadmin.models import FarmFields, SessionUser, farm_from_row

logger = logging.getLogger(__name__)

farms_router = APIRouter(
    prefix="/api/farms",
    tags=["farms"],
    dependencies=[Depends(ensure_authenticated)],
)

_FARM_COLUMNS = (
    ("name", "농장명"),
    ("region", "지역"),
    ("badge", "뱃지"),
    ("owner_id", "농장주ID"),
    ("owner", "농장주"),
    ("feed_company", "사료회사"),
    ("manager_id", "관리자ID"),
    ("manager", "관리자"),
    ("contract_status", "계약상태"),
    ("contract_start", "계약시작일"),
    ("contract_end", "계약종료일"),
)

INSERT_FARM_SQL = (
    "INSERT INTO list_farms ("
    + ", ".join(f'"{column}"' for _, column in _FARM_COLUMNS)
    + ") VALUES ("
    + ", ".join(f":{param}" for param, _ in _FARM_COLUMNS)
    + ")"
)

UPDATE_FARM_SQL = (
    "UPDATE list_farms SET "
    + ", ".join(f'"{column}" = :{param}' for param, column in _FARM_COLUMNS)
    + ' WHERE "농장ID" = :farm_id'
)

SELECT_FARMS_SQL = 'SELECT * FROM list_farms ORDER BY "농장ID" ASC'
DELETE_FARM_SQL = 'DELETE FROM list_farms WHERE "농장ID" = :farm_id'


async def ensure_farm_writer(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> SessionUser:
    """Admin gate for farm writes, switched on by FARM_WRITES_REQUIRE_ADMIN."""
    if settings.FARM_WRITES_REQUIRE_ADMIN:
        return await ensure_admin(request, settings)
    return await ensure_authenticated(request)


def parse_farm_id(farm_id: str) -> int:
    try:
        return int(farm_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid id")


def _farm_params(farm: FarmFields) -> dict:
    return {param: getattr(farm, param) for param, _ in _FARM_COLUMNS}


# =============================================================================
# Routes
# =============================================================================

@farms_router.get("")
async def list_farms(pool: TokenRefreshingPool = Depends(get_db_pool)):
    result = await pool.run_query(SELECT_FARMS_SQL)
    return {"success": True, "farms": [farm_from_row(row) for row in result.rows]}


@farms_router.post("")
async def create_farm(
    farm: FarmFields,
    user: SessionUser = Depends(ensure_farm_writer),
    pool: TokenRefreshingPool = Depends(get_db_pool),
):
    await pool.run_query(INSERT_FARM_SQL, _farm_params(farm))
    logger.info("Farm added", extra={"user": user.preferred_username, "farm": farm.name})
    return {"message": "Farm added"}


@farms_router.put("/{farm_id}")
async def update_farm(
    farm_id: str,
    farm: FarmFields,
    user: SessionUser = Depends(ensure_farm_writer),
    pool: TokenRefreshingPool = Depends(get_db_pool),
):
    id_num = parse_farm_id(farm_id)
    await pool.run_query(UPDATE_FARM_SQL, {**_farm_params(farm), "farm_id": id_num})
    logger.info("Farm updated", extra={"user": user.preferred_username, "farm_id": id_num})
    return {"message": "Farm updated"}


@farms_router.delete("/{farm_id}")
async def delete_farm(
    farm_id: str,
    user: SessionUser = Depends(ensure_farm_writer),
    pool: TokenRefreshingPool = Depends(get_db_pool),
):
    id_num = parse_farm_id(farm_id)
    await pool.run_query(DELETE_FARM_SQL, {"farm_id": id_num})
    logger.info("Farm deleted", extra={"user": user.preferred_username, "farm_id": id_num})
    return {"message": "Farm deleted"}

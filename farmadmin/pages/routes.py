"""
HTML pages served from the package's ``static`` directory.

Every page requires a session; anonymous browsers are redirected to
``/login`` by the ``Unauthorized`` handler.
"""

from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from farmadmin.auth.dependencies import ensure_authenticated

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"

pages_router = APIRouter(
    tags=["pages"],
    dependencies=[Depends(ensure_authenticated)],
)


def _page(name: str) -> FileResponse:
    return FileResponse(STATIC_DIR / name, media_type="text/html")


@pages_router.get("/", include_in_schema=False)
async def index_page():
    return _page("index.html")


@pages_router.get("/board", include_in_schema=False)
async def board_page():
    return _page("board.html")


@pages_router.get("/board/{post_id}", include_in_schema=False)
async def board_detail_page(post_id: str):
    return _page("board-detail.html")

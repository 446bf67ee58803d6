"""
Notice board endpoints over the ``board_posts`` table.

Any signed-in user can read; creating, editing and deleting posts is
limited to admins. The author is always taken from the session, never from
the request body.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from farmadmin.auth.dependencies import ensure_admin, ensure_authenticated, get_db_pool
from farmadmin.db.pool import TokenRefreshingPool
from farmadmin.models import BoardPostIn, SessionUser

logger = logging.getLogger(__name__)

board_router = APIRouter(
    prefix="/api/board",
    tags=["board"],
    dependencies=[Depends(ensure_authenticated)],
)

LIST_POSTS_SQL = """
    SELECT id, title, author_upn, created_at, updated_at
    FROM board_posts
    ORDER BY created_at DESC
"""

GET_POST_SQL = """
    SELECT id, title, body, author_upn, created_at, updated_at
    FROM board_posts
    WHERE id = :post_id
"""

INSERT_POST_SQL = """
    INSERT INTO board_posts (title, body, author_upn)
    VALUES (:title, :body, :author_upn)
    RETURNING id
"""

UPDATE_POST_SQL = """
    UPDATE board_posts
    SET title = :title, body = :body, updated_at = NOW()
    WHERE id = :post_id
"""

DELETE_POST_SQL = "DELETE FROM board_posts WHERE id = :post_id"


def parse_post_id(post_id: str) -> int:
    try:
        return int(post_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid id")


def require_title_and_body(post: BoardPostIn) -> BoardPostIn:
    cleaned = post.cleaned()
    if not cleaned.title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="title is required")
    if not cleaned.body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="body is required")
    return cleaned


# =============================================================================
# Read
# =============================================================================

@board_router.get("")
async def list_posts(pool: TokenRefreshingPool = Depends(get_db_pool)):
    result = await pool.run_query(LIST_POSTS_SQL)
    return {"success": True, "posts": result.rows}


@board_router.get("/{post_id}")
async def get_post(post_id: str, pool: TokenRefreshingPool = Depends(get_db_pool)):
    id_num = parse_post_id(post_id)
    result = await pool.run_query(GET_POST_SQL, {"post_id": id_num})
    return {"success": True, "post": result.rows[0] if result.rows else None}


# =============================================================================
# Write (admin only)
# =============================================================================

@board_router.post("")
async def create_post(
    post: BoardPostIn,
    user: SessionUser = Depends(ensure_admin),
    pool: TokenRefreshingPool = Depends(get_db_pool),
):
    post = require_title_and_body(post)
    result = await pool.run_query(
        INSERT_POST_SQL,
        {"title": post.title, "body": post.body, "author_upn": user.preferred_username},
    )
    new_id = result.rows[0]["id"] if result.rows else None
    logger.info("Board post created", extra={"user": user.preferred_username, "post_id": new_id})
    return {"success": True, "id": new_id}


@board_router.put("/{post_id}")
async def update_post(
    post_id: str,
    post: BoardPostIn,
    user: SessionUser = Depends(ensure_admin),
    pool: TokenRefreshingPool = Depends(get_db_pool),
):
    id_num = parse_post_id(post_id)
    post = require_title_and_body(post)
    await pool.run_query(
        UPDATE_POST_SQL,
        {"title": post.title, "body": post.body, "post_id": id_num},
    )
    logger.info("Board post updated", extra={"user": user.preferred_username, "post_id": id_num})
    return {"success": True}


@board_router.delete("/{post_id}")
async def delete_post(
    post_id: str,
    user: SessionUser = Depends(ensure_admin),
    pool: TokenRefreshingPool = Depends(get_db_pool),
):
    id_num = parse_post_id(post_id)
    await pool.run_query(DELETE_POST_SQL, {"post_id": id_num})
    logger.info("Board post deleted", extra={"user": user.preferred_username, "post_id": id_num})
    return {"success": True}

"""
Board Endpoint Tests
"""

from datetime import datetime

import pytest

from farmadmin.board.routes import (
    DELETE_POST_SQL,
    GET_POST_SQL,
    INSERT_POST_SQL,
    UPDATE_POST_SQL,
)
from farmadmin.db.pool import QueryResult
from farmadmin.errors import DownstreamError

from conftest import ADMIN_UPN

POST_ROW = {
    "id": 3,
    "title": "공지",
    "body": "사료 배송 일정 변경",
    "author_upn": ADMIN_UPN,
    "created_at": datetime(2024, 5, 1, 9, 30),
    "updated_at": datetime(2024, 5, 2, 10, 0),
}


class TestReadPosts:

    def test_list_posts(self, staff_client, db_pool):
        db_pool.run_query.return_value = QueryResult(rows=[POST_ROW], rowcount=1)

        response = staff_client.get("/api/board")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["posts"][0]["title"] == "공지"
        assert data["posts"][0]["created_at"] == "2024-05-01T09:30:00"

    def test_get_post(self, staff_client, db_pool):
        db_pool.run_query.return_value = QueryResult(rows=[POST_ROW], rowcount=1)

        response = staff_client.get("/api/board/3")

        assert response.json()["post"]["body"] == "사료 배송 일정 변경"
        db_pool.run_query.assert_awaited_once_with(GET_POST_SQL, {"post_id": 3})

    def test_missing_post_is_null(self, staff_client, db_pool):
        response = staff_client.get("/api/board/999")

        assert response.status_code == 200
        assert response.json() == {"success": True, "post": None}

    @pytest.mark.parametrize("post_id", ["abc", "12abc"])
    def test_invalid_id(self, staff_client, db_pool, post_id):
        response = staff_client.get(f"/api/board/{post_id}")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid id"}
        db_pool.run_query.assert_not_awaited()

    def test_database_failure(self, staff_client, db_pool):
        db_pool.run_query.side_effect = DownstreamError("relation board_posts does not exist")

        response = staff_client.get("/api/board")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Database request failed"}


class TestWritePosts:

    def test_create_uses_session_author(self, admin_client, db_pool):
        db_pool.run_query.return_value = QueryResult(rows=[{"id": 11}], rowcount=1)

        response = admin_client.post(
            "/api/board",
            json={"title": "  제목 ", "body": " 내용 ", "author_upn": "spoofed@evil.com"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "id": 11}
        db_pool.run_query.assert_awaited_once_with(
            INSERT_POST_SQL,
            {"title": "제목", "body": "내용", "author_upn": ADMIN_UPN},
        )

    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"title": "   ", "body": "b"}, "title is required"),
            ({"body": "b"}, "title is required"),
            ({"title": "t", "body": ""}, "body is required"),
            ({"title": "t", "body": None}, "body is required"),
        ],
    )
    def test_blank_title_or_body_rejected(self, admin_client, db_pool, payload, message):
        response = admin_client.post("/api/board", json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": message}
        db_pool.run_query.assert_not_awaited()

    def test_non_object_body_returns_json_error(self, admin_client, db_pool):
        response = admin_client.post("/api/board", json=["not", "an", "object"])

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}
        db_pool.run_query.assert_not_awaited()

    def test_malformed_json_returns_json_error(self, admin_client, db_pool):
        response = admin_client.put(
            "/api/board/3",
            content=b"{bad json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}
        db_pool.run_query.assert_not_awaited()

    def test_update(self, admin_client, db_pool):
        response = admin_client.put("/api/board/3", json={"title": "수정", "body": "본문"})

        assert response.json() == {"success": True}
        db_pool.run_query.assert_awaited_once_with(
            UPDATE_POST_SQL,
            {"title": "수정", "body": "본문", "post_id": 3},
        )

    def test_update_validates_fields(self, admin_client, db_pool):
        response = admin_client.put("/api/board/3", json={"title": "", "body": "본문"})

        assert response.status_code == 400

    def test_delete(self, admin_client, db_pool):
        response = admin_client.delete("/api/board/3")

        assert response.json() == {"success": True}
        db_pool.run_query.assert_awaited_once_with(DELETE_POST_SQL, {"post_id": 3})

    @pytest.mark.parametrize(
        "method,path,payload",
        [
            ("post", "/api/board", {"title": "t", "body": "b"}),
            ("put", "/api/board/3", {"title": "t", "body": "b"}),
            ("delete", "/api/board/3", None),
        ],
    )
    def test_writes_forbidden_for_staff(self, staff_client, db_pool, method, path, payload):
        kwargs = {"json": payload} if payload is not None else {}

        response = getattr(staff_client, method)(path, **kwargs)

        assert response.status_code == 403
        db_pool.run_query.assert_not_awaited()

"""
Access Gate Tests

Blanket session requirement for /api and pages, admin allow-list checks
and the error mapping of each rejection.
"""

import pytest

from farmadmin.auth.utils import is_admin, parse_allow_list

from conftest import sign_in


class TestIsAdmin:

    @pytest.mark.parametrize(
        "username",
        ["admin@contoso.com", "ADMIN@CONTOSO.COM", "  Admin@Contoso.com "],
    )
    def test_match_ignores_case_and_whitespace(self, username):
        assert is_admin(username, {"admin@contoso.com"}) is True

    @pytest.mark.parametrize("username", [None, "", "   "])
    def test_missing_username_is_never_admin(self, username):
        assert is_admin(username, {"admin@contoso.com", ""}) is False

    def test_unlisted_user_is_not_admin(self):
        assert is_admin("staff@contoso.com", {"admin@contoso.com"}) is False

    def test_parse_allow_list(self):
        allow = parse_allow_list(" Admin@Contoso.com, ,second@contoso.com,")

        assert allow == frozenset({"admin@contoso.com", "second@contoso.com"})

    def test_settings_allow_list_is_normalized(self, settings):
        assert settings.admin_upns == frozenset(
            {"admin@contoso.com", "second-admin@contoso.com"}
        )


class TestSessionGate:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/farms"),
            ("post", "/api/farms"),
            ("put", "/api/farms/1"),
            ("delete", "/api/farms/1"),
            ("get", "/api/board"),
            ("get", "/api/board/1"),
            ("post", "/api/board"),
            ("post", "/api/azure-postgres/start"),
            ("get", "/api/azure-postgres/defaults"),
        ],
    )
    def test_api_without_session_returns_401_json(self, client, db_pool, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.json() == {"error": "AUTH_REQUIRED"}
        db_pool.run_query.assert_not_awaited()

    @pytest.mark.parametrize("path", ["/", "/board", "/board/7", "/protected"])
    def test_pages_without_session_redirect_to_login(self, client, path):
        response = client.get(path)

        assert response.status_code == 302
        assert response.headers["location"] == "/login"

    @pytest.mark.parametrize("path", ["/", "/board", "/board/7"])
    def test_pages_with_session_are_served(self, staff_client, path):
        response = staff_client.get(path)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")

    def test_forged_cookie_is_anonymous(self, client, settings):
        response = client.get(
            "/api/farms",
            headers={"Cookie": f"{settings.SESSION_COOKIE_NAME}=made-up-id.deadbeef"},
        )

        assert response.status_code == 401

    def test_public_routes_need_no_session(self, client):
        assert client.get("/health").status_code == 200
        assert client.get("/login").status_code == 200
        assert client.get("/auth/login").status_code == 302


class TestAdminGate:

    def test_non_admin_gets_403(self, staff_client, db_pool):
        response = staff_client.post("/api/board", json={"title": "t", "body": "b"})

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden"}
        db_pool.run_query.assert_not_awaited()

    def test_admin_passes(self, admin_client, db_pool):
        response = admin_client.delete("/api/board/3")

        assert response.status_code == 200

    def test_user_not_on_allow_list_is_not_admin(self, client, app):
        sign_in(client, app, "new-admin@contoso.com")

        assert client.get("/api/me").json()["isAdmin"] is False

    def test_unknown_api_route_returns_json_404(self, staff_client):
        response = staff_client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

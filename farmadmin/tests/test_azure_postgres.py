"""
Azure PostgreSQL Start/Stop Tests
"""

from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from azure.core.exceptions import ClientAuthenticationError, ServiceRequestError

from farmadmin.azure_postgres.management import (
    MANAGEMENT_SCOPE,
    MISSING_TARGET_MESSAGE,
    AzurePostgresManagement,
)
from farmadmin.errors import ConfigurationError
from farmadmin.models import ServerTarget

from conftest import make_settings, sign_in


def arm_response(status_code: int, body=None) -> httpx.Response:
    request = httpx.Request("POST", "https://management.azure.com/")
    if body is None:
        return httpx.Response(status_code, request=request)
    return httpx.Response(status_code, json=body, request=request)


class TestServerActions:

    def test_start_calls_arm_with_configured_target(self, admin_client, mgmt_http, management):
        mgmt_http.post.return_value = arm_response(202)

        response = admin_client.post("/api/azure-postgres/start")

        assert response.status_code == 200
        assert response.json() == {"status": "started", "details": None}

        url = mgmt_http.post.call_args.args[0]
        kwargs = mgmt_http.post.call_args.kwargs
        assert url == (
            "https://management.azure.com/subscriptions/sub-123/resourceGroups/rg-farm"
            "/providers/Microsoft.DBforPostgreSQL/flexibleServers/farmdb/start"
            "?api-version=2021-06-01"
        )
        assert kwargs["json"] == {}
        assert kwargs["headers"]["Authorization"] == "Bearer mgmt-access-token"
        management._credential.get_token.assert_awaited_with(MANAGEMENT_SCOPE)

    def test_stop_uses_body_overrides(self, admin_client, mgmt_http):
        mgmt_http.post.return_value = arm_response(200, {"name": "other-db"})

        response = admin_client.post(
            "/api/azure-postgres/stop",
            json={"resourceGroup": "rg-other", "serverName": "other-db"},
        )

        assert response.json() == {"status": "stopped", "details": {"name": "other-db"}}
        url = mgmt_http.post.call_args.args[0]
        assert "/resourceGroups/rg-other/" in url
        assert "/flexibleServers/other-db/stop?" in url
        assert "/subscriptions/sub-123/" in url

    def test_upstream_error_is_passed_through(self, admin_client, mgmt_http):
        error_body = {"error": {"code": "ServerIsBusy", "message": "Server is busy"}}
        mgmt_http.post.return_value = arm_response(409, error_body)

        response = admin_client.post("/api/azure-postgres/start")

        assert response.status_code == 409
        assert response.json() == {"error": error_body}

    def test_network_failure_returns_500(self, admin_client, mgmt_http):
        mgmt_http.post.side_effect = httpx.ConnectTimeout("timed out")

        response = admin_client.post("/api/azure-postgres/stop")

        assert response.status_code == 500
        assert "unreachable" in response.json()["error"]

    def test_missing_target_returns_400(self, client, app, mgmt_http):
        app.state.management.settings = make_settings(
            AZURE_RESOURCE_GROUP=None,
            AZURE_PG_SERVER_NAME=None,
        )
        sign_in(client, app, "admin@contoso.com")

        response = client.post("/api/azure-postgres/start")

        assert response.status_code == 400
        assert response.json() == {"error": MISSING_TARGET_MESSAGE}
        mgmt_http.post.assert_not_awaited()

    @pytest.mark.parametrize(
        "error",
        [
            ServiceRequestError("connection refused"),
            ClientAuthenticationError("invalid client secret"),
        ],
    )
    def test_token_failure_message_is_passed_through(self, admin_client, management, mgmt_http, error):
        management._credential.get_token.side_effect = error

        response = admin_client.post("/api/azure-postgres/start")

        assert response.status_code == 500
        assert response.json()["error"].startswith("Failed to acquire management token")
        mgmt_http.post.assert_not_awaited()

    def test_non_object_body_returns_json_error(self, admin_client, mgmt_http):
        response = admin_client.post("/api/azure-postgres/start", json=["rg", "db"])

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}
        mgmt_http.post.assert_not_awaited()

    def test_staff_forbidden(self, staff_client, mgmt_http):
        response = staff_client.post("/api/azure-postgres/start")

        assert response.status_code == 403
        mgmt_http.post.assert_not_awaited()

    def test_defaults_for_admin(self, admin_client):
        response = admin_client.get("/api/azure-postgres/defaults")

        assert response.json() == {
            "resourceGroup": "rg-farm",
            "serverName": "farmdb",
            "subscriptionId": "sub-123",
        }

    def test_defaults_forbidden_for_staff(self, staff_client):
        assert staff_client.get("/api/azure-postgres/defaults").status_code == 403


class TestManagementClient:

    def test_resolve_target_prefers_request_values(self, settings):
        management = AzurePostgresManagement(settings, http_client=AsyncMock())

        target = management.resolve_target(ServerTarget(serverName="db-2"))

        assert target == ServerTarget(
            resourceGroup="rg-farm", serverName="db-2", subscriptionId="sub-123"
        )

    def test_url_segments_are_escaped(self, settings):
        management = AzurePostgresManagement(settings, http_client=AsyncMock())

        url = management.server_action_url(
            ServerTarget(resourceGroup="rg one", serverName="db/x", subscriptionId="s"),
            "start",
        )

        assert "/resourceGroups/rg%20one/" in url
        assert "/flexibleServers/db%2Fx/start" in url

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_configuration_error(self):
        management = AzurePostgresManagement(
            make_settings(AZURE_CLIENT_SECRET=None),
            http_client=AsyncMock(),
        )

        with pytest.raises(ConfigurationError) as exc_info:
            await management.start()

        assert "AZURE_CLIENT_SECRET" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_subscription_raises(self):
        credential = AsyncMock()
        credential.get_token.return_value = Mock(token="t")
        management = AzurePostgresManagement(
            make_settings(AZURE_SUBSCRIPTION_ID=None),
            http_client=AsyncMock(),
            credential=credential,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            await management.stop()

        assert "subscription" in exc_info.value.message

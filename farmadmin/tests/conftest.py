"""
Shared fixtures for the farm admin test suite.

``farmadmin.main`` builds a module-level app at import time, so the required
environment is seeded before anything from the package is imported.
"""

import os

os.environ.setdefault("ENTRA_TENANT_ID", "test-tenant-id")
os.environ.setdefault("ENTRA_CLIENT_ID", "test-client-id")
os.environ.setdefault("ENTRA_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("ENTRA_REDIRECT_URI", "http://localhost:3000/auth/redirect")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("PGHOST", "farmdb.postgres.database.azure.com")
os.environ.setdefault("PGUSER", "farm-admin-app")

from unittest.mock import AsyncMock, Mock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from farmadmin.auth.oidc import EntraClient
from farmadmin.auth.session import InMemorySessionStore
from farmadmin.azure_postgres.management import AzurePostgresManagement
from farmadmin.config import Settings
from farmadmin.db.pool import QueryResult
from farmadmin.main import create_app

ADMIN_UPN = "Admin@Contoso.com"
STAFF_UPN = "staff@contoso.com"


# ============================================================================
# Settings and Components
# ============================================================================

def make_settings(**overrides) -> Settings:
    values = dict(
        ENTRA_TENANT_ID="test-tenant-id",
        ENTRA_CLIENT_ID="test-client-id",
        ENTRA_CLIENT_SECRET="test-client-secret",
        ENTRA_REDIRECT_URI="http://localhost:3000/auth/redirect",
        SESSION_SECRET="test-session-secret-0123456789abcdef",
        ADMIN_UPNS="admin@contoso.com, second-admin@contoso.com",
        PGHOST="farmdb.postgres.database.azure.com",
        PGUSER="farm-admin-app",
        AZURE_TENANT_ID="mgmt-tenant",
        AZURE_CLIENT_ID="mgmt-client",
        AZURE_CLIENT_SECRET="mgmt-secret",
        AZURE_SUBSCRIPTION_ID="sub-123",
        AZURE_RESOURCE_GROUP="rg-farm",
        AZURE_PG_SERVER_NAME="farmdb",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def db_pool():
    """Stand-in for TokenRefreshingPool; tests set run_query's return value."""
    pool = Mock()
    pool.run_query = AsyncMock(return_value=QueryResult(rows=[], rowcount=0))
    return pool


@pytest.fixture
def mgmt_http():
    return AsyncMock()


@pytest.fixture
def management(settings, mgmt_http):
    credential = AsyncMock()
    credential.get_token.return_value = Mock(token="mgmt-access-token", expires_on=9999999999)
    return AzurePostgresManagement(settings, http_client=mgmt_http, credential=credential)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def app(settings, session_store, db_pool, management):
    return create_app(
        settings,
        session_store=session_store,
        oidc_client=EntraClient(settings, http_client=AsyncMock()),
        db_pool=db_pool,
        management=management,
    )


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


# ============================================================================
# Sign-in Helpers
# ============================================================================

def id_claims(username: str, name: str = "Test User") -> dict:
    return {
        "name": name,
        "preferred_username": username,
        "oid": "00000000-0000-0000-0000-000000000001",
        "tid": "test-tenant-id",
    }


def start_login(client: TestClient, **params) -> str:
    """Hit /auth/login and return the state sent to Entra."""
    response = client.get("/auth/login", params=params)
    assert response.status_code == 302
    query = parse_qs(urlparse(response.headers["location"]).query)
    return query["state"][0]


def sign_in(client: TestClient, app, username: str = STAFF_UPN):
    """Complete a login with a mocked code exchange."""
    state = start_login(client)
    with patch.object(
        app.state.oidc_client,
        "exchange_code",
        AsyncMock(return_value=id_claims(username)),
    ):
        response = client.get("/auth/redirect", params={"code": "auth-code", "state": state})
    assert response.status_code == 302
    assert response.headers["location"] == "/"
    return response


@pytest.fixture
def staff_client(client, app):
    sign_in(client, app, STAFF_UPN)
    return client


@pytest.fixture
def admin_client(client, app):
    sign_in(client, app, ADMIN_UPN)
    return client

"""API tests for the connections, dashboard and admin routers"""

from datetime import UTC, datetime, timedelta

import pytest
from dependency_injector import providers
from httpx import ASGITransport, AsyncClient

from app.container import get_wire_container
from app.create_app import create_app
from app.models import CloudStorageErrorType, ConfigOverride, ConsolidatedStatus
from tests.fakes import make_credential, make_health

API_HEADERS = {"Authorization": "Bearer test-api-token"}
ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}


@pytest.fixture
def container(tracker, connection_tester, config_service, dashboard):
    container = get_wire_container()
    container.controllers.health_tracker.override(providers.Object(tracker))
    container.controllers.connection_tester.override(providers.Object(connection_tester))
    container.controllers.config_service.override(providers.Object(config_service))
    container.controllers.dashboard.override(providers.Object(dashboard))
    yield container
    container.unwire()


@pytest.fixture
async def client(container):
    """HTTP client for API testing"""
    transport = ASGITransport(app=create_app(with_database=False))
    async with AsyncClient(transport=transport, base_url="http://test", headers=API_HEADERS) as ac:
        yield ac


def seed_healthy(credential_repo, health_repo, user_id=1):
    current = datetime.now(UTC)
    credential_repo.seed(make_credential(user_id=user_id, expires_at=current + timedelta(hours=2)))
    health_repo.seed(make_health(user_id=user_id, last_successful_operation_at=current - timedelta(minutes=1)))


class TestConnectionRoutes:
    """Tests for /v1/connections"""

    @pytest.mark.asyncio
    async def test_status_of_healthy_connection(self, client, credential_repo, health_repo):
        """
        GIVEN a connection that worked a minute ago
        WHEN requesting its status
        THEN should return healthy with the matching message
        """
        # GIVEN
        seed_healthy(credential_repo, health_repo)

        # WHEN
        response = await client.get("/v1/connections/1/google-drive/status")

        # THEN
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["consolidated_status"] == ConsolidatedStatus.healthy.value
        assert data["message"] == "Connected to Google Drive and working properly"
        assert response.json()["request_id"]

    @pytest.mark.asyncio
    async def test_status_message_matches_reconnection(self, client, credential_repo, health_repo):
        credential_repo.seed(make_credential(requires_reconnection=True))
        health_repo.seed(make_health(last_error_type=CloudStorageErrorType.service_unavailable, consecutive_failures=5))

        response = await client.get("/v1/connections/1/google-drive/status")

        data = response.json()["data"]
        assert data["consolidated_status"] == "authentication_required"
        assert data["message"] == "Authentication required - please reconnect your Google Drive account"

    @pytest.mark.asyncio
    async def test_unknown_provider_is_rejected(self, client):
        response = await client.get("/v1/connections/1/dropbox/status")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_health_details(self, client, credential_repo, health_repo):
        credential_repo.seed(
            make_credential(expires_at=datetime.now(UTC) + timedelta(hours=1), requires_reconnection=True)
        )

        response = await client.get("/v1/connections/1/google-drive/health")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["consolidated_status"] == "authentication_required"
        assert data["status"] == "unhealthy"
        assert data["requires_reconnection"] is True
        assert data["consecutive_failures"] == 0

    @pytest.mark.asyncio
    async def test_manual_test_then_rate_limited(self, client, credential_repo, health_repo):
        """
        GIVEN a healthy connection
        WHEN testing it twice in a row
        THEN should run the first test and refuse the second with a Retry-After header
        """
        # GIVEN
        seed_healthy(credential_repo, health_repo)

        # WHEN
        first = await client.post("/v1/connections/1/google-drive/test")
        second = await client.post("/v1/connections/1/google-drive/test")

        # THEN
        assert first.status_code == 200
        assert first.json()["data"]["validated"] is True
        assert first.json()["data"]["consolidated_status"] == "healthy"
        assert second.status_code == 429
        assert second.json()["error"] == "rate_limited"
        assert int(second.headers["Retry-After"]) == second.json()["retry_after"]


class TestDashboardRoutes:
    """Tests for /v1/dashboard"""

    @pytest.mark.asyncio
    async def test_dashboard_snapshot(self, client, credential_repo, health_repo):
        seed_healthy(credential_repo, health_repo)
        health_repo.rows[1].consolidated_status = ConsolidatedStatus.healthy

        response = await client.get("/v1/dashboard/google-drive", params={"window_hours": 6})

        assert response.status_code == 200
        summary = response.json()["data"]["summary"]
        assert summary["window_hours"] == 6
        assert summary["connections"]["healthy"] == 1
        assert summary["success_rate"] == 100.0

    @pytest.mark.asyncio
    async def test_window_is_bounded(self, client):
        response = await client.get("/v1/dashboard/google-drive", params={"window_hours": 0})
        assert response.status_code == 422


class TestApiAuthentication:
    """Tests for the bearer token on the connection and dashboard routers"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method, path",
        [
            ("GET", "/v1/connections/1/google-drive/status"),
            ("GET", "/v1/connections/1/google-drive/health"),
            ("POST", "/v1/connections/1/google-drive/test"),
            ("GET", "/v1/dashboard/google-drive"),
        ],
    )
    async def test_wrong_token_is_rejected(self, client, provider_client, method, path):
        """
        GIVEN a caller with an unknown bearer token
        WHEN calling a connection or dashboard endpoint
        THEN should reject it with 401 before touching any connection
        """
        # GIVEN
        headers = {"Authorization": "Bearer nope"}

        # WHEN
        response = await client.request(method, path, headers=headers)

        # THEN
        assert response.status_code == 401
        assert provider_client.refresh_calls == []
        assert provider_client.validate_calls == []

    @pytest.mark.asyncio
    async def test_admin_token_is_accepted(self, client, credential_repo, health_repo):
        seed_healthy(credential_repo, health_repo)

        response = await client.get("/v1/connections/1/google-drive/status", headers=ADMIN_HEADERS)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_service_token_cannot_use_admin_routes(self, client):
        response = await client.get("/v1/admin/config", headers=API_HEADERS)

        assert response.status_code == 401


class TestAdminRoutes:
    """Tests for /v1/admin"""

    @pytest.mark.asyncio
    async def test_wrong_token_is_rejected(self, client):
        response = await client.get("/v1/admin/config", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key."}

    @pytest.mark.asyncio
    async def test_get_config(self, client):
        response = await client.get("/v1/admin/config", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["settings"]["timing"]["max_retry_attempts"] == 5
        assert "features.proactive_refresh" in data["requires_confirmation"]

    @pytest.mark.asyncio
    async def test_update_config(self, client, config_service, config_override_repo):
        """
        GIVEN an admin token
        WHEN setting the retry limit to "7"
        THEN should store and return the integer 7 and record who changed it
        """
        # WHEN
        response = await client.put(
            "/v1/admin/config", json={"key": "timing.max_retry_attempts", "value": "7"}, headers=ADMIN_HEADERS
        )

        # THEN
        assert response.status_code == 200
        assert response.json()["data"] == {"key": "timing.max_retry_attempts", "value": 7}
        assert config_service.get("timing.max_retry_attempts") == 7
        (row,) = await config_override_repo.get_all()
        assert row.updated_by == "admin"

    @pytest.mark.asyncio
    async def test_update_needs_confirmation(self, client):
        response = await client.put(
            "/v1/admin/config", json={"key": "features.proactive_refresh", "value": False}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 409
        assert response.json()["error"] == "confirmation_required"

    @pytest.mark.asyncio
    async def test_update_out_of_range(self, client):
        response = await client.put(
            "/v1/admin/config", json={"key": "timing.max_retry_attempts", "value": 42}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_data"

    @pytest.mark.asyncio
    async def test_update_of_fixed_key_is_forbidden(self, client):
        response = await client.put(
            "/v1/admin/config", json={"key": "timing.coordination_lock_ttl", "value": 10}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_validate_config(self, client):
        response = await client.get("/v1/admin/config/validate", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["data"] == {"valid": True, "errors": []}

    @pytest.mark.asyncio
    async def test_clear_cache_reloads(self, client, config_override_repo):
        config_override_repo.seed(ConfigOverride(key="notifications.throttle_hours", value="6", updated_by="ops"))

        response = await client.post("/v1/admin/config/clear-cache", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["settings"]["notifications"]["throttle_hours"] == 6
        assert response.json()["data"]["overridden"] == ["notifications.throttle_hours"]


class TestOpenApi:
    """Tests for the generated OpenAPI schema"""

    @pytest.mark.asyncio
    async def test_path_parameters_document_examples(self, client):
        """
        GIVEN the connections router
        WHEN reading the OpenAPI schema
        THEN should list path parameter examples and the bearer scheme on the route
        """
        # WHEN
        response = await client.get("/openapi.json")

        # THEN
        assert response.status_code == 200
        operation = response.json()["paths"]["/v1/connections/{user_id}/{provider}/status"]["get"]
        parameters = {parameter["name"]: parameter for parameter in operation["parameters"]}
        assert parameters["user_id"]["schema"]["examples"] == [42]
        assert "example" not in parameters["user_id"]["schema"]
        assert operation["security"] == [{"BearerAuth": []}]

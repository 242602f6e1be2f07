"""Application integration tests.

Cover health probes, lifespan wiring and the uniform ``{"error": ...}`` body
produced by the exception handlers.
"""
import pytest
from fastapi import FastAPI, status
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import app, mount_routers


def test_liveness_probe_returns_200(client: TestClient):
    """Verify liveness probe returns 200 OK when process is running.

    Args:
        client: FastAPI test client fixture.
    """
    response = client.get("/health/live")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "alive"}


def test_readiness_probe_happy_path(client: TestClient):
    """Verify readiness probe returns 200 once the lifespan has completed.

    Args:
        client: FastAPI test client fixture.
    """
    response = client.get("/health/ready")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ready"}


def test_readiness_probe_unhealthy_state(client: TestClient, monkeypatch):
    """Verify readiness probe returns 503 with an error body when not ready.

    Args:
        client: FastAPI test client fixture.
        monkeypatch: pytest fixture for patching attributes.
    """
    monkeypatch.setattr(app.state, "is_ready", False)
    response = client.get("/health/ready")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert "System is starting up" in response.json()["error"]


def test_legacy_health_deprecation(client: TestClient):
    """Verify legacy health endpoint returns deprecation notice.

    Args:
        client: FastAPI test client fixture.
    """
    response = client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert "deprecated" in response.json().get("note", "").lower()


def test_lifespan_builds_token_system_and_local_provider(client: TestClient):
    """Verify startup attaches the token system and registers the local provider."""
    assert app.state.token_system is not None
    registry = app.state.loader.registry
    assert [p.name for p in registry.get_providers()] == ["local"]


def test_unknown_route_returns_error_body(client: TestClient):
    """Verify 404s use the error envelope rather than FastAPI's detail key."""
    response = client.get("/api/does-not-exist")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert "error" in response.json()


def test_unhandled_exception_returns_500_error_body(mock_settings, monkeypatch):
    """Verify an unexpected failure yields 500 with a generic error body.

    The process keeps serving: a follow-up request still succeeds.
    """
    monkeypatch.setattr("app.main.get_settings", lambda: mock_settings)

    def explode():
        raise RuntimeError("boom")

    with TestClient(app, raise_server_exceptions=False) as test_client:
        monkeypatch.setattr(app.state.token_system.metrics, "get_summary", lambda period: explode())
        response = test_client.get("/api/tokens/summary")
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Internal Server Error"}

        assert test_client.get("/health/live").status_code == status.HTTP_200_OK


@pytest.mark.parametrize("raw,summary_path", [
    ("api/", "/api/tokens/summary"),
    ("/v2/", "/v2/tokens/summary"),
    ("/", "/tokens/summary"),
])
def test_routers_mounted_under_configured_prefix(raw, summary_path):
    """Verify the read API follows the validated API_PREFIX setting."""
    application = FastAPI()
    mount_routers(application, Settings(API_PREFIX=raw, _env_file=None).API_PREFIX)
    paths = {route.path for route in application.routes}

    assert summary_path in paths
    assert summary_path.replace("tokens/summary", "providers/health") in paths


def test_application_uses_default_prefix():
    paths = {route.path for route in app.routes}
    assert "/api/tokens/efficiency" in paths

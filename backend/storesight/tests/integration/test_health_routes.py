"""Integration tests for /api/health and the global error handler."""

import pytest
from fastapi.testclient import TestClient

from storesight.api.routes import health


def test_redis_disabled_without_url(client):
    assert client.get("/api/health/redis").json() == {"status": "disabled", "backend": "memory"}


def test_database_unconfigured(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    body = client.get("/api/health/database").json()
    assert body["status"] == "unhealthy"


def test_summary_degraded_without_database(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    body = client.get("/api/health/summary").json()

    assert body["application"] == "storesight-backend"
    assert body["status"] == "degraded"
    assert body["redis"]["status"] == "disabled"
    assert isinstance(body["timestamp"], int)


def test_summary_healthy(client, monkeypatch):
    monkeypatch.setattr(health, "check_database", lambda: {"status": "healthy", "response_time_ms": 1.0})
    assert client.get("/api/health/summary").json()["status"] == "healthy"


def test_redis_configured_but_down(client, monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6390/0")
    class DownRedis:
        backend = "redis"

        def ping(self):
            return False

    monkeypatch.setattr(health, "RedisClient", DownRedis)

    body = client.get("/api/health/redis").json()

    assert body["status"] == "unhealthy"


@pytest.mark.parametrize("database,redis_status,expected", [
    ({"status": "healthy"}, {"status": "healthy"}, "healthy"),
    ({"status": "healthy"}, {"status": "disabled"}, "healthy"),
    ({"status": "healthy"}, {"status": "unhealthy"}, "degraded"),
    ({"status": "unhealthy"}, {"status": "healthy"}, "degraded"),
])
def test_overall_status(database, redis_status, expected):
    assert health.overall_status(database, redis_status) == expected


def test_unhandled_errors_return_json(app, monkeypatch):
    def boom():
        raise RuntimeError("kaboom")

    monkeypatch.setattr(health, "check_database", boom)

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/api/health/database")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Internal server error",
        "detail": "An unexpected error occurred",
    }

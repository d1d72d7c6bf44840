"""Tests for the health endpoints and CORS handling of the ASGI app."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import main
from config.models import Config, CORSConfig
from core.store import MemoryAggregateStore


@pytest.fixture
def client(monkeypatch):
    """A client that skips the lifespan, so nothing is wired by default."""
    monkeypatch.setattr(main, "_config", None)
    monkeypatch.setattr(main, "_services", None)
    return TestClient(main.app)


def _services(store) -> MagicMock:
    services = MagicMock()
    services.store = store
    services.controller.running_updates = 1
    return services


def test_root_and_liveness(client):
    assert client.get("/").json()["service"] == "ledger-sync"
    assert client.get("/health").json() == {"status": "healthy"}


def test_not_ready_before_startup(client):
    response = client.get("/health/ready")

    assert response.status_code == 503
    body = response.json()
    assert body["checks"] == {"config": "unhealthy", "store": "unhealthy: not initialized"}
    assert body["running_updates"] == 0


def test_ready_with_services(client, monkeypatch):
    monkeypatch.setattr(main, "_config", Config())
    monkeypatch.setattr(main, "_services", _services(MemoryAggregateStore()))

    response = client.get("/health/ready")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"] == {"backend": "memory"}
    assert body["running_updates"] == 1


def test_store_failure_not_ready(client, monkeypatch):
    store = MagicMock()
    store.get_last_update_start = AsyncMock(side_effect=ConnectionError("refused"))
    monkeypatch.setattr(main, "_config", Config())
    monkeypatch.setattr(main, "_services", _services(store))

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["store"] == "unhealthy: refused"


def test_cors_configured_origin(client, monkeypatch):
    config = Config(cors=CORSConfig(allowed_origins=["https://app.example"]))
    monkeypatch.setattr(main, "_config", config)

    allowed = client.get("/health", headers={"Origin": "https://app.example"})
    other = client.get("/health", headers={"Origin": "https://evil.example"})

    assert allowed.headers["access-control-allow-origin"] == "https://app.example"
    assert "access-control-allow-origin" not in other.headers

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from rate_engine.core.app_factory import create_app
from rate_engine.core.config import EngineSettings
from rate_engine.engine.service import RateLimitingService


@pytest.fixture
def client() -> TestClient:
    engine = RateLimitingService(EngineSettings(seed_default_rules=False, cleanup_enabled=False))
    yield TestClient(create_app(engine=engine))
    engine.shutdown()


def test_preserves_incoming_request_id_header(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "test-request-id-123"})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == "test-request-id-123"


def test_generates_request_id_when_missing(client: TestClient) -> None:
    resp = client.post(
        "/v1/decisions",
        json={"ip_address": "10.0.0.1", "endpoint": "/api/items", "method": "GET"},
    )

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_request_id_is_echoed_on_errors(client: TestClient) -> None:
    resp = client.get(
        "/v1/rules/unknown",
        headers={"X-Request-ID": "req-404", "X-API-Key": "test-api-key-123"},
    )

    assert resp.status_code == 404
    assert resp.headers["X-Request-ID"] == "req-404"
    assert resp.json()["error"]["request_id"] == "req-404"

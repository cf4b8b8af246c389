"""Integration tests for the admission middleware."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from app.adapters.rate_limit.record import LimiterKind
from app.core.app_factory import create_app
from app.core.config import settings
from app.core.errors import DeserializationError, StorageUnavailableError
from app.core.rate_limit import (
    RATE_LIMIT_EXCEEDED_MESSAGE,
    get_rate_limiter_service,
    is_exempt_path,
    parse_exempt_paths,
)
from app.services.rate_limiter_service import RateLimiterService


@pytest.fixture
def limits(monkeypatch: pytest.MonkeyPatch):
    """Small budgets on the in-memory backend."""
    monkeypatch.setattr(settings.rate_limit, "rate_limit_backend", "memory")
    monkeypatch.setattr(settings.rate_limit, "rate_limit_ip", 3)
    monkeypatch.setattr(settings.rate_limit, "rate_limit_token", 5)
    monkeypatch.setattr(settings.rate_limit, "enable_ip_limiter", True)
    monkeypatch.setattr(settings.rate_limit, "enable_token_limiter", True)
    monkeypatch.setattr(settings.rate_limit, "rate_limit_trust_forwarded_headers", True)
    monkeypatch.setattr(settings.rate_limit, "rate_limit_decision_timeout_seconds", 5.0)
    monkeypatch.setattr(settings.rate_limit, "rate_limit_token_header", "API_KEY")
    monkeypatch.setattr(settings.rate_limit, "rate_limit_exempt_paths", "/health")
    monkeypatch.setattr(settings.rate_limit, "rate_limit_exempt_path_prefixes", "/v1/limits/")
    return settings.rate_limit


@pytest.fixture
def client(limits) -> TestClient:
    return TestClient(create_app())


def _ip(address: str) -> dict[str, str]:
    return {"X-Forwarded-For": address}


def test_ip_requests_over_limit_get_429(client: TestClient) -> None:
    for _ in range(3):
        resp = client.get("/", headers=_ip("192.168.1.1"))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Hello, World!"}

    resp = client.get("/", headers=_ip("192.168.1.1"))
    assert resp.status_code == 429
    assert resp.json() == {"error": RATE_LIMIT_EXCEEDED_MESSAGE}

    # Other clients are unaffected.
    assert client.get("/", headers=_ip("192.168.1.2")).status_code == 200


def test_token_takes_precedence_over_ip(client: TestClient) -> None:
    headers = {"API_KEY": "test-token", **_ip("192.168.1.1")}

    statuses = [client.get("/", headers=headers).status_code for _ in range(6)]

    assert statuses == [200, 200, 200, 200, 200, 429]
    # The IP budget was never consumed by token requests.
    assert client.get("/", headers=_ip("192.168.1.1")).status_code == 200


def test_first_forwarded_hop_is_used(client: TestClient) -> None:
    for _ in range(3):
        client.get("/", headers=_ip("10.0.0.7, 172.16.0.1"))

    assert client.get("/", headers=_ip("10.0.0.7")).status_code == 429


def test_x_real_ip_is_used_without_forwarded_for(client: TestClient) -> None:
    for _ in range(3):
        assert client.get("/", headers={"X-Real-IP": "10.0.0.8"}).status_code == 200
    assert client.get("/", headers={"X-Real-IP": "10.0.0.8"}).status_code == 429


def test_invalid_ip_identifier_returns_400(client: TestClient) -> None:
    resp = client.get("/", headers=_ip("not-an-ip"))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_ip_address"


def test_disabled_ip_limiter_admits_everything(client: TestClient, limits) -> None:
    limits.enable_ip_limiter = False

    statuses = {client.get("/", headers=_ip("192.168.1.1")).status_code for _ in range(10)}

    assert statuses == {200}


def test_health_is_exempt(client: TestClient) -> None:
    for _ in range(10):
        resp = client.get("/health", headers=_ip("192.168.1.1"))
        assert resp.status_code == 200
    assert resp.json()["backend"] == "memory"


def test_throttled_response_carries_request_id(client: TestClient) -> None:
    for _ in range(3):
        client.get("/", headers=_ip("192.168.1.9"))

    resp = client.get("/", headers={**_ip("192.168.1.9"), "X-Request-ID": "req-429"})

    assert resp.status_code == 429
    assert resp.headers["X-Request-ID"] == "req-429"


@pytest.mark.parametrize(
    "error",
    [
        StorageUnavailableError(code="storage_unavailable", message="Redis get failed"),
        DeserializationError(code="limiter_deserialization_failed", message="bad payload"),
    ],
)
def test_decision_errors_fail_closed(client: TestClient, error: Exception) -> None:
    service = Mock(spec=RateLimiterService)
    service.clock = Mock(return_value=1000.0)
    service.is_allowed.side_effect = error

    with patch("app.core.rate_limit.get_rate_limiter_service", return_value=service):
        resp = client.get("/", headers=_ip("192.168.1.1"))

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_decision_gets_a_deadline(client: TestClient, limits) -> None:
    limits.rate_limit_decision_timeout_seconds = 2.5
    service = Mock(spec=RateLimiterService)
    service.clock = Mock(return_value=1000.0)
    service.is_allowed.return_value = True

    with patch("app.core.rate_limit.get_rate_limiter_service", return_value=service):
        resp = client.get("/", headers={"API_KEY": "abc"})

    assert resp.status_code == 200
    service.is_allowed.assert_called_once_with("abc", True, deadline=1002.5)


def test_service_is_rebuilt_when_config_changes(limits) -> None:
    first = get_rate_limiter_service()
    assert get_rate_limiter_service() is first

    limits.rate_limit_ip = 42
    second = get_rate_limiter_service()

    assert second is not first
    assert second.limit_for(LimiterKind.IP) == 42


def test_parse_exempt_paths() -> None:
    assert parse_exempt_paths("/health, /metrics ,") == {"/health", "/metrics"}
    assert parse_exempt_paths(None) == set()


def test_unrelated_settings_keep_limiter_state(client: TestClient, limits) -> None:
    for _ in range(3):
        client.get("/", headers=_ip("192.168.1.3"))
    service = get_rate_limiter_service()

    limits.rate_limit_exempt_paths = "/health,/metrics"
    limits.rate_limit_token_header = "X-Token"
    limits.rate_limit_decision_timeout_seconds = 1.0

    assert get_rate_limiter_service() is service
    assert client.get("/", headers=_ip("192.168.1.3")).status_code == 429


def test_is_exempt_path(limits) -> None:
    limits.rate_limit_exempt_paths = "/health"
    limits.rate_limit_exempt_path_prefixes = "/v1/limits/,/internal/"

    assert is_exempt_path("/health")
    assert is_exempt_path("/v1/limits/ip/10.0.0.1")
    assert is_exempt_path("/internal/debug")
    assert not is_exempt_path("/health/deep")
    assert not is_exempt_path("/")

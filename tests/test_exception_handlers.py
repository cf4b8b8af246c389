"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    DeserializationError,
    InvalidBackendTypeError,
    InvalidIdentifierError,
    StorageUnavailableError,
    ValidationAppError,
)
from app.core.exception_handlers import (
    general_exception_handler,
    setup_exception_handlers,
    status_code_for,
)


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (ValidationAppError(code="v", message="v"), 400),
        (InvalidIdentifierError(code="invalid_ip_address", message="bad ip"), 400),
        (AuthenticationAppError(code="invalid_api_key", message="no"), 403),
        (StorageUnavailableError(code="storage_unavailable", message="down"), 503),
        (DeserializationError(code="limiter_deserialization_failed", message="bad"), 500),
        (InvalidBackendTypeError(code="invalid_backend_type", message="?"), 500),
    ],
)
def test_status_code_for(error: AppError, status: int) -> None:
    assert status_code_for(error) == status


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_invalid_identifier_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-identifier")
        async def endpoint():
            raise InvalidIdentifierError(
                code="invalid_ip_address",
                message="Identifier is not a valid IP address",
                details={"kind": "ip"},
            )

        response = client.get("/test-identifier")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "invalid_ip_address"
        assert data["error"]["message"] == "Identifier is not a valid IP address"
        assert data["error"]["details"] == {"kind": "ip"}
        assert "request_id" in data["error"]

    def test_storage_unavailable_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-storage")
        async def endpoint():
            raise StorageUnavailableError(
                code="storage_unavailable",
                message="Limiter storage is unavailable",
                details={"backend": "networked"},
            )

        response = client.get("/test-storage")

        assert response.status_code == 503
        assert response.json()["error"]["details"]["backend"] == "networked"

    def test_authentication_error_returns_403(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-auth")
        async def endpoint():
            raise AuthenticationAppError(code="invalid_api_key", message="Invalid API key")

        response = client.get("/test-auth")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "invalid_api_key"

    def test_details_omitted_when_absent(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-format")
        async def endpoint():
            raise ValidationAppError(code="test", message="test")

        data = client.get("/test-format").json()

        assert set(data["error"]) == {"code", "message", "request_id"}


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_general_exception_handler_hides_internals(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: redis pool exhausted")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "redis pool" not in data["error"]["message"]
        assert "RuntimeError" not in bytes(response.body).decode()

    def test_unexpected_exception_through_app(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-crash")
        async def endpoint():
            raise KeyError("secret-internal")

        response = client.get("/test-crash")

        assert response.status_code == 500
        assert "secret-internal" not in response.text


def test_setup_exception_handlers_registers_handlers() -> None:
    app = FastAPI()

    setup_exception_handlers(app)
    setup_exception_handlers(app)

    assert AppError in app.exception_handlers
    assert Exception in app.exception_handlers

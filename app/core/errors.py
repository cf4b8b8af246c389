"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    kind: str
    key_hash: str
    backend: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidIdentifierError(ValidationAppError):
    """Raised when a limiter identifier is missing, ambiguous or malformed."""


class ConfigurationAppError(AppError):
    """Raised when the service is wired with an unusable configuration."""


class InvalidBackendTypeError(ConfigurationAppError):
    """Raised when an unknown storage backend tag is requested."""


class MissingConnectionError(ConfigurationAppError):
    """Raised when the networked backend is requested without a client."""


class StorageAppError(AppError):
    """Raised when the limiter storage backend fails."""


class SerializationError(StorageAppError):
    """Raised when a limiter record cannot be encoded for storage."""


class DeserializationError(StorageAppError):
    """Raised when a stored payload cannot be decoded into a limiter record."""


class StorageUnavailableError(StorageAppError):
    """Raised on backend I/O failures, lock timeouts and exceeded deadlines."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""

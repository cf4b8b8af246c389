"""Factory functions for limiter storage backends."""

from __future__ import annotations

import logging

import redis

from app.adapters.rate_limit.base import AbstractLimiterRepository, StorageBackendType
from app.adapters.rate_limit.in_memory import InMemoryLimiterRepository
from app.adapters.rate_limit.redis_backend import RedisLimiterRepository
from app.core.config import RedisSettings, Settings
from app.core.errors import (
    InvalidBackendTypeError,
    MissingConnectionError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

_BACKEND_ALIASES = {"redis": StorageBackendType.NETWORKED}


def parse_backend_type(tag: str | StorageBackendType) -> StorageBackendType:
    """Resolve a configuration tag (case-insensitive) to a backend type.

    Raises:
        InvalidBackendTypeError: If the tag is not a known backend.
    """
    if isinstance(tag, StorageBackendType):
        return tag
    normalized = (tag or "").strip().lower()
    if normalized in _BACKEND_ALIASES:
        return _BACKEND_ALIASES[normalized]
    try:
        return StorageBackendType(normalized)
    except ValueError as exc:
        supported = ", ".join(t.value for t in StorageBackendType)
        raise InvalidBackendTypeError(
            code="invalid_backend_type",
            message=f"Unknown rate limiter backend: '{tag}'. Supported backends: {supported}",
        ) from exc


def create_limiter_repository(
    backend_type: str | StorageBackendType,
    connection: redis.Redis | None = None,
    *,
    default_ttl_seconds: int = 86400,
    lock_timeout_seconds: float = 5.0,
    lock_blocking_timeout_seconds: float = 2.0,
) -> AbstractLimiterRepository:
    """Instantiate the repository selected by ``backend_type``.

    Args:
        backend_type: ``memory`` or ``networked`` (``redis`` is accepted too).
        connection: Live Redis client, required for the networked backend.

    Returns:
        AbstractLimiterRepository: Configured repository instance.

    Raises:
        InvalidBackendTypeError: If the tag is unknown.
        MissingConnectionError: If the networked backend has no client.
    """
    resolved = parse_backend_type(backend_type)

    if resolved is StorageBackendType.MEMORY:
        return InMemoryLimiterRepository()

    if connection is None:
        raise MissingConnectionError(
            code="missing_backend_connection",
            message="The networked rate limiter backend requires a Redis client",
            details={"hint": "Pass a redis.Redis instance or set RATE_LIMIT_BACKEND=memory"},
        )
    return RedisLimiterRepository(
        connection,
        default_ttl_seconds=default_ttl_seconds,
        lock_timeout_seconds=lock_timeout_seconds,
        lock_blocking_timeout_seconds=lock_blocking_timeout_seconds,
    )


def create_redis_client(redis_settings: RedisSettings) -> redis.Redis:
    """Build a Redis client from settings and verify the connection.

    Raises:
        StorageUnavailableError: If Redis does not answer the startup ping.
    """
    client = redis.Redis(
        host=redis_settings.host,
        port=redis_settings.port,
        password=redis_settings.password or None,
        db=redis_settings.db,
        socket_timeout=redis_settings.socket_timeout_seconds,
        socket_connect_timeout=redis_settings.socket_timeout_seconds,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.error(
            "rate_limit.redis_unreachable",
            extra={
                "redis_host": redis_settings.host,
                "redis_port": redis_settings.port,
                "redis_db": redis_settings.db,
                "error_type": type(exc).__name__,
            },
        )
        raise StorageUnavailableError(
            code="storage_unavailable",
            message=f"Could not connect to Redis at {redis_settings.host}:{redis_settings.port}",
            details={"backend": StorageBackendType.NETWORKED.value},
        ) from exc

    logger.info(
        "rate_limit.redis_connected",
        extra={
            "redis_host": redis_settings.host,
            "redis_port": redis_settings.port,
            "redis_db": redis_settings.db,
        },
    )
    return client


def build_limiter_repository(config: Settings) -> AbstractLimiterRepository:
    """Create the repository described by the application settings."""
    backend_type = parse_backend_type(config.rate_limit.rate_limit_backend)
    connection = None
    if backend_type is StorageBackendType.NETWORKED:
        connection = create_redis_client(config.redis)

    repository = create_limiter_repository(
        backend_type,
        connection,
        default_ttl_seconds=config.rate_limit.rate_limit_default_ttl_seconds,
        lock_timeout_seconds=config.redis.lock_timeout_seconds,
        lock_blocking_timeout_seconds=config.redis.lock_blocking_timeout_seconds,
    )
    logger.info("rate_limit.backend_selected", extra={"backend": backend_type.value})
    return repository

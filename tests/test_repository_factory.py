"""Tests for storage backend selection."""

from unittest.mock import Mock, patch

import pytest
import redis

from app.adapters.rate_limit.base import StorageBackendType
from app.adapters.rate_limit.factory import (
    build_limiter_repository,
    create_limiter_repository,
    create_redis_client,
    parse_backend_type,
)
from app.adapters.rate_limit.in_memory import InMemoryLimiterRepository
from app.adapters.rate_limit.record import LimiterKind, LimiterRecord
from app.adapters.rate_limit.redis_backend import RedisLimiterRepository
from app.core.config import RedisSettings, Settings
from app.core.errors import (
    InvalidBackendTypeError,
    MissingConnectionError,
    StorageUnavailableError,
)


@pytest.mark.parametrize(
    ("tag", "expected"),
    [
        ("memory", StorageBackendType.MEMORY),
        ("MEMORY", StorageBackendType.MEMORY),
        ("networked", StorageBackendType.NETWORKED),
        (" redis ", StorageBackendType.NETWORKED),
        (StorageBackendType.NETWORKED, StorageBackendType.NETWORKED),
    ],
)
def test_parse_backend_type(tag, expected) -> None:
    assert parse_backend_type(tag) is expected


@pytest.mark.parametrize("tag", ["memcached", "", "sqlite"])
def test_unknown_backend_type(tag: str) -> None:
    with pytest.raises(InvalidBackendTypeError) as exc_info:
        create_limiter_repository(tag)
    assert exc_info.value.code == "invalid_backend_type"


def test_memory_backend_needs_no_connection() -> None:
    repo = create_limiter_repository("memory")
    assert isinstance(repo, InMemoryLimiterRepository)
    assert repo.backend_type is StorageBackendType.MEMORY


def test_networked_backend_requires_connection() -> None:
    with pytest.raises(MissingConnectionError) as exc_info:
        create_limiter_repository("networked")
    assert exc_info.value.code == "missing_backend_connection"


def test_networked_backend_uses_given_client() -> None:
    client = Mock(spec=redis.Redis)
    repo = create_limiter_repository("redis", client, default_ttl_seconds=60)
    assert isinstance(repo, RedisLimiterRepository)
    assert repo.backend_type is StorageBackendType.NETWORKED


@patch("app.adapters.rate_limit.factory.redis.Redis")
def test_create_redis_client_pings(mock_redis_cls) -> None:
    client = create_redis_client(RedisSettings(host="cache", port=6380, db=2))

    assert client is mock_redis_cls.return_value
    kwargs = mock_redis_cls.call_args.kwargs
    assert kwargs["host"] == "cache"
    assert kwargs["port"] == 6380
    assert kwargs["db"] == 2
    client.ping.assert_called_once()


@patch("app.adapters.rate_limit.factory.redis.Redis")
def test_create_redis_client_unreachable(mock_redis_cls) -> None:
    mock_redis_cls.return_value.ping.side_effect = redis.ConnectionError("refused")

    with pytest.raises(StorageUnavailableError):
        create_redis_client(RedisSettings())


def test_build_from_settings_memory() -> None:
    config = Settings()
    config.rate_limit.rate_limit_backend = "memory"
    assert isinstance(build_limiter_repository(config), InMemoryLimiterRepository)


@patch("app.adapters.rate_limit.factory.redis.Redis")
def test_build_from_settings_networked(mock_redis_cls) -> None:
    config = Settings()
    config.rate_limit.rate_limit_backend = "networked"
    config.rate_limit.rate_limit_default_ttl_seconds = 120

    repo = build_limiter_repository(config)

    assert isinstance(repo, RedisLimiterRepository)
    assert repo.ttl_for(LimiterRecord.create("10.0.0.1", LimiterKind.IP)) == 120

"""Redis-backed limiter repository.

Records are stored as JSON documents under their namespaced key with an
explicit expiration, so state is shared across every process that talks to
the same Redis database. Read-modify-write sequences are serialized per key
with a Redis lock (``SET NX PX`` under the hood).
"""

from __future__ import annotations

import logging
import math
import time
from contextlib import contextmanager
from typing import Callable, Iterator

import redis
from pydantic import ValidationError

from app.adapters.rate_limit.base import AbstractLimiterRepository, StorageBackendType
from app.adapters.rate_limit.record import KEY_PREFIX, LimiterRecord
from app.core.errors import (
    DeserializationError,
    InvalidIdentifierError,
    SerializationError,
    StorageUnavailableError,
)
from app.core.logging import fingerprint
from app.schemas.limiter import LimiterRecordPayload

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def encode_record(record: LimiterRecord) -> str:
    """Serialize a record to its JSON wire format.

    Raises:
        SerializationError: If the record cannot be represented as JSON.
    """
    try:
        return LimiterRecordPayload.from_record(record).model_dump_json()
    except (ValidationError, ValueError, TypeError) as exc:
        raise SerializationError(
            code="limiter_serialization_failed",
            message="Could not serialize rate limiter record",
            details={"key_hash": fingerprint(record.storage_key)},
        ) from exc


def decode_record(raw: bytes | str, key: str) -> LimiterRecord:
    """Parse a stored JSON payload back into a record.

    Raises:
        DeserializationError: If the payload is malformed or fails validation.
    """
    try:
        return LimiterRecordPayload.model_validate_json(raw).to_record()
    except (ValidationError, InvalidIdentifierError, ValueError) as exc:
        raise DeserializationError(
            code="limiter_deserialization_failed",
            message="Stored rate limiter record is malformed",
            details={"key_hash": fingerprint(key)},
        ) from exc


class RedisLimiterRepository(AbstractLimiterRepository):
    """Limiter records persisted in Redis.

    Expiration policy:
        - Blocked records live until their block ends.
        - Unblocked records live for ``default_ttl_seconds`` (24h by default)
          so identifiers that stop sending traffic age out.
        - A missing key is equivalent to a fresh record.
    """

    backend_type = StorageBackendType.NETWORKED

    def __init__(
        self,
        client: redis.Redis,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        lock_timeout_seconds: float = 5.0,
        lock_blocking_timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the repository around an existing client.

        Args:
            client: Connected ``redis.Redis`` instance.
            default_ttl_seconds: Expiration applied to unblocked records.
            lock_timeout_seconds: Auto-release time for per-key decision locks.
            lock_blocking_timeout_seconds: Maximum wait when acquiring a lock.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If default_ttl_seconds is invalid.
        """
        if default_ttl_seconds < 1:
            raise ValueError("default_ttl_seconds must be >= 1")

        self._client = client
        self._default_ttl = default_ttl_seconds
        self._lock_timeout = lock_timeout_seconds
        self._lock_blocking_timeout = lock_blocking_timeout_seconds
        self._clock = clock

    def _unavailable(self, operation: str, key: str, exc: Exception) -> StorageUnavailableError:
        logger.error(
            "rate_limit.storage_error",
            extra={
                "operation": operation,
                "key_hash": fingerprint(key),
                "error_type": type(exc).__name__,
                "backend": self.backend_type.value,
            },
        )
        return StorageUnavailableError(
            code="storage_unavailable",
            message=f"Redis {operation} failed",
            details={"backend": self.backend_type.value, "key_hash": fingerprint(key)},
        )

    def ttl_for(self, record: LimiterRecord) -> int:
        """Expiration in seconds for ``record`` at the current time."""
        if record.blocked and record.blocked_until is not None:
            remaining = math.ceil(record.blocked_until - self._clock())
            # Redis rejects non-positive expirations.
            return max(1, remaining)
        return self._default_ttl

    def get(self, key: str) -> LimiterRecord | None:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise self._unavailable("get", key, exc) from exc

        if raw is None:
            return None

        record = decode_record(raw, key)
        if record.block_expired(self._clock()):
            record.reset()
            logger.info(
                "limiter.block_expired",
                extra={"key_hash": fingerprint(key), "backend": self.backend_type.value},
            )
            self.save(record)
        return record

    def save(self, record: LimiterRecord, ttl_hint: int | None = None) -> None:
        payload = encode_record(record)
        ttl = ttl_hint if ttl_hint and ttl_hint > 0 else self.ttl_for(record)
        key = record.storage_key
        try:
            self._client.set(key, payload, ex=ttl)
        except redis.RedisError as exc:
            raise self._unavailable("set", key, exc) from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise self._unavailable("delete", key, exc) from exc

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        # "lock" is never a limiter kind, so lock names cannot collide with record keys.
        redis_lock = self._client.lock(
            f"{KEY_PREFIX}:lock:{key}",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_blocking_timeout,
        )
        try:
            acquired = redis_lock.acquire()
        except redis.RedisError as exc:
            raise self._unavailable("lock", key, exc) from exc
        if not acquired:
            raise StorageUnavailableError(
                code="storage_lock_timeout",
                message="Timed out waiting for the rate limiter lock",
                details={"backend": self.backend_type.value, "key_hash": fingerprint(key)},
            )
        try:
            yield
        finally:
            try:
                redis_lock.release()
            except redis.RedisError as exc:
                # The lock expires on its own after lock_timeout_seconds.
                logger.warning(
                    "rate_limit.lock_release_failed",
                    extra={"key_hash": fingerprint(key), "error_type": type(exc).__name__},
                )

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            logger.warning(
                "rate_limit.ping_failed",
                extra={"backend": self.backend_type.value, "error_type": type(exc).__name__},
            )
            return False

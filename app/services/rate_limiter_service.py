"""Rate limiter decision service.

Fixed-window counter with a single cooldown, keyed by client IP or API
token. Each kind has its own budget, cooldown and enable flag, and the two
never interact. The service:
- Validates the identifier and derives its namespaced storage key
- Runs read-increment-compare-write inside the backend's per-key lock
- Blocks an identifier on the first request past its budget
- Propagates every storage error so callers deny instead of admitting
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractLimiterRepository
from app.adapters.rate_limit.record import LimiterKind, LimiterRecord
from app.core.config import RateLimitSettings
from app.core.errors import StorageUnavailableError
from app.core.logging import fingerprint

logger = logging.getLogger(__name__)


class RateLimiterService:
    """Admission decisions over an injected limiter repository."""

    def __init__(
        self,
        repository: AbstractLimiterRepository,
        *,
        rate_limit_ip: int,
        rate_limit_token: int,
        block_duration_ip: int,
        block_duration_token: int,
        enable_ip_limiter: bool = True,
        enable_token_limiter: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Args:
            repository: Storage backend holding limiter records.
            rate_limit_ip: Requests admitted per IP before it is blocked.
            rate_limit_token: Requests admitted per token before it is blocked.
            block_duration_ip: Cooldown in seconds for a blocked IP.
            block_duration_token: Cooldown in seconds for a blocked token.
            enable_ip_limiter: Whether IP requests are limited at all.
            enable_token_limiter: Whether token requests are limited at all.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If a limit or cooldown is invalid.
        """
        if rate_limit_ip < 1 or rate_limit_token < 1:
            raise ValueError("rate limits must be >= 1")
        if block_duration_ip < 1 or block_duration_token < 1:
            raise ValueError("block durations must be >= 1")

        self._repository = repository
        self._limits = {
            LimiterKind.IP: rate_limit_ip,
            LimiterKind.TOKEN: rate_limit_token,
        }
        self._block_durations = {
            LimiterKind.IP: block_duration_ip,
            LimiterKind.TOKEN: block_duration_token,
        }
        self._enabled = {
            LimiterKind.IP: enable_ip_limiter,
            LimiterKind.TOKEN: enable_token_limiter,
        }
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        repository: AbstractLimiterRepository,
        config: RateLimitSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "RateLimiterService":
        return cls(
            repository,
            rate_limit_ip=config.rate_limit_ip,
            rate_limit_token=config.rate_limit_token,
            block_duration_ip=config.block_duration_ip,
            block_duration_token=config.block_duration_token,
            enable_ip_limiter=config.enable_ip_limiter,
            enable_token_limiter=config.enable_token_limiter,
            clock=clock,
        )

    @property
    def repository(self) -> AbstractLimiterRepository:
        return self._repository

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    def limit_for(self, kind: LimiterKind) -> int:
        return self._limits[kind]

    def block_duration_for(self, kind: LimiterKind) -> int:
        return self._block_durations[kind]

    def is_enabled(self, kind: LimiterKind) -> bool:
        return self._enabled[kind]

    def _check_deadline(self, deadline: float | None, stage: str, key: str) -> None:
        if deadline is not None and self._clock() >= deadline:
            logger.warning(
                "rate_limit.deadline_exceeded",
                extra={"stage": stage, "key_hash": fingerprint(key)},
            )
            raise StorageUnavailableError(
                code="decision_deadline_exceeded",
                message="Rate limit decision did not finish before its deadline",
                details={"context": {"stage": stage}},
            )

    def is_allowed(self, identifier: str, is_token: bool, *, deadline: float | None = None) -> bool:
        """Decide whether one request from ``identifier`` is admitted.

        The request that brings the counter to exactly the limit is admitted;
        the next one blocks the identifier for the kind's cooldown.

        Args:
            identifier: Client IP literal or API token.
            is_token: True when ``identifier`` is a token.
            deadline: Optional absolute clock time after which no further
                backend call is issued.

        Returns:
            True to admit, False to deny.

        Raises:
            InvalidIdentifierError: If the identifier is malformed.
            StorageUnavailableError: On backend failure or missed deadline.
            SerializationError: If the record cannot be encoded.
            DeserializationError: If the stored record cannot be decoded.
        """
        kind = LimiterKind.for_request(is_token)
        if not self._enabled[kind]:
            return True

        fresh = LimiterRecord.create(identifier, kind)
        key = fresh.storage_key
        key_hash = fingerprint(key)

        self._check_deadline(deadline, "lock", key)
        with self._repository.lock(key):
            self._check_deadline(deadline, "get", key)
            record = self._repository.get(key) or fresh

            now = self._clock()
            if record.block_expired(now):
                record.reset()
            if record.is_blocked(now):
                logger.info(
                    "rate_limit.denied",
                    extra={
                        "key_type": kind.value,
                        "key_hash": key_hash,
                        "retry_after_s": record.seconds_until_unblocked(now),
                    },
                )
                return False

            record.touch(now)
            limit = self._limits[kind]

            if record.request_count > limit:
                cooldown = self._block_durations[kind]
                record.block(cooldown, now)
                logger.warning(
                    "rate_limit.blocked",
                    extra={
                        "key_type": kind.value,
                        "key_hash": key_hash,
                        "limit": limit,
                        "block_duration_s": cooldown,
                    },
                )
                self._check_deadline(deadline, "save", key)
                self._repository.save(record)
                return False

            self._check_deadline(deadline, "save", key)
            self._repository.save(record)

        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_type": kind.value,
                "key_hash": key_hash,
                "limit": limit,
                "remaining": max(0, limit - record.request_count),
            },
        )
        return True

    def get_status(self, identifier: str, is_token: bool) -> LimiterRecord:
        """Current record for ``identifier`` (a fresh one when nothing is stored)."""
        kind = LimiterKind.for_request(is_token)
        fresh = LimiterRecord.create(identifier, kind)
        with self._repository.lock(fresh.storage_key):
            return self._repository.get(fresh.storage_key) or fresh

    def reset(self, identifier: str, is_token: bool) -> None:
        """Forget all state for ``identifier`` (administrative unblock)."""
        kind = LimiterKind.for_request(is_token)
        key = LimiterRecord.create(identifier, kind).storage_key
        with self._repository.lock(key):
            self._repository.delete(key)
        logger.info("rate_limit.reset", extra={"key_type": kind.value, "key_hash": fingerprint(key)})

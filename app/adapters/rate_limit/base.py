"""Limiter storage interfaces.

The decision service depends on this abstraction (not the concrete
implementation) so the in-process store and Redis are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from enum import Enum

from app.adapters.rate_limit.record import LimiterRecord


class StorageBackendType(str, Enum):
    """Configuration tags accepted by the repository factory."""

    MEMORY = "memory"
    NETWORKED = "networked"


class AbstractLimiterRepository(ABC):
    """Persistence contract for limiter records.

    Canonical expiry policy: ``get`` never returns a record whose block has
    lapsed. Such a record is cleared (block flag and counter together) and
    written back before it is returned.
    """

    backend_type: StorageBackendType

    @abstractmethod
    def get(self, key: str) -> LimiterRecord | None:
        """Load the record stored under ``key``.

        Returns:
            A copy of the stored record, or None when nothing is stored.
        """
        raise NotImplementedError

    @abstractmethod
    def save(self, record: LimiterRecord, ttl_hint: int | None = None) -> None:
        """Persist ``record`` under its own storage key.

        Args:
            record: Record to store; the backend keeps its own copy.
            ttl_hint: Optional expiration in seconds for backends that support it.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the record stored under ``key`` (no-op when absent)."""
        raise NotImplementedError

    @abstractmethod
    def lock(self, key: str) -> AbstractContextManager[None]:
        """Critical section for a read-modify-write sequence on ``key``.

        Every get/save pair that must not interleave with other callers for
        the same key runs inside this context manager.
        """
        raise NotImplementedError

    def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True

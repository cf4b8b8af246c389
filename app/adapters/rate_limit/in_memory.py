"""In-memory limiter repository.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: the record map is guarded by a readers-writer lock and each
  key has its own decision lock.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from app.adapters.rate_limit.base import AbstractLimiterRepository, StorageBackendType
from app.adapters.rate_limit.record import LimiterRecord
from app.core.logging import fingerprint

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Writers waiting for the lock block new readers so a steady stream of
    reads cannot starve them.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class InMemoryLimiterRepository(AbstractLimiterRepository):
    """Limiter records kept in a process-wide dictionary.

    Records are copied on the way in and out, so no caller ever holds a
    reference into the shared map. There is no TTL support; lapsed blocks
    are cleared when the record is next read.
    """

    backend_type = StorageBackendType.MEMORY

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize an empty repository.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._rw_lock = ReadWriteLock()
        self._records: dict[str, LimiterRecord] = {}
        self._key_locks: dict[str, _KeyLock] = {}
        self._key_locks_guard = threading.Lock()

    def __len__(self) -> int:
        with self._rw_lock.read_locked():
            return len(self._records)

    def get(self, key: str) -> LimiterRecord | None:
        now = self._clock()
        with self._rw_lock.read_locked():
            stored = self._records.get(key)
            if stored is None:
                return None
            if not stored.block_expired(now):
                return stored.copy()

        # Lapsed block: upgrade to an exclusive lock and rewrite the record.
        with self._rw_lock.write_locked():
            stored = self._records.get(key)
            if stored is None:
                return None
            if stored.block_expired(now):
                stored.reset()
                logger.info(
                    "limiter.block_expired",
                    extra={"key_hash": fingerprint(key), "backend": self.backend_type.value},
                )
            return stored.copy()

    def save(self, record: LimiterRecord, ttl_hint: int | None = None) -> None:
        with self._rw_lock.write_locked():
            self._records[record.storage_key] = record.copy()

    def delete(self, key: str) -> None:
        with self._rw_lock.write_locked():
            self._records.pop(key, None)

    @property
    def key_lock_count(self) -> int:
        """Per-key decision locks currently held or waited on."""
        with self._key_locks_guard:
            return len(self._key_locks)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._key_locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            # Drop the entry once nobody holds or waits on it.
            with self._key_locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._key_locks[key]

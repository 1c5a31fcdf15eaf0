"""Per-appointment mutual exclusion.

At most one transition per appointment may be in flight. Two backends are
available: in-process ``asyncio`` locks for a single worker, and Redis locks
when several workers share the database. Acquisition is bounded; a timeout is
reported as :class:`ConcurrencyConflictError` so the caller can retry.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

import structlog
from redis.exceptions import LockError, RedisError

from admission.config import settings
from admission.core.exceptions import ConcurrencyConflictError
from admission.core.redis_client import get_redis_client

logger = structlog.get_logger(__name__)


class LockHandle(ABC):
    """An acquired per-appointment lock."""

    @abstractmethod
    async def release(self) -> None:
        """Release the lock."""


class AppointmentLockManager(ABC):
    """Hands out exclusive, time-bounded locks keyed by appointment id."""

    def __init__(self, timeout: float):
        """Initialize with the acquisition timeout in seconds."""
        self.timeout = timeout

    @abstractmethod
    async def acquire(self, key: str) -> LockHandle:
        """
        Wait for the lock on ``key``.

        Raises:
            ConcurrencyConflictError: If the lock is not acquired within the timeout
        """


class _LocalHandle(LockHandle):
    def __init__(self, lock: asyncio.Lock):
        self._lock = lock

    async def release(self) -> None:
        self._lock.release()


class LocalLockManager(AppointmentLockManager):
    """In-process locks; correct only when one worker serves all requests."""

    def __init__(self, timeout: float):
        """Initialize the lock registry."""
        super().__init__(timeout)
        # Unused locks are dropped once no waiter or holder references them
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def acquire(self, key: str) -> LockHandle:
        """Wait for the in-process lock on ``key``."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        try:
            async with asyncio.timeout(self.timeout):
                await lock.acquire()
        except TimeoutError:
            logger.warning("appointment_lock_timeout", key=key, backend="local")
            raise ConcurrencyConflictError(
                "Another transition on this appointment is in progress; retry shortly"
            ) from None
        return _LocalHandle(lock)


class _RedisHandle(LockHandle):
    def __init__(self, lock: Any, key: str):
        self._lock = lock
        self._key = key

    async def release(self) -> None:
        try:
            await self._lock.release()
        except LockError:
            # TTL ran out before release; another worker may already hold it
            logger.warning("appointment_lock_expired", key=self._key, backend="redis")


class RedisLockManager(AppointmentLockManager):
    """Redis locks shared by every worker connected to the same Redis."""

    def __init__(
        self,
        redis_client: Any,
        timeout: float,
        ttl: float,
        prefix: str = "admission:lock",
    ):
        """Initialize with a ``redis.asyncio`` client and lock TTL in seconds."""
        super().__init__(timeout)
        self.redis = redis_client
        self.ttl = ttl
        self.prefix = prefix

    async def acquire(self, key: str) -> LockHandle:
        """Wait for the Redis lock on ``key``."""
        name = f"{self.prefix}:{key}"
        lock = self.redis.lock(name, timeout=self.ttl, blocking_timeout=self.timeout)
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("appointment_lock_unavailable", key=key, error=str(e))
            raise ConcurrencyConflictError(
                "Appointment lock service unavailable; retry shortly"
            ) from e
        if not acquired:
            logger.warning("appointment_lock_timeout", key=key, backend="redis")
            raise ConcurrencyConflictError(
                "Another transition on this appointment is in progress; retry shortly"
            )
        return _RedisHandle(lock, name)


@lru_cache
def get_lock_manager() -> AppointmentLockManager:
    """Get the process-wide lock manager for the configured backend."""
    if settings.lock_backend == "redis":
        return RedisLockManager(
            get_redis_client(),
            timeout=settings.lock_timeout_seconds,
            ttl=settings.lock_ttl_seconds,
        )
    return LocalLockManager(timeout=settings.lock_timeout_seconds)

"""
Per-payment critical sections for reconciliation

Gateway callbacks, webhooks and status polls for the same correlation id may
race; each read-modify-write of a payment runs while holding the lock for its
key. The database-level compare-and-set in the reconciler still applies, so a
lock that expires early can only cause a retry, never a lost ``completed``.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Optional

from app.config import settings
from app.core.exceptions import LockAcquisitionError
from app.core.redis import RedisManager, redis_manager

logger = logging.getLogger(__name__)


class ReconciliationLock(ABC):
    """Interface: ``async with lock.hold(key): ...``"""

    @abstractmethod
    def hold(self, key: str) -> AsyncContextManager[None]:
        """Serialize work on ``key`` across concurrent requests"""


class LocalReconciliationLock(ReconciliationLock):
    """
    In-process lock keyed by resource, for single-worker deployments and tests
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())


class RedisReconciliationLock(ReconciliationLock):
    """
    Distributed lock shared by every API worker
    """

    def __init__(
        self,
        manager: Optional[RedisManager] = None,
        ttl: Optional[int] = None,
        wait_seconds: Optional[float] = None,
    ):
        self.manager = manager or redis_manager
        self.ttl = ttl or settings.PAYMENT_LOCK_TTL_SECONDS
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.PAYMENT_LOCK_WAIT_SECONDS

    async def _acquire(self, resource: str, owner: str) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        attempt = 0
        while True:
            if await self.manager.acquire_lock(resource, identifier=owner, ttl=self.ttl):
                return True
            if loop.time() >= deadline:
                return False
            # Exponential backoff capped at one second
            await asyncio.sleep(min(0.05 * (2 ** attempt), 1.0))
            attempt += 1

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        resource = f"reconcile:{key}"
        owner = str(uuid.uuid4())
        if not await self._acquire(resource, owner):
            logger.warning(f"Could not acquire reconciliation lock for {key}")
            raise LockAcquisitionError(resource)
        try:
            yield
        finally:
            await self.manager.release_lock(resource, owner)


_local_lock = LocalReconciliationLock()
_redis_lock: Optional[RedisReconciliationLock] = None


def get_reconciliation_lock() -> ReconciliationLock:
    """
    Dependency returning the configured lock backend
    """
    global _redis_lock
    if settings.PAYMENT_LOCK_BACKEND == "local":
        return _local_lock
    if _redis_lock is None:
        _redis_lock = RedisReconciliationLock()
    return _redis_lock

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Dict, Iterable, Protocol

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from app.domain.errors import SlotConflict

logger = logging.getLogger("app.slot_locks")


def slot_lock_key(resource_kind: str, resource_id: str, target_date: date) -> str:
    return f"{resource_kind}:{resource_id}:{target_date.isoformat()}"


class SlotLockProvider(Protocol):
    def acquire(self, keys: Iterable[str]): ...

    async def close(self) -> None: ...


class InMemorySlotLocks:
    """Per resource-day asyncio locks for a single process.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so idle resource-days do not accumulate.
    """

    def __init__(self, wait_seconds: float = 2.0) -> None:
        self.wait_seconds = wait_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._refs.get(key, 1) - 1
        if remaining <= 0:
            self._refs.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._refs[key] = remaining

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str]) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        held: list[str] = []
        checked_out: list[str] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
                except asyncio.TimeoutError as exc:
                    logger.info("slot_lock_timeout", extra={"extra": {"key": key}})
                    raise SlotConflict("Slot is being booked by another request") from exc
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                self._locks[key].release()
            for key in checked_out:
                self._checkin(key)

    async def close(self) -> None:
        return None


class RedisSlotLocks:
    def __init__(
        self,
        redis_url: str,
        wait_seconds: float = 2.0,
        lease_seconds: int = 30,
        redis_client: redis.Redis | None = None,
    ) -> None:
        self.wait_seconds = wait_seconds
        self.lease_seconds = lease_seconds
        self.redis = redis_client or redis.from_url(redis_url, encoding="utf-8", decode_responses=False)

    def _key(self, key: str) -> str:
        return f"slot-lock:{key}"

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str]) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        held = []
        try:
            for key in ordered:
                lock = self.redis.lock(
                    self._key(key),
                    timeout=self.lease_seconds,
                    blocking_timeout=self.wait_seconds,
                )
                try:
                    acquired = await lock.acquire(token=uuid.uuid4().hex)
                except RedisError as exc:
                    logger.warning("slot_lock_redis_unavailable", extra={"extra": {"key": key}})
                    raise SlotConflict("Slot locking is temporarily unavailable") from exc
                if not acquired:
                    logger.info("slot_lock_timeout", extra={"extra": {"key": key}})
                    raise SlotConflict("Slot is being booked by another request")
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                try:
                    await lock.release()
                except (LockError, RedisError):
                    logger.warning("slot_lock_release_failed", extra={"extra": {"key": lock.name}})

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError:
            logger.warning("redis slot locks close failed")


def create_slot_locks(app_settings) -> SlotLockProvider:
    if getattr(app_settings, "redis_url", None):
        return RedisSlotLocks(
            app_settings.redis_url,
            wait_seconds=app_settings.slot_lock_wait_seconds,
            lease_seconds=app_settings.slot_lock_lease_seconds,
        )
    return InMemorySlotLocks(wait_seconds=app_settings.slot_lock_wait_seconds)

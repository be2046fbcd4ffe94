# app/core/swaps/locks.py

"""
Per-slot exclusive locks for the negotiation engine.

Locks are always taken in ascending slot-id order and every wait is bounded,
so two operations touching overlapping slot sets cannot deadlock; a caller
that cannot get a lock in time gets :class:`~app.core.errors.Busy`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Iterable, Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from app.core.errors import Busy

log = logging.getLogger(__name__)


def lock_order(slot_ids: Iterable[str]) -> list[str]:
    """Deduplicated ids in the global acquisition order."""
    return sorted(set(slot_ids))


class SlotLocks(Protocol):
    def hold(self, slot_ids: Iterable[str], timeout: float) -> contextlib.AbstractAsyncContextManager[None]:
        ...

    async def close(self) -> None:
        ...


class LocalSlotLocks:
    """
    In-process locks: one ``asyncio.Lock`` per slot id, created on demand and
    discarded once nobody holds or waits for it. Enough for a single worker.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, slot_id: str) -> asyncio.Lock:
        lock = self._locks.get(slot_id)
        if lock is None:
            lock = self._locks[slot_id] = asyncio.Lock()
        self._users[slot_id] = self._users.get(slot_id, 0) + 1
        return lock

    def _checkin(self, slot_id: str) -> None:
        remaining = self._users[slot_id] - 1
        if remaining:
            self._users[slot_id] = remaining
        else:
            del self._users[slot_id]
            del self._locks[slot_id]

    @property
    def tracked(self) -> int:
        return len(self._locks)

    async def close(self) -> None:
        """Nothing to release; held locks die with the process."""

    @contextlib.asynccontextmanager
    async def hold(self, slot_ids: Iterable[str], timeout: float) -> AsyncIterator[None]:
        ordered = lock_order(slot_ids)
        acquired: list[str] = []
        checked_out: list[str] = []
        try:
            for slot_id in ordered:
                lock = self._checkout(slot_id)
                checked_out.append(slot_id)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                except asyncio.TimeoutError as exc:
                    log.warning("Timed out after %.2fs waiting for slot lock %s", timeout, slot_id)
                    raise Busy(f"Slot {slot_id} is busy, try again") from exc
                acquired.append(slot_id)
            log.debug("Holding slot locks %s", acquired)
            yield
        finally:
            for slot_id in reversed(acquired):
                self._locks[slot_id].release()
            for slot_id in checked_out:
                self._checkin(slot_id)


class RedisSlotLocks:
    """
    Distributed locks on Redis (``lock:slot:<id>``) for deployments running
    several workers against the same database.

    ``lease`` caps how long a crashed holder can keep a slot locked.
    """

    key_prefix = "lock:slot:"

    def __init__(self, client: Redis, lease: float = 30.0) -> None:
        self.client = client
        self.lease = lease

    @classmethod
    def from_url(cls, url: str, lease: float = 30.0) -> "RedisSlotLocks":
        return cls(Redis.from_url(url), lease=lease)

    async def close(self) -> None:
        await self.client.aclose()

    @contextlib.asynccontextmanager
    async def hold(self, slot_ids: Iterable[str], timeout: float) -> AsyncIterator[None]:
        acquired = []
        try:
            for slot_id in lock_order(slot_ids):
                lock = self.client.lock(
                    f"{self.key_prefix}{slot_id}",
                    timeout=self.lease,
                    blocking_timeout=timeout,
                )
                try:
                    got_it = await lock.acquire()
                except RedisError as exc:
                    log.exception("Redis error while locking slot %s", slot_id)
                    raise Busy(f"Could not lock slot {slot_id}, try again") from exc
                if not got_it:
                    log.warning("Timed out after %.2fs waiting for redis lock on slot %s", timeout, slot_id)
                    raise Busy(f"Slot {slot_id} is busy, try again")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                try:
                    await lock.release()
                except LockError:
                    # Lease ran out; the version check on the rows still applies
                    log.warning("Redis lock %s expired before release", lock.name)

"""
Per-key mutual exclusion for registry writes.

Publishes and deletes read and then move the "latest version" pointer of a
target, so they must be strictly serialized per target across all server
processes. RedisMutex provides that; InMemoryMutex serializes within one
process only (single replica deployments and tests).

Invariants:
    - At most one holder per key at any time
    - A held Redis lock is extended in the background until released
    - Release only deletes the key if this holder still owns it
    - Setting the abort signal cancels the wait, it never force-unlocks

How to change safely:
    - Keep the Lua scripts compare-and-act: a lock that expired and was
      taken by another holder must not be released or extended by us

Example:
    >>> mutex = InMemoryMutex()
    >>> async with mutex.lock(f"registry:lock:{target_id}", signal=abort):
    ...     await publish()
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Optional, Protocol, runtime_checkable

import redis.asyncio as aioredis

from ..errors import LockTimeoutError, OperationAbortedError

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


def target_lock_key(target_id: str) -> str:
    return f"registry:lock:{target_id}"


@runtime_checkable
class Mutex(Protocol):
    """Distributed (or local) lock keyed by string."""

    @abstractmethod
    def lock(
        self,
        key: str,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncContextManager[None]:
        """Hold the lock for the duration of an `async with` block.

        Args:
            key: Lock key
            signal: When set while waiting, the wait is abandoned

        Raises:
            OperationAbortedError: If the signal fired before the lock was taken
            LockTimeoutError: If the lock could not be taken in time
        """
        ...


async def _sleep_or_abort(seconds: float, signal: Optional[asyncio.Event]) -> None:
    if signal is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(signal.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return


class RedisMutex:
    """Redis lock using SET NX PX with token-checked release.

    Args:
        client: redis.asyncio client
        ttl_seconds: Lock TTL, extended every ttl/2 while held
        retry_interval_seconds: Poll interval while the lock is taken
        acquire_timeout_seconds: Give up waiting after this long
    """

    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: float = 60.0,
        retry_interval_seconds: float = 0.1,
        acquire_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self.acquire_timeout_seconds = acquire_timeout_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs: float) -> RedisMutex:
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    @property
    def _ttl_ms(self) -> int:
        return int(self.ttl_seconds * 1000)

    async def _acquire(self, key: str, token: str, signal: Optional[asyncio.Event]) -> None:
        deadline = (
            time.monotonic() + self.acquire_timeout_seconds
            if self.acquire_timeout_seconds is not None
            else None
        )
        while True:
            if signal is not None and signal.is_set():
                raise OperationAbortedError(f"Aborted while waiting for lock {key}")

            if await self._client.set(key, token, nx=True, px=self._ttl_ms):
                return

            if deadline is not None and time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for lock {key}", key=key)

            await _sleep_or_abort(self.retry_interval_seconds, signal)

    async def _extend_forever(self, key: str, token: str) -> None:
        interval = self.ttl_seconds / 2
        while True:
            await asyncio.sleep(interval)
            extended = await self._client.eval(_EXTEND_SCRIPT, 1, key, token, self._ttl_ms)
            if not extended:
                logger.error("Lost lock before release", extra={"lock_key": key})
                return

    @asynccontextmanager
    async def lock(self, key: str, signal: Optional[asyncio.Event] = None) -> AsyncIterator[None]:
        token = uuid.uuid4().hex
        await self._acquire(key, token, signal)
        logger.debug("Acquired lock", extra={"lock_key": key})

        extender = asyncio.create_task(self._extend_forever(key, token))
        try:
            yield
        finally:
            extender.cancel()
            try:
                await extender
            except asyncio.CancelledError:
                pass
            released = await self._client.eval(_RELEASE_SCRIPT, 1, key, token)
            if not released:
                logger.warning("Lock expired before release", extra={"lock_key": key})
            else:
                logger.debug("Released lock", extra={"lock_key": key})

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryMutex:
    """Process-local lock. Not safe across replicas."""

    def __init__(self, acquire_timeout_seconds: Optional[float] = None) -> None:
        self.acquire_timeout_seconds = acquire_timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    async def _acquire(self, key: str, lock: asyncio.Lock, signal: Optional[asyncio.Event]) -> None:
        if signal is not None and signal.is_set():
            raise OperationAbortedError(f"Aborted while waiting for lock {key}")

        acquire_task = asyncio.ensure_future(lock.acquire())
        signal_task = asyncio.ensure_future(signal.wait()) if signal is not None else None
        waiting = {acquire_task} if signal_task is None else {acquire_task, signal_task}

        try:
            done, _ = await asyncio.wait(
                waiting,
                timeout=self.acquire_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            for task in waiting:
                task.cancel()
            if acquire_task.done() and not acquire_task.cancelled():
                lock.release()
            raise

        if signal_task is not None and not signal_task.done():
            signal_task.cancel()

        if acquire_task in done:
            return

        acquire_task.cancel()
        try:
            await acquire_task
        except asyncio.CancelledError:
            pass
        else:
            # acquired between the wait returning and the cancel
            lock.release()

        if signal_task is not None and signal_task in done:
            raise OperationAbortedError(f"Aborted while waiting for lock {key}")
        raise LockTimeoutError(f"Timed out waiting for lock {key}", key=key)

    @asynccontextmanager
    async def lock(self, key: str, signal: Optional[asyncio.Event] = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        acquired = False
        try:
            await self._acquire(key, lock, signal)
            acquired = True
            yield
        finally:
            if acquired:
                lock.release()
            self._forget(key)

    def _forget(self, key: str) -> None:
        self._waiters[key] -= 1
        if self._waiters[key] == 0:
            del self._waiters[key]
            del self._locks[key]

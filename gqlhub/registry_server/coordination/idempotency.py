"""
Short-lived idempotency for publish requests.

CI pipelines retry. A publish carrying the same checksum within a few
seconds of an earlier one gets the earlier result back instead of
entering the target lock and composing again.

The cache holds one entry per identifier:
- {"status": "pending"} while the first caller is running
- {"status": "completed", "result": <serialized result>} afterwards

Invariants:
    - Only one caller runs the executor per identifier and TTL window
    - A failed executor deletes its pending entry so a retry can run
    - A waiter that outlives the TTL runs the executor itself

Example:
    >>> runner = IdempotentRunner(InMemoryIdempotencyCache())
    >>> result = await runner.run(
    ...     identifier=f"schema:publish:{checksum}",
    ...     executor=do_publish,
    ...     ttl_seconds=15,
    ...     serialize=lambda r: r.to_dict(),
    ...     deserialize=PublishResult.from_dict,
    ... )
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar, runtime_checkable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PENDING = json.dumps({"status": "pending"})


@runtime_checkable
class IdempotencyCache(Protocol):
    """Key-value store with TTL and set-if-absent."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class RedisIdempotencyCache:
    """Idempotency entries stored in Redis."""

    def __init__(self, client: aioredis.Redis, prefix: str = "idempotent-runner:") -> None:
        self._client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> RedisIdempotencyCache:
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(self.prefix + key)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._client.set(self.prefix + key, value, nx=True, ex=ttl_seconds))

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(self.prefix + key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(self.prefix + key)

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryIdempotencyCache:
    """Process-local idempotency entries with lazy expiry."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = (value, time.monotonic() + ttl_seconds)
        return True

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, time.monotonic() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class IdempotentRunner:
    """Runs an executor at most once per identifier within a TTL window."""

    def __init__(self, cache: IdempotencyCache, poll_interval_seconds: float = 0.05) -> None:
        self.cache = cache
        self.poll_interval_seconds = poll_interval_seconds

    async def run(
        self,
        identifier: str,
        executor: Callable[[], Awaitable[T]],
        ttl_seconds: int,
        serialize: Callable[[T], Any],
        deserialize: Callable[[Any], T],
    ) -> T:
        deadline = time.monotonic() + ttl_seconds

        while time.monotonic() < deadline:
            cached = await self.cache.get(identifier)

            if cached is None:
                if await self.cache.set_if_absent(identifier, _PENDING, ttl_seconds):
                    return await self._execute(identifier, executor, ttl_seconds, serialize)
                continue

            entry = json.loads(cached)
            if entry.get("status") == "completed":
                logger.info("Reusing result of identical request", extra={"identifier": identifier})
                return deserialize(entry["result"])

            await asyncio.sleep(self.poll_interval_seconds)

        logger.warning("Gave up waiting for identical request", extra={"identifier": identifier})
        return await executor()

    async def _execute(
        self,
        identifier: str,
        executor: Callable[[], Awaitable[T]],
        ttl_seconds: int,
        serialize: Callable[[T], Any],
    ) -> T:
        try:
            result = await executor()
        except BaseException:
            await self.cache.delete(identifier)
            raise

        await self.cache.set(
            identifier,
            json.dumps({"status": "completed", "result": serialize(result)}),
            ttl_seconds,
        )
        return result

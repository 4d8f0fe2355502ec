"""
Unit tests for publish coordination primitives.

Tests cover:
- In-process mutex serialization, abort and timeout
- Lock bookkeeping after release and failure
- Idempotency cache expiry
- Idempotent runner deduplication and failure handling
"""

import asyncio
import json

import pytest

from gqlhub.registry_server.coordination import (
    IdempotentRunner,
    InMemoryIdempotencyCache,
    InMemoryMutex,
    target_lock_key,
)
from gqlhub.registry_server.errors import LockTimeoutError, OperationAbortedError


class TestInMemoryMutex:
    """Tests for InMemoryMutex."""

    @pytest.fixture
    def mutex(self):
        """Create a fresh mutex."""
        return InMemoryMutex()

    def test_target_lock_key(self):
        """Lock keys are namespaced per target."""
        assert target_lock_key("t1") == "registry:lock:t1"

    @pytest.mark.asyncio
    async def test_serializes_holders(self, mutex):
        """Two holders of the same key never overlap."""
        events = []

        async def hold(name):
            async with mutex.lock("k"):
                events.append(f"{name}:start")
                await asyncio.sleep(0.01)
                events.append(f"{name}:end")

        await asyncio.gather(hold("a"), hold("b"))

        assert events in (
            ["a:start", "a:end", "b:start", "b:end"],
            ["b:start", "b:end", "a:start", "a:end"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, mutex):
        """Locks on different keys are independent."""
        async with mutex.lock("a"):
            async with mutex.lock("b"):
                assert mutex.is_locked("a")
                assert mutex.is_locked("b")

    @pytest.mark.asyncio
    async def test_released_after_exception(self, mutex):
        """The lock is released when the body raises."""
        with pytest.raises(RuntimeError):
            async with mutex.lock("k"):
                raise RuntimeError("boom")

        assert not mutex.is_locked("k")
        async with mutex.lock("k"):
            assert mutex.is_locked("k")

    @pytest.mark.asyncio
    async def test_set_signal_aborts_immediately(self, mutex):
        """An already aborted caller never acquires."""
        signal = asyncio.Event()
        signal.set()

        with pytest.raises(OperationAbortedError):
            async with mutex.lock("k", signal=signal):
                pass

    @pytest.mark.asyncio
    async def test_signal_aborts_waiter(self, mutex):
        """Setting the signal cancels the wait for a held lock."""
        signal = asyncio.Event()
        held = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with mutex.lock("k"):
                held.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await held.wait()

        async def waiter():
            async with mutex.lock("k", signal=signal):
                pass

        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0.01)
        signal.set()

        with pytest.raises(OperationAbortedError):
            await waiting

        release.set()
        await task
        assert not mutex.is_locked("k")

    @pytest.mark.asyncio
    async def test_acquire_timeout(self):
        """Waiting longer than the timeout raises LockTimeoutError."""
        mutex = InMemoryMutex(acquire_timeout_seconds=0.01)

        async with mutex.lock("k"):
            with pytest.raises(LockTimeoutError):
                async with mutex.lock("k"):
                    pass


class TestInMemoryIdempotencyCache:
    """Tests for InMemoryIdempotencyCache."""

    @pytest.mark.asyncio
    async def test_set_if_absent(self):
        """Only the first writer wins."""
        cache = InMemoryIdempotencyCache()

        assert await cache.set_if_absent("k", "a", 60) is True
        assert await cache.set_if_absent("k", "b", 60) is False
        assert await cache.get("k") == "a"

    @pytest.mark.asyncio
    async def test_expired_entries_disappear(self):
        """Entries past their TTL read as missing."""
        cache = InMemoryIdempotencyCache()

        await cache.set("k", "a", 0)

        assert await cache.get("k") is None
        assert await cache.set_if_absent("k", "b", 60) is True


class TestIdempotentRunner:
    """Tests for IdempotentRunner."""

    @pytest.fixture
    def cache(self):
        return InMemoryIdempotencyCache()

    @pytest.fixture
    def runner(self, cache):
        return IdempotentRunner(cache, poll_interval_seconds=0.01)

    @pytest.mark.asyncio
    async def test_concurrent_calls_run_once(self, runner):
        """Identical concurrent requests share one execution."""
        calls = []

        async def executor():
            calls.append(1)
            await asyncio.sleep(0.05)
            return {"value": 42}

        results = await asyncio.gather(
            *(
                runner.run("id", executor, ttl_seconds=5, serialize=lambda r: r, deserialize=lambda d: d)
                for _ in range(3)
            )
        )

        assert len(calls) == 1
        assert results == [{"value": 42}] * 3

    @pytest.mark.asyncio
    async def test_result_is_cached(self, runner, cache):
        """The serialized result is stored as completed."""
        async def executor():
            return 7

        await runner.run("id", executor, ttl_seconds=5, serialize=lambda r: r, deserialize=lambda d: d)

        entry = json.loads(await cache.get("id"))
        assert entry == {"status": "completed", "result": 7}

    @pytest.mark.asyncio
    async def test_failure_allows_retry(self, runner, cache):
        """A failed execution clears its pending entry."""
        async def failing():
            raise RuntimeError("boom")

        async def succeeding():
            return 1

        with pytest.raises(RuntimeError):
            await runner.run("id", failing, ttl_seconds=5, serialize=lambda r: r, deserialize=lambda d: d)

        assert await cache.get("id") is None
        result = await runner.run(
            "id", succeeding, ttl_seconds=5, serialize=lambda r: r, deserialize=lambda d: d
        )
        assert result == 1

    @pytest.mark.asyncio
    async def test_different_identifiers_run_separately(self, runner):
        """Distinct identifiers never share results."""
        async def one():
            return 1

        async def two():
            return 2

        a = await runner.run("a", one, ttl_seconds=5, serialize=lambda r: r, deserialize=lambda d: d)
        b = await runner.run("b", two, ttl_seconds=5, serialize=lambda r: r, deserialize=lambda d: d)

        assert (a, b) == (1, 2)

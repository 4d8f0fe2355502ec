"""
Coordination primitives shared by registry replicas.

- Mutex: per-target publish/delete lock (Redis or in-process)
- IdempotentRunner: short-TTL reuse of identical publish results

Invariants:
    - In-memory implementations are only correct for a single replica
"""

from .idempotency import (
    IdempotencyCache,
    IdempotentRunner,
    InMemoryIdempotencyCache,
    RedisIdempotencyCache,
)
from .mutex import InMemoryMutex, Mutex, RedisMutex, target_lock_key

__all__ = [
    "Mutex",
    "RedisMutex",
    "InMemoryMutex",
    "target_lock_key",
    "IdempotencyCache",
    "IdempotentRunner",
    "RedisIdempotencyCache",
    "InMemoryIdempotencyCache",
]

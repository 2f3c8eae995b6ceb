"""
Identity Cache for Proxy Gatekeeper.

Maps an API key to the identity it was last exchanged for, so repeated
requests with the same key skip the key-exchange round trip.
Supports in-memory (single-instance) and Redis (distributed) backends.

An entry is never returned once its expiration instant has passed.
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from proxy_gatekeeper.core.identity import Identity

DEFAULT_TTL_SECONDS = 1800  # 30 minutes
DEFAULT_CAPACITY = 10_000


@dataclass(frozen=True)
class CacheEntry:
    """Cached identity for one API key."""

    api_key: str
    identity: Identity
    expires_at: float


@runtime_checkable
class IdentityCache(Protocol):
    """
    Protocol for identity cache implementations.

    All operations must be safe under concurrent access.
    Concurrent puts for the same key: last write wins.
    """

    def get(self, api_key: str) -> Identity | None:
        """
        Look up a cached identity.

        Args:
            api_key: API key presented by the caller

        Returns:
            Identity if cached and unexpired, None otherwise
        """
        ...

    def put(self, api_key: str, identity: Identity) -> Identity:
        """
        Store an identity, overwriting any existing entry.

        Args:
            api_key: API key the identity was exchanged for
            identity: Verified identity

        Returns:
            The stored identity (expiration defaulted if it was unset)
        """
        ...

    def clear(self) -> int:
        """
        Remove all entries.

        Returns:
            Number of entries removed
        """
        ...

    @property
    def size(self) -> int:
        """Number of cached entries."""
        ...


class InMemoryIdentityCache:
    """
    In-memory identity cache with LRU eviction.

    Thread-safe; bounded by capacity. Expired entries are evicted lazily
    on lookup, or in bulk by cleanup().

    Usage:
        cache = InMemoryIdentityCache(capacity=5000)
        cache.put(api_key, identity)

        identity = cache.get(api_key)
        if identity is None:
            # exchange the key
            ...
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize cache.

        Args:
            capacity: Maximum number of entries before LRU eviction
            default_ttl: Lifetime for identities without an expiration
            clock: Time source in epoch seconds
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._capacity = capacity
        self._default_ttl = default_ttl
        self._clock = clock
        self.evictions = 0

    def get(self, api_key: str) -> Identity | None:
        """Return the cached identity, evicting it if expired."""
        now = self._clock()

        with self._lock:
            entry = self._entries.get(api_key)
            if entry is None:
                return None

            if now >= entry.expires_at:
                del self._entries[api_key]
                return None

            self._entries.move_to_end(api_key)
            return entry.identity

    def put(self, api_key: str, identity: Identity) -> Identity:
        """Store an identity, defaulting its expiration to now + TTL."""
        identity = identity.with_default_expiry(self._clock(), self._default_ttl)
        entry = CacheEntry(
            api_key=api_key,
            identity=identity,
            expires_at=identity.expires_at or 0.0,
        )

        with self._lock:
            self._entries[api_key] = entry
            self._entries.move_to_end(api_key)

            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
                self.evictions += 1

        return identity

    def clear(self) -> int:
        """Remove all entries."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def cleanup(self) -> int:
        """Remove expired entries."""
        now = self._clock()

        with self._lock:
            expired = [k for k, v in self._entries.items() if now >= v.expires_at]
            for k in expired:
                del self._entries[k]
            return len(expired)

    @property
    def capacity(self) -> int:
        """Maximum number of entries."""
        return self._capacity

    @property
    def size(self) -> int:
        """Number of entries in cache (expired ones included until evicted)."""
        with self._lock:
            return len(self._entries)


class RedisIdentityCache:
    """
    Redis-backed identity cache.

    Stores claims as JSON with a Redis TTL equal to the remaining lifetime,
    so Redis expires entries on its own. Suitable for multi-instance
    deployments sharing one cache.

    Usage:
        import redis
        client = redis.Redis(host='localhost', port=6379, db=0)
        cache = RedisIdentityCache(client)
    """

    def __init__(
        self,
        redis_client: Any,  # redis.Redis
        key_prefix: str = "gatekeeper:identity:",
        *,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize Redis cache.

        Args:
            redis_client: Redis client instance
            key_prefix: Redis key prefix
            default_ttl: Lifetime for identities without an expiration
            clock: Time source in epoch seconds
        """
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._default_ttl = default_ttl
        self._clock = clock

    def _key(self, api_key: str) -> str:
        return f"{self._key_prefix}{api_key}"

    def get(self, api_key: str) -> Identity | None:
        """Return the cached identity if present and unexpired."""
        data = self._redis.get(self._key(api_key))
        if data is None:
            return None

        identity = Identity.from_claims(json.loads(data))
        if identity.is_expired(self._clock()):
            self._redis.delete(self._key(api_key))
            return None
        return identity

    def put(self, api_key: str, identity: Identity) -> Identity:
        """Store an identity with a TTL matching its expiration."""
        now = self._clock()
        identity = identity.with_default_expiry(now, self._default_ttl)
        remaining = int((identity.expires_at or now) - now)

        if remaining <= 0:
            return identity

        self._redis.set(
            self._key(api_key),
            json.dumps(identity.claims, default=str),
            ex=remaining,
        )
        return identity

    def clear(self) -> int:
        """Delete every key under the prefix."""
        count = 0
        for key in self._redis.scan_iter(match=f"{self._key_prefix}*", count=1000):
            count += self._redis.delete(key)
        return count

    @property
    def size(self) -> int:
        """
        Number of cached entries.

        Note: Scans the keyspace; slow for large datasets.
        """
        return sum(1 for _ in self._redis.scan_iter(match=f"{self._key_prefix}*", count=1000))


class NullIdentityCache:
    """
    No-op cache that never stores.

    Every API-key request performs a key exchange.
    """

    def get(self, api_key: str) -> Identity | None:
        """Always a miss."""
        return None

    def put(self, api_key: str, identity: Identity) -> Identity:
        """Discard."""
        return identity

    def clear(self) -> int:
        """Nothing to clear."""
        return 0

    @property
    def size(self) -> int:
        """Always 0."""
        return 0

"""
Ephemeral keyed store.

Every piece of short-lived state in the gateway (checkout sessions, payment
tokens, OAuth codes, refresh tokens, revocation entries, idempotency claims)
lives behind the KeyValueStore interface. Single-use guarantees are expressed
only through the atomic primitives below; callers never emulate them with a
get followed by a set.

Usage:
    store = build_store(settings)
    created = await store.set_if_absent("idempotency:checkout:chk_1:k", {"status": "pending"}, 86400)
    record = await store.get_and_delete("oauth:refresh:<hash>")
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


class KeyValueStore(ABC):
    """TTL-capable key/value store with atomic conditional writes.

    Values are JSON documents. TTLs are wall-clock seconds.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the value for key, or None if absent or expired."""

    @abstractmethod
    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Write value and (re)set its TTL."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Atomically write value only if key does not exist.

        Returns True if this call created the key.
        """

    @abstractmethod
    async def remaining_ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime in seconds, or None if absent or persistent."""

    @abstractmethod
    async def get_and_delete(self, key: str) -> Optional[Any]:
        """Atomically read and remove key. At most one caller sees the value."""

    @abstractmethod
    async def compare_and_set(self, key: str, field: str, expected: Any, new_value: Any) -> bool:
        """Atomically set ``value[field] = new_value`` if ``value[field] == expected``.

        The key keeps its remaining TTL. Returns False if the key is absent
        or the field no longer holds ``expected``.
        """

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL of an existing key. Returns False if absent."""

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """
    In-process store for development and tests.

    Not shared across processes. A single asyncio.Lock serializes the
    conditional operations.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return raw

    def _expiry(self, ttl_seconds: int) -> float:
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            self._data[key] = (_dumps(value), self._expiry(ttl_seconds))

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (_dumps(value), self._expiry(ttl_seconds))
            return True

    async def remaining_ttl(self, key: str) -> Optional[int]:
        if self._live(key) is None:
            return None
        expires_at = self._data[key][1]
        if expires_at is None:
            return None
        return max(0, int(expires_at - self._clock()))

    async def get_and_delete(self, key: str) -> Optional[Any]:
        async with self._lock:
            raw = self._live(key)
            self._data.pop(key, None)
            return json.loads(raw) if raw is not None else None

    async def compare_and_set(self, key: str, field: str, expected: Any, new_value: Any) -> bool:
        async with self._lock:
            raw = self._live(key)
            if raw is None:
                return False
            doc = json.loads(raw)
            if not isinstance(doc, dict) or doc.get(field) != expected:
                return False
            doc[field] = new_value
            self._data[key] = (_dumps(doc), self._data[key][1])
            return True

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        async with self._lock:
            raw = self._live(key)
            if raw is None:
                return False
            self._data[key] = (raw, self._expiry(ttl_seconds))
            return True

    def clear(self) -> None:
        self._data.clear()


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store (redis.asyncio).

    Usage:
        store = RedisKeyValueStore.from_url("redis://localhost:6379/0")
        await store.set_with_ttl("checkout:chk_...", session.to_dict(), 86400)
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "ucp") -> None:
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "ucp") -> "RedisKeyValueStore":
        return cls(aioredis.from_url(url, decode_responses=True), namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            raise StoreUnavailableError("get", e) from e
        return json.loads(raw) if raw is not None else None

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._client.setex(self._key(key), max(1, int(ttl_seconds)), _dumps(value))
        except RedisError as e:
            logger.warning(f"Redis setex failed for {key}: {e}")
            raise StoreUnavailableError("set", e) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(self._key(key)))
        except RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            raise StoreUnavailableError("delete", e) from e

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            created = await self._client.set(
                self._key(key), _dumps(value), ex=max(1, int(ttl_seconds)), nx=True
            )
        except RedisError as e:
            logger.warning(f"Redis set NX failed for {key}: {e}")
            raise StoreUnavailableError("set_if_absent", e) from e
        return bool(created)

    async def remaining_ttl(self, key: str) -> Optional[int]:
        try:
            ttl = await self._client.ttl(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis ttl failed for {key}: {e}")
            raise StoreUnavailableError("ttl", e) from e
        # -2 missing, -1 no expiry
        return ttl if ttl is not None and ttl >= 0 else None

    async def get_and_delete(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.getdel(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis getdel failed for {key}: {e}")
            raise StoreUnavailableError("get_and_delete", e) from e
        return json.loads(raw) if raw is not None else None

    async def compare_and_set(self, key: str, field: str, expected: Any, new_value: Any) -> bool:
        rkey = self._key(key)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(rkey)
                        raw = await pipe.get(rkey)
                        if raw is None:
                            await pipe.unwatch()
                            return False
                        doc = json.loads(raw)
                        if not isinstance(doc, dict) or doc.get(field) != expected:
                            await pipe.unwatch()
                            return False
                        doc[field] = new_value
                        pttl = await pipe.pttl(rkey)
                        pipe.multi()
                        if pttl and pttl > 0:
                            pipe.set(rkey, _dumps(doc), px=pttl)
                        else:
                            pipe.set(rkey, _dumps(doc))
                        await pipe.execute()
                        return True
                    except WatchError:
                        # Another writer touched the key; re-read and re-check.
                        continue
        except RedisError as e:
            logger.warning(f"Redis compare_and_set failed for {key}: {e}")
            raise StoreUnavailableError("compare_and_set", e) from e

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        try:
            return bool(await self._client.expire(self._key(key), max(1, int(ttl_seconds))))
        except RedisError as e:
            logger.warning(f"Redis expire failed for {key}: {e}")
            raise StoreUnavailableError("expire", e) from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(self._key(key)))
        except RedisError as e:
            raise StoreUnavailableError("exists", e) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


def build_store(settings) -> KeyValueStore:
    """Pick the store implementation for the given settings."""
    if settings.redis_url:
        logger.info("Using Redis for ephemeral state")
        return RedisKeyValueStore.from_url(settings.redis_url)
    if settings.is_production():
        raise RuntimeError("UCP_REDIS_URL is required outside dev/test")
    logger.info("No UCP_REDIS_URL set, using in-memory store")
    return InMemoryKeyValueStore()


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "build_store",
]

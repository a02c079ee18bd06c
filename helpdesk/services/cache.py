from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis

from core.config import RedisConfig


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any: ...
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def incr(self, key: str, ttl: int | None = None) -> int: ...
    async def ping(self) -> bool: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class _MemoryValue:
    value: Any
    expires_at: float | None


class MemoryCache(CacheBackend):
    """Process-local cache used when Redis is disabled (single instance, tests)."""

    def __init__(self) -> None:
        self._store: dict[str, _MemoryValue] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _is_expired(entry: _MemoryValue) -> bool:
        return entry.expires_at is not None and time.monotonic() >= entry.expires_at

    @staticmethod
    def _expiry(ttl: int | None) -> float | None:
        return time.monotonic() + ttl if ttl else None

    async def get(self, key: str) -> Any:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._store[key]
                return None
            return entry.value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        async with self._lock:
            self._store[key] = _MemoryValue(value=value, expires_at=self._expiry(ttl))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def incr(self, key: str, ttl: int | None = None) -> int:
        # The window starts at the first hit; later hits keep its expiry.
        async with self._lock:
            entry = self._store.get(key)
            if entry is None or self._is_expired(entry):
                self._store[key] = _MemoryValue(value=1, expires_at=self._expiry(ttl))
                return 1
            entry.value = int(entry.value) + 1
            return entry.value

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._store.clear()


class RedisCache(CacheBackend):
    """Shared cache so that rate-limit windows hold across API replicas."""

    def __init__(self, url: str, key_prefix: str = "helpdesk:") -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if ttl:
            await self._client.set(self._key(key), value, ex=ttl)
        else:
            await self._client.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def incr(self, key: str, ttl: int | None = None) -> int:
        full_key = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            if ttl:
                # NX keeps the expiry of an already running window.
                pipe.expire(full_key, ttl, nx=True)
            result = await pipe.execute()
        return int(result[0])

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


async def build_cache(config: RedisConfig) -> CacheBackend:
    if config.enabled:
        return RedisCache(config.url)
    return MemoryCache()

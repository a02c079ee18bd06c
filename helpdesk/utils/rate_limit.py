from __future__ import annotations

from dataclasses import dataclass

from services.cache import CacheBackend


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    retry_after: int = 0


def ticket_create_key(tenant_id: str, user_id: str) -> str:
    return f"ratelimit:create_ticket:{tenant_id}:{user_id}"


class DistributedRateLimiter:
    """Fixed-window counter stored in the shared cache."""

    def __init__(self, cache: CacheBackend) -> None:
        self.cache = cache

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        current = await self.cache.incr(key, ttl=window_seconds)
        allowed = current <= limit
        return RateLimitResult(
            allowed=allowed,
            current=current,
            limit=limit,
            retry_after=0 if allowed else window_seconds,
        )

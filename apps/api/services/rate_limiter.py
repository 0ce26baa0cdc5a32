"""Per-user fixed-window request throttling.

Counters live in Redis when it is reachable and fall back to an in-process
table otherwise. Either way the check and the increment happen as one step,
and a rejected call leaves the counter unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from services.providers.types import ProviderError

logger = logging.getLogger(__name__)

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()

# KEYS[1] counter key, ARGV[1] max requests, ARGV[2] window seconds.
_CHECK_AND_INCREMENT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return 0
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return 1
"""


def _counter_key(user_id: str, endpoint: str) -> str:
    return f"achei:rate:{endpoint}:{user_id}"


async def _consume_local_quota(key: str, max_requests: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        if count >= max_requests:
            _local_counters[key] = (count, reset_at)
            return False
        _local_counters[key] = (count + 1, reset_at)
        return True


async def _consume_redis_quota(key: str, max_requests: int, window_seconds: int) -> bool:
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        allowed = await redis_client.eval(_CHECK_AND_INCREMENT, 1, key, max_requests, window_seconds)
    finally:
        await redis_client.aclose()
    return bool(int(allowed))


async def check_and_increment(user_id: str, endpoint: str, max_requests: int, window_minutes: int) -> bool:
    """Admit the call and count it, or reject it without counting."""
    key = _counter_key(user_id, endpoint)
    window_seconds = max(int(window_minutes * 60), 1)
    if settings.RATE_LIMIT_BACKEND == "redis":
        try:
            return await _consume_redis_quota(key, max_requests, window_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("Redis rate limiter unavailable, using local counters: %s", exc)
    return await _consume_local_quota(key, max_requests, window_seconds)


async def enforce_rate_limit(user_id: str, endpoint: str, max_requests: int, window_minutes: int) -> None:
    if not await check_and_increment(user_id, endpoint, max_requests, window_minutes):
        logger.info("Rate limit exceeded for user %s on %s", user_id, endpoint)
        raise ProviderError(
            "rate_limited",
            "Limite de requisições excedido. Tente novamente em alguns minutos.",
        )

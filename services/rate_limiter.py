from redis.asyncio import Redis

from core.config import settings
from core.exceptions import RateLimitError
from core.logger import logger


class RateLimiter:
    """Fixed-window counter per user and action."""

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, action: str, user_id: int) -> str:
        return f"{settings.REDIS_PREFIX}:rl:{action}:{user_id}"

    async def hit(self, action: str, user_id: int, limit: int, window_seconds: int) -> int:
        """Count one hit; raises ``RateLimitError`` once ``limit`` is reached within the window."""
        key = self._key(action, user_id)
        current_count = await self.redis.get(key)
        if current_count and int(current_count) >= limit:
            logger.warning("Rate limit reached", action=action, user_id=user_id, limit=limit)
            raise RateLimitError(details={"retry_after": await self.redis.ttl(key)})

        count = await self.redis.incr(key)
        if not current_count:
            await self.redis.expire(key, window_seconds)
        return count

    async def hit_session_create(self, user_id: int) -> int:
        return await self.hit(
            "session_create",
            user_id,
            settings.SESSION_CREATE_LIMIT,
            settings.SESSION_CREATE_WINDOW_SECONDS,
        )

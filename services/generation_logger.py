import json
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.config import settings
from core.logger import logger

# Batches that hit the prompt cache are billed at roughly a quarter of the full price
CACHE_COST_FACTOR = 4


@dataclass
class BatchLog:
    session_id: str
    batch_index: int
    success: bool
    duration_ms: int = 0
    question_count: int = 0
    cache_hit: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    cost: float = 0.0
    batch_id: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None
    logged_at: Optional[str] = None


def _ratio(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round(100 * part / whole, 1)


def summarize(stats: Dict[str, Any]) -> Dict[str, Any]:
    """Derive rates and savings from raw counters."""
    batches = int(float(stats.get("batches", 0)))
    successful = int(float(stats.get("successful", 0)))
    cache_hits = int(float(stats.get("cache_hits", 0)))
    total_cost = float(stats.get("cost", 0.0))
    cached_cost = float(stats.get("cached_cost", 0.0))
    total_ms = int(float(stats.get("duration_ms", 0)))

    cost_without_cache = total_cost + (CACHE_COST_FACTOR - 1) * cached_cost
    savings = cost_without_cache - total_cost
    return {
        "batches": batches,
        "successful_batches": successful,
        "failed_batches": batches - successful,
        "cache_hits": cache_hits,
        "questions_generated": int(float(stats.get("questions", 0))),
        "total_cost": round(total_cost, 6),
        "cost_without_cache": round(cost_without_cache, 6),
        "savings": round(savings, 6),
        "savings_percent": _ratio(savings, cost_without_cache),
        "cache_hit_rate": _ratio(cache_hits, successful),
        "success_rate": _ratio(successful, batches),
        "average_batch_ms": round(total_ms / successful) if successful else 0,
    }


class GenerationLogger:
    """Per-batch and per-session generation metrics kept in Redis with a TTL."""

    def __init__(self, redis: Redis):
        self.redis = redis
        self.prefix = f"{settings.REDIS_PREFIX}:genlog"

    def _batches_key(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}:batches"

    def _summary_key(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}:summary"

    @property
    def _global_key(self) -> str:
        return f"{self.prefix}:global"

    async def record_batch(self, entry: BatchLog):
        logger.info("Generation batch logged", **{k: v for k, v in asdict(entry).items() if v is not None})
        try:
            await self._store(entry)
        except RedisError as e:
            # Metrics must never fail a generation request
            logger.warning("Failed to store generation log", session_id=entry.session_id, error=str(e))

    async def _store(self, entry: BatchLog):
        ttl = settings.GENERATION_LOG_TTL_SECONDS
        batches_key = self._batches_key(entry.session_id)
        await self.redis.rpush(batches_key, json.dumps(asdict(entry), ensure_ascii=False))
        await self.redis.ltrim(batches_key, -settings.GENERATION_LOG_MAX_BATCHES, -1)
        await self.redis.expire(batches_key, ttl)

        for key in (self._summary_key(entry.session_id), self._global_key):
            await self.redis.hincrby(key, "batches", 1)
            if entry.success:
                await self.redis.hincrby(key, "successful", 1)
                await self.redis.hincrby(key, "questions", entry.question_count)
                await self.redis.hincrby(key, "duration_ms", entry.duration_ms)
                await self.redis.hincrbyfloat(key, "cost", entry.cost)
                if entry.cache_hit:
                    await self.redis.hincrby(key, "cache_hits", 1)
                    await self.redis.hincrbyfloat(key, "cached_cost", entry.cost)
        await self.redis.expire(self._summary_key(entry.session_id), ttl)

    async def batch_logs(self, session_id: str) -> List[Dict[str, Any]]:
        try:
            rows = await self.redis.lrange(self._batches_key(session_id), 0, -1)
        except RedisError as e:
            logger.warning("Failed to read generation log", session_id=session_id, error=str(e))
            return []
        return [json.loads(row) for row in rows]

    async def session_summary(self, session_id: str) -> Dict[str, Any]:
        try:
            stats = await self.redis.hgetall(self._summary_key(session_id))
        except RedisError as e:
            logger.warning("Failed to read generation summary", session_id=session_id, error=str(e))
            stats = {}
        return summarize(stats or {})

    async def performance_summary(self) -> Dict[str, Any]:
        try:
            stats = await self.redis.hgetall(self._global_key)
        except RedisError as e:
            logger.warning("Failed to read global generation summary", error=str(e))
            stats = {}
        return summarize(stats or {})

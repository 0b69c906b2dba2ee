"""
Redis cache for doctor schedule configuration
Only the public slot listing reads through this cache; booking paths always hit the database
"""

import logging
from typing import Any, Callable, Optional

import redis
from pydantic import ValidationError

from .config import (
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    REDIS_SSL,
    REDIS_URL,
    SLOT_CACHE_ENABLED,
    SLOT_CACHE_TTL,
)
from .domain.scheduling.schemas import ScheduleConfig

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """
    Get or create the shared Redis client
    Supports a REDIS_URL or individual host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection...")
        options = dict(
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        if REDIS_URL:
            client = redis.from_url(REDIS_URL, **options)
        else:
            client = redis.Redis(
                host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, ssl=REDIS_SSL, **options
            )
        try:
            client.ping()
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            raise
        logger.info("✅ Redis connected")
        redis_client = client

    return redis_client


class ScheduleCache:
    """
    ScheduleConfig snapshots keyed by doctor.

    Any Redis failure is logged and treated as a miss, so the slot listing
    falls back to the database instead of erroring.
    """

    prefix = "schedule_config"

    def __init__(
        self,
        enabled: bool = SLOT_CACHE_ENABLED,
        ttl: int = SLOT_CACHE_TTL,
        client: Optional[redis.Redis] = None,
    ):
        self.enabled = enabled
        self.ttl = ttl
        self.client = client

    def key(self, doctor_id: int) -> str:
        return f"{self.prefix}:{doctor_id}"

    def connection(self) -> Optional[redis.Redis]:
        if not self.enabled:
            return None
        if self.client is None:
            try:
                self.client = get_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Schedule cache unavailable: {e}")
                return None
        return self.client

    def _run(self, action: str, doctor_id: int, command: Callable[[Any, str], Any], fallback=None):
        client = self.connection()
        if client is None:
            return fallback
        try:
            return command(client, self.key(doctor_id))
        except redis.RedisError as e:
            logger.error(f"❌ Schedule cache {action} failed for doctor {doctor_id}: {e}")
            return fallback

    def load(self, doctor_id: int) -> Optional[ScheduleConfig]:
        raw = self._run("read", doctor_id, lambda client, key: client.get(key))
        if not raw:
            logger.debug(f"❌ Schedule cache MISS: doctor {doctor_id}")
            return None
        try:
            schedule = ScheduleConfig.model_validate_json(raw)
        except ValidationError:
            # Snapshot from an older ScheduleConfig layout
            logger.warning(f"⚠️ Dropping unreadable cached schedule for doctor {doctor_id}")
            self.invalidate(doctor_id)
            return None
        logger.debug(f"✅ Schedule cache HIT: doctor {doctor_id}")
        return schedule

    def store(self, schedule: ScheduleConfig) -> bool:
        payload = schedule.model_dump_json()
        stored = self._run(
            "write",
            schedule.doctor_id,
            lambda client, key: client.setex(key, self.ttl, payload) or True,
            fallback=False,
        )
        if stored:
            logger.debug(f"✅ Cached schedule for doctor {schedule.doctor_id} (TTL: {self.ttl}s)")
        return stored

    def invalidate(self, doctor_id: int) -> bool:
        """Drop a doctor's snapshot after any settings change"""
        return self._run(
            "invalidate", doctor_id, lambda client, key: client.delete(key) or True, fallback=False
        )

    def stats(self) -> dict:
        client = self.connection()
        if client is None:
            return {"available": False}

        try:
            info = client.info()
        except redis.RedisError as e:
            logger.error(f"❌ Failed to get cache stats: {e}")
            return {"available": False, "error": str(e)}

        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "available": True,
            "used_memory": info.get("used_memory_human"),
            "connected_clients": info.get("connected_clients"),
            "hit_rate": (hits / max(hits + misses, 1)) * 100,
        }


schedule_cache = ScheduleCache()

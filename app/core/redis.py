"""
Redis configuration and connection management
"""

import redis.asyncio as redis
from typing import Optional
import logging
import time
import uuid

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis client
redis_client: Optional[redis.Redis] = None


async def init_redis():
    """
    Initialize Redis connection
    """
    global redis_client
    try:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )
        # Test connection
        await redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise


async def close_redis():
    """
    Close Redis connection
    """
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> redis.Redis:
    """
    Get Redis client
    """
    if not redis_client:
        await init_redis()
    return redis_client


class RedisManager:
    """
    Redis manager for short-lived distributed locks
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client
        self.logger = logging.getLogger(__name__)

    async def get_client(self) -> redis.Redis:
        if not self.client:
            self.client = await get_redis()
        return self.client

    async def acquire_lock(
        self,
        resource: str,
        identifier: Optional[str] = None,
        ttl: int = 30
    ) -> Optional[str]:
        """
        Acquire a distributed lock using atomic Lua script

        Args:
            resource: Resource to lock (e.g., "payment:PAY123")
            identifier: Unique identifier for lock owner
            ttl: Time to live in seconds

        Returns:
            Lock identifier if successful, None otherwise
        """
        lock_key = f"lock:{resource}"
        lock_value = identifier or str(uuid.uuid4())

        lua_script = """
        local lock_key = KEYS[1]
        local lock_value = ARGV[1]
        local ttl = tonumber(ARGV[2])
        local timestamp = ARGV[3]

        if redis.call("set", lock_key, lock_value, "NX", "EX", ttl) then
            local meta_key = lock_key .. ":meta"
            redis.call("hset", meta_key, "owner", lock_value, "acquired_at", timestamp, "ttl", ttl)
            redis.call("expire", meta_key, ttl)
            return lock_value
        else
            return nil
        end
        """

        try:
            client = await self.get_client()
            timestamp = str(int(time.time()))
            result = await client.eval(
                lua_script,
                1,
                lock_key,
                lock_value,
                ttl,
                timestamp
            )

            if result:
                self.logger.debug(f"Lock acquired for {resource} with identifier {lock_value}")
                return result.decode() if isinstance(result, bytes) else result
            return None
        except Exception as e:
            self.logger.error(f"Error acquiring lock for {resource}: {e}")
            return None

    async def release_lock(
        self,
        resource: str,
        identifier: str
    ) -> bool:
        """
        Release a distributed lock using atomic Lua script

        Only the owner identifier can release; an expired lock taken over by
        another owner is left alone.
        """
        lock_key = f"lock:{resource}"

        lua_script = """
        local lock_key = KEYS[1]
        local identifier = ARGV[1]
        local meta_key = lock_key .. ":meta"

        local current_owner = redis.call("get", lock_key)
        if current_owner == identifier then
            redis.call("del", lock_key)
            redis.call("del", meta_key)
            return 1
        else
            return 0
        end
        """

        try:
            client = await self.get_client()
            result = await client.eval(lua_script, 1, lock_key, identifier)
            released = result == 1

            if released:
                self.logger.debug(f"Lock released for {resource}")
            else:
                self.logger.warning(f"Failed to release lock for {resource} - wrong identifier or lock expired")

            return released
        except Exception as e:
            self.logger.error(f"Error releasing lock for {resource}: {e}")
            return False


# Create global Redis manager
redis_manager = RedisManager()

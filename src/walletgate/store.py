"""Redis-backed local key-value store for the session snapshot and settings."""

from typing import Optional

from loguru import logger
from redis import asyncio as aioredis

from .config import Config
from .redis_client import get_redis_client


class LocalStore:
    """
    Prefixed key-value store over the shared Redis client.

    Features:
    - Lazy Redis client initialization
    - Fail-safe reads (a Redis failure reads as "absent")
    - Writes and deletes report success as a boolean
    - Convenience accessors for the persisted session snapshot
    """

    def __init__(self, prefix: str = Config.STORE_PREFIX):
        """
        Initialize the store.

        Args:
            prefix: Namespace prepended to every key
        """
        self._prefix = prefix
        self._redis_client: Optional[aioredis.Redis] = None

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis_client is None:
            self._redis_client = await get_redis_client()
        return self._redis_client

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        """
        Read a value.

        Returns:
            Stored string, or None when absent or Redis is unreachable
        """
        try:
            redis = await self._get_redis()
            return await redis.get(self._key(key))
        except (aioredis.ConnectionError, aioredis.TimeoutError) as e:
            logger.error(f"Redis connection failed reading {key}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error reading {key}: {e}")
            return None

    async def set(self, key: str, value: str) -> bool:
        """Write a value. Returns False when the write failed."""
        try:
            redis = await self._get_redis()
            await redis.set(self._key(key), value)
            return True
        except (aioredis.ConnectionError, aioredis.TimeoutError) as e:
            logger.error(f"Redis connection failed writing {key}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error writing {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a value. Returns True if it was deleted or did not exist."""
        try:
            redis = await self._get_redis()
            await redis.delete(self._key(key))
            return True
        except (aioredis.ConnectionError, aioredis.TimeoutError) as e:
            logger.error(f"Redis connection failed deleting {key}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error deleting {key}: {e}")
            return False

    # ------------------------------------------------------------------
    # Session snapshot
    # ------------------------------------------------------------------

    async def get_snapshot(self) -> Optional[str]:
        """Return the persisted base64 snapshot, if any."""
        value = await self.get(Config.SNAPSHOT_KEY)
        return value or None

    async def has_snapshot(self) -> bool:
        return await self.get_snapshot() is not None

    async def save_snapshot(self, encoded: str) -> bool:
        return await self.set(Config.SNAPSHOT_KEY, encoded)

    async def clear_snapshot(self) -> bool:
        removed = await self.delete(Config.SNAPSHOT_KEY)
        if removed:
            logger.info("Persisted session snapshot removed")
        return removed

import json
from typing import Any, Optional

import redis.asyncio as redis

from ..utils.logging_utils import setup_logger

logger = setup_logger(__name__)


class RedisClient:
    """
    Best-effort wrapper around an asyncio Redis connection.

    Every operation returns None/False instead of raising when the store is
    disabled, not connected, or failing, so callers can treat the cache as
    optional.
    """

    def __init__(self, url: str, enabled: bool = True, client: Optional[Any] = None):
        self.url = url
        self.enabled = enabled
        self._client = client
        self._connected = client is not None and enabled

    async def connect(self) -> None:
        if not self.enabled:
            logger.info("Redis connection skipped (disabled)")
            return
        if self._connected:
            return
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        try:
            await self._client.ping()
        except Exception:
            # run without cache rather than failing the process
            self.enabled = False
            self._connected = False
            raise
        self._connected = True
        logger.info("Redis client connected")

    async def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        finally:
            self._connected = False
            logger.info("Redis client disconnected")

    def is_ready(self) -> bool:
        return self.enabled and self._connected and self._client is not None

    # --- string values ---

    async def get(self, key: str) -> Optional[str]:
        if not self.is_ready():
            return None
        try:
            return await self._client.get(key)
        except Exception as e:
            logger.warning("Redis GET %s failed: %s", key, e)
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        if not self.is_ready():
            return False
        try:
            if ttl:
                await self._client.set(key, value, ex=ttl)
            else:
                await self._client.set(key, value)
            return True
        except Exception as e:
            logger.warning("Redis SET %s failed: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        """True only when a key was actually removed."""
        if not self.is_ready():
            return False
        try:
            return bool(await self._client.delete(key))
        except Exception as e:
            logger.warning("Redis DEL %s failed: %s", key, e)
            return False

    async def exists(self, key: str) -> bool:
        if not self.is_ready():
            return False
        try:
            return await self._client.exists(key) == 1
        except Exception as e:
            logger.warning("Redis EXISTS %s failed: %s", key, e)
            return False

    async def expire(self, key: str, seconds: int) -> bool:
        if not self.is_ready():
            return False
        try:
            return bool(await self._client.expire(key, seconds))
        except Exception as e:
            logger.warning("Redis EXPIRE %s failed: %s", key, e)
            return False

    async def ttl(self, key: str) -> Optional[int]:
        if not self.is_ready():
            return None
        try:
            return await self._client.ttl(key)
        except Exception as e:
            logger.warning("Redis TTL %s failed: %s", key, e)
            return None

    # --- JSON values ---

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_ready():
            return False
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Value for %s is not JSON serializable: %s", key, e)
            return False
        return await self.set(key, payload, ttl)

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning("Corrupt JSON under %s: %s", key, e)
            return None

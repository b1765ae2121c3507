import logging

from redis import RedisError
from redis.asyncio import Redis as AsyncRedis

from ..application.auth_rate_limit import lockout_key

logger = logging.getLogger("adminkit.redis")


def get_async_redis_client(redis_url: str | None) -> AsyncRedis:
    """Create an async Redis client for the configured URL."""
    if not redis_url:
        raise ValueError("redis_url must be set to use the Redis login throttle")
    return AsyncRedis.from_url(redis_url, decode_responses=True)


class RedisLoginThrottle:
    """
    Cluster-wide login lockout using a fixed-window counter (INCR + EXPIRE).

    The first failure starts a window of ``lockout_seconds``; reaching
    ``max_attempts`` failures inside it locks the account until the key
    expires. Redis outages are logged and never lock anyone out.
    """

    def __init__(
        self,
        redis_client: AsyncRedis,
        max_attempts: int,
        lockout_seconds: int,
        key_prefix: str = "adminkit",
    ):
        self._redis = redis_client
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self._key_prefix = key_prefix
        self._closed = False

    def _key(self, identifier: str) -> str:
        return f"{self._key_prefix}:{lockout_key(identifier)}"

    async def is_locked(self, identifier: str) -> bool:
        key = self._key(identifier)
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            logger.error("Redis operation failed operation=GET key=%s error=%s", key, exc)
            return False
        try:
            return int(raw or 0) >= self.max_attempts
        except ValueError:
            logger.error("Corrupt lockout counter key=%s value=%r", key, raw)
            return False

    async def record_failure(self, identifier: str) -> None:
        key = self._key(identifier)
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, self.lockout_seconds)
        except RedisError as exc:
            logger.error("Redis operation failed operation=INCR key=%s error=%s", key, exc)
            return
        if count >= self.max_attempts:
            logger.warning("Login lockout engaged key=%s ttl=%ds", key, self.lockout_seconds)

    async def reset(self, identifier: str) -> None:
        key = self._key(identifier)
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            logger.error("Redis operation failed operation=DEL key=%s error=%s", key, exc)

    async def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._redis.aclose()
        except RedisError as exc:
            logger.error("Redis operation failed operation=CLOSE error=%s", exc)
            return
        logger.info("Redis login throttle connection closed")

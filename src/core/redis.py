"""
Redis connection used as the cross-process transport for change events.

Redis is optional. When it is disabled or unreachable every call degrades to
a falsy result instead of raising, and callers fall back to in-process
delivery.
"""
import logging

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

MAX_CONNECTIONS = 20
# Each open subscription pins one connection, so subscribers get their own pool
MAX_SUBSCRIBERS = 100
# Seconds between keepalive checks on idle subscriber connections
HEALTH_CHECK_INTERVAL = 30


class RedisClient:
    """Publishes to and hands out subscriptions on a single Redis server."""

    def __init__(
        self,
        url: str,
        enabled: bool = True,
        max_connections: int = MAX_CONNECTIONS,
        max_subscribers: int = MAX_SUBSCRIBERS,
    ) -> None:
        self._url = url
        self._enabled = enabled
        self._max_connections = max_connections
        self._max_subscribers = max_subscribers
        self._redis: Redis | None = None
        self._subscriber_redis: Redis | None = None

    async def connect(self) -> None:
        """Open the connection pool; stay disconnected if Redis cannot be reached."""
        if not self._enabled:
            logger.info("redis_disabled")
            return
        redis = Redis.from_url(
            self._url,
            max_connections=self._max_connections,
            decode_responses=True,
        )
        try:
            await redis.ping()
        except RedisError as e:
            logger.warning("redis_unavailable", extra={"error": str(e)})
            await redis.aclose()
            return
        self._redis = redis
        self._subscriber_redis = Redis.from_url(
            self._url,
            max_connections=self._max_subscribers,
            decode_responses=True,
            health_check_interval=HEALTH_CHECK_INTERVAL,
        )
        logger.info("redis_connected")

    async def close(self) -> None:
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None
        if self._subscriber_redis is not None:
            await self._subscriber_redis.aclose()
            self._subscriber_redis = None
        logger.info("redis_closed")

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    async def ping(self) -> bool:
        """True if Redis answers right now."""
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def publish(self, channel: str, message: str) -> bool:
        """Send message on channel. False means the caller must deliver it another way."""
        if self._redis is None:
            return False
        try:
            await self._redis.publish(channel, message)
        except RedisError as e:
            logger.warning("redis_publish_failed", extra={"channel": channel, "error": str(e)})
            return False
        return True

    def pubsub(self) -> PubSub | None:
        """
        New subscriber handle, or None when disconnected. The caller closes it.

        Handles draw from the subscriber pool; once it is exhausted, subscribing
        raises a ConnectionError instead of starving publishes.
        """
        if self._subscriber_redis is None:
            return None
        return self._subscriber_redis.pubsub(ignore_subscribe_messages=True)


class _RedisState:
    client: RedisClient | None = None


_state = _RedisState()


def get_redis_client() -> RedisClient | None:
    """Client installed by the app lifespan, if any."""
    return _state.client


def set_redis_client(client: RedisClient | None) -> None:
    _state.client = client

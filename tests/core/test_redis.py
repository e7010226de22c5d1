"""
Tests for the Redis client module.

Redis itself is mocked: these tests cover the graceful-fallback behavior,
which is what the change feed relies on when Redis is down.
"""
from unittest.mock import AsyncMock, MagicMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from core.redis import RedisClient, get_redis_client, set_redis_client


class TestRedisFallback:
    """Tests for behavior when Redis is disabled or unreachable."""

    async def test__connect__disabled_client_stays_disconnected(self) -> None:
        """A disabled client never connects and every call degrades."""
        client = RedisClient("redis://localhost:6379", enabled=False)
        await client.connect()

        assert client.is_connected is False
        assert await client.ping() is False
        assert await client.publish("bookmarks:u1", "{}") is False
        assert client.pubsub() is None

    async def test__connect__unreachable_redis_stays_disconnected(self) -> None:
        """A failed ping on connect leaves the client disconnected."""
        redis_mock = MagicMock()
        redis_mock.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        redis_mock.aclose = AsyncMock()
        with patch("core.redis.Redis.from_url", return_value=redis_mock):
            client = RedisClient("redis://localhost:6379")
            await client.connect()

        assert client.is_connected is False
        redis_mock.aclose.assert_awaited_once()

    async def test__connect__reachable_redis_connects(self) -> None:
        """A successful ping marks the client connected and close releases both pools."""
        redis_mock = MagicMock()
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.aclose = AsyncMock()
        subscriber_mock = MagicMock()
        subscriber_mock.aclose = AsyncMock()
        with patch("core.redis.Redis.from_url", side_effect=[redis_mock, subscriber_mock]):
            client = RedisClient("redis://localhost:6379")
            await client.connect()

        assert client.is_connected is True
        await client.close()
        assert client.is_connected is False
        assert client.pubsub() is None
        redis_mock.aclose.assert_awaited_once()
        subscriber_mock.aclose.assert_awaited_once()


class TestRedisPublish:
    """Tests for publish on a connected client."""

    async def test__publish__sends_to_channel(self) -> None:
        """Publish forwards channel and payload."""
        redis_mock = MagicMock()
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.publish = AsyncMock(return_value=1)
        with patch("core.redis.Redis.from_url", return_value=redis_mock):
            client = RedisClient("redis://localhost:6379")
            await client.connect()

        assert await client.publish("bookmarks:u1", '{"eventType": "INSERT"}') is True
        redis_mock.publish.assert_awaited_once_with("bookmarks:u1", '{"eventType": "INSERT"}')

    async def test__publish__redis_error_returns_false(self) -> None:
        """A Redis failure during publish is swallowed and reported as False."""
        redis_mock = MagicMock()
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.publish = AsyncMock(side_effect=RedisError("broken pipe"))
        with patch("core.redis.Redis.from_url", return_value=redis_mock):
            client = RedisClient("redis://localhost:6379")
            await client.connect()

        assert await client.publish("bookmarks:u1", "{}") is False

    async def test__pubsub__uses_separate_subscriber_pool(self) -> None:
        """Subscriber handles come from their own pool and skip subscribe confirmations."""
        redis_mock = MagicMock()
        redis_mock.ping = AsyncMock(return_value=True)
        subscriber_mock = MagicMock()
        with patch(
            "core.redis.Redis.from_url", side_effect=[redis_mock, subscriber_mock],
        ) as from_url:
            client = RedisClient("redis://cache:6379/1", max_connections=5, max_subscribers=7)
            await client.connect()

        assert client.pubsub() is subscriber_mock.pubsub.return_value
        subscriber_mock.pubsub.assert_called_once_with(ignore_subscribe_messages=True)
        redis_mock.pubsub.assert_not_called()
        publisher_call, subscriber_call = from_url.call_args_list
        assert publisher_call.args == subscriber_call.args == ("redis://cache:6379/1",)
        assert publisher_call.kwargs["max_connections"] == 5
        assert subscriber_call.kwargs["max_connections"] == 7
        assert subscriber_call.kwargs["decode_responses"] is True
        assert subscriber_call.kwargs["health_check_interval"] == 30


class TestGlobalClient:
    """Tests for the process-wide client accessors."""

    def test__set_redis_client__roundtrip(self) -> None:
        """The global client can be replaced and cleared."""
        client = RedisClient("redis://localhost:6379", enabled=False)
        set_redis_client(client)
        try:
            assert get_redis_client() is client
        finally:
            set_redis_client(None)
        assert get_redis_client() is None

"""Tests for the per-owner change feed."""
import asyncio
from collections.abc import Generator
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.redis import RedisClient, set_redis_client
from schemas.bookmark import BookmarkResponse, ChangeEvent
from services.change_feed import (
    ChangeFeed,
    channel_name,
    delete_event,
    insert_event,
    update_event,
)


def _row(bookmark_id: str = "b1", title: str = "Spotify") -> BookmarkResponse:
    return BookmarkResponse(
        id=bookmark_id,
        title=title,
        url="https://open.spotify.com/",
        user_id="u1",
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


@pytest.fixture(autouse=True)
def no_redis() -> Generator[None]:
    """Run against the in-process fallback unless a test installs a client."""
    set_redis_client(None)
    yield
    set_redis_client(None)


class TestChangeEvent:
    """Tests for the event schema."""

    def test__record_id__taken_from_new_row(self) -> None:
        """INSERT/UPDATE events identify the row by its new state."""
        assert update_event(_row("b2"), _row("b2", "Old")).record_id == "b2"

    def test__record_id__falls_back_to_old_row(self) -> None:
        """DELETE events only carry the old row."""
        assert delete_event(_row("b3")).record_id == "b3"

    def test__event__requires_a_row(self) -> None:
        """An event with neither new nor old state is rejected."""
        with pytest.raises(ValueError, match="carries no row"):
            ChangeEvent(event_type="INSERT")

    def test__event__serializes_with_event_type_alias(self) -> None:
        """Events round-trip through JSON under the eventType key."""
        payload = insert_event(_row()).model_dump_json(by_alias=True)
        assert '"eventType":"INSERT"' in payload
        assert ChangeEvent.model_validate_json(payload).new.id == "b1"


class TestLocalFanOut:
    """Tests for in-process delivery when Redis is unavailable."""

    async def test__subscribe__receives_published_event(self) -> None:
        """A subscriber gets events published for its owner."""
        feed = ChangeFeed()
        stream = feed.subscribe("u1")
        pending = asyncio.ensure_future(anext(stream))
        await asyncio.sleep(0)
        assert feed.subscriber_count("u1") == 1

        await feed.publish("u1", insert_event(_row()))

        event = await asyncio.wait_for(pending, timeout=1)
        assert event.event_type == "INSERT"
        assert event.record_id == "b1"

        await stream.aclose()
        assert feed.subscriber_count("u1") == 0

    async def test__publish__scoped_to_owner(self) -> None:
        """Events for one owner never reach another owner's subscriber."""
        feed = ChangeFeed()
        stream = feed.subscribe("u2")
        pending = asyncio.ensure_future(anext(stream))
        await asyncio.sleep(0)

        await feed.publish("u1", insert_event(_row()))
        await asyncio.sleep(0)

        assert not pending.done()
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert feed.subscriber_count("u2") == 0

    async def test__publish__fans_out_to_every_session(self) -> None:
        """Each open session of the owner gets its own copy."""
        feed = ChangeFeed()
        streams = [feed.subscribe("u1"), feed.subscribe("u1")]
        pendings = [asyncio.ensure_future(anext(s)) for s in streams]
        await asyncio.sleep(0)

        await feed.publish("u1", delete_event(_row()))

        events = await asyncio.wait_for(asyncio.gather(*pendings), timeout=1)
        assert [e.event_type for e in events] == ["DELETE", "DELETE"]
        for stream in streams:
            await stream.aclose()

    async def test__publish__without_subscribers_is_noop(self) -> None:
        """Publishing with nobody listening does nothing and does not raise."""
        await ChangeFeed().publish("nobody", insert_event(_row()))


class TestRedisTransport:
    """Tests for delivery through Redis when it is connected."""

    async def test__publish__goes_through_redis(self) -> None:
        """With Redis connected, events are published on the owner's channel."""
        redis_client = MagicMock(spec=RedisClient)
        redis_client.is_connected = True
        redis_client.publish = AsyncMock(return_value=True)
        set_redis_client(redis_client)

        await ChangeFeed().publish("u1", insert_event(_row()))

        channel, payload = redis_client.publish.await_args.args
        assert channel == channel_name("u1") == "bookmarks:u1"
        assert ChangeEvent.model_validate_json(payload).record_id == "b1"

    async def test__publish__falls_back_to_local_when_redis_fails(self) -> None:
        """A failed Redis publish still reaches in-process subscribers."""
        feed = ChangeFeed()
        stream = feed.subscribe("u1")
        pending = asyncio.ensure_future(anext(stream))
        await asyncio.sleep(0)

        redis_client = MagicMock(spec=RedisClient)
        redis_client.is_connected = True
        redis_client.publish = AsyncMock(return_value=False)
        set_redis_client(redis_client)

        await feed.publish("u1", insert_event(_row()))

        event = await asyncio.wait_for(pending, timeout=1)
        assert event.record_id == "b1"
        await stream.aclose()

    async def test__subscribe__reads_redis_messages(self) -> None:
        """Subscribers decode pub/sub messages and skip malformed ones."""
        messages = [
            {"type": "message", "data": "not json"},
            {"type": "message", "data": insert_event(_row("b9")).model_dump_json(by_alias=True)},
        ]

        async def listen():  # noqa: ANN202
            for message in messages:
                yield message

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        redis_client = MagicMock(spec=RedisClient)
        redis_client.pubsub = MagicMock(return_value=pubsub)
        set_redis_client(redis_client)

        stream = ChangeFeed().subscribe("u1")
        event = await asyncio.wait_for(anext(stream), timeout=1)
        await stream.aclose()

        assert event.record_id == "b9"
        pubsub.subscribe.assert_awaited_once_with("bookmarks:u1")
        pubsub.unsubscribe.assert_awaited_once_with("bookmarks:u1")

    async def test__publish__failed_redis_publish_reaches_redis_subscriber(self) -> None:
        """A subscriber listening on Redis still gets events whose publish to Redis failed."""

        async def listen():  # noqa: ANN202
            await asyncio.Event().wait()
            yield {}

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        redis_client = MagicMock(spec=RedisClient)
        redis_client.is_connected = True
        redis_client.pubsub = MagicMock(return_value=pubsub)
        redis_client.publish = AsyncMock(return_value=False)
        set_redis_client(redis_client)

        feed = ChangeFeed()
        stream = feed.subscribe("u1")
        pending = asyncio.ensure_future(anext(stream))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        pubsub.subscribe.assert_awaited_once_with("bookmarks:u1")

        await feed.publish("u1", update_event(_row("b4", "New"), _row("b4", "Old")))

        event = await asyncio.wait_for(pending, timeout=1)
        assert event.event_type == "UPDATE"
        assert event.record_id == "b4"
        redis_client.publish.assert_awaited_once()

        await stream.aclose()
        pubsub.unsubscribe.assert_awaited_once_with("bookmarks:u1")
        pubsub.aclose.assert_awaited_once()
        assert feed.subscriber_count("u1") == 0

    async def test__subscribe__survives_redis_subscription_error(self) -> None:
        """A Redis error while subscribing leaves the stream open for in-process events."""
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock(side_effect=RedisConnectionError("Too many connections"))
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        redis_client = MagicMock(spec=RedisClient)
        redis_client.is_connected = False
        redis_client.pubsub = MagicMock(return_value=pubsub)
        set_redis_client(redis_client)

        feed = ChangeFeed()
        stream = feed.subscribe("u1")
        pending = asyncio.ensure_future(anext(stream))
        for _ in range(3):
            await asyncio.sleep(0)
        assert not pending.done()
        pubsub.aclose.assert_awaited_once()

        await feed.publish("u1", delete_event(_row("b5")))

        event = await asyncio.wait_for(pending, timeout=1)
        assert event.event_type == "DELETE"
        assert event.record_id == "b5"
        await stream.aclose()
        assert feed.subscriber_count("u1") == 0

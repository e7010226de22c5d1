"""
Per-owner real-time feed of bookmark change events.

Events go through Redis pub/sub when Redis is connected so every API process
sees them. Every subscriber also holds an in-process queue, and a publish
that cannot reach Redis is fanned out to those queues instead.
"""
import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator

from pydantic import ValidationError
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from core.redis import get_redis_client
from schemas.bookmark import BookmarkResponse, ChangeEvent

logger = logging.getLogger(__name__)

# Bound per-subscriber backlog so a stalled consumer cannot grow memory without limit
LOCAL_QUEUE_SIZE = 100


def channel_name(user_id: str) -> str:
    """Redis channel carrying one owner's events."""
    return f"bookmarks:{user_id}"


class ChangeFeed:
    """Publishes and subscribes to change events scoped to one owner id."""

    def __init__(self) -> None:
        self._local: dict[str, set[asyncio.Queue[ChangeEvent]]] = defaultdict(set)

    def subscriber_count(self, user_id: str) -> int:
        """Number of open subscriptions for an owner in this process."""
        return len(self._local.get(user_id, ()))

    async def publish(self, user_id: str, event: ChangeEvent) -> None:
        """Deliver an event to every subscriber of the owner. Never raises on transport failure."""
        redis_client = get_redis_client()
        if redis_client is not None and redis_client.is_connected:
            if await redis_client.publish(channel_name(user_id), event.model_dump_json(by_alias=True)):
                return
            logger.warning("change_feed_redis_publish_failed", extra={"user_id": user_id})
        self._fan_out(user_id, event)

    def _fan_out(self, user_id: str, event: ChangeEvent) -> None:
        for queue in self._local.get(user_id, ()):
            self._deliver(user_id, queue, event)

    @staticmethod
    def _deliver(user_id: str, queue: asyncio.Queue[ChangeEvent], event: ChangeEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "change_feed_subscriber_lagging",
                extra={"user_id": user_id, "event_type": event.event_type},
            )

    async def subscribe(self, user_id: str) -> AsyncIterator[ChangeEvent]:
        """
        Yield the owner's events until the consumer stops iterating.

        Every subscriber reads from its own in-process queue. With Redis
        connected, a relay task also copies the owner's channel into that
        queue, so events published locally after a Redis failure still arrive.
        """
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=LOCAL_QUEUE_SIZE)
        self._local[user_id].add(queue)
        redis_client = get_redis_client()
        pubsub = redis_client.pubsub() if redis_client is not None else None
        relay = (
            asyncio.create_task(self._relay_redis(pubsub, user_id, queue))
            if pubsub is not None
            else None
        )
        try:
            while True:
                yield await queue.get()
        finally:
            if relay is not None:
                relay.cancel()
                await asyncio.gather(relay, return_exceptions=True)
            subscribers = self._local.get(user_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._local[user_id]

    async def _relay_redis(
        self, pubsub: PubSub, user_id: str, queue: asyncio.Queue[ChangeEvent],
    ) -> None:
        channel = channel_name(user_id)
        try:
            await pubsub.subscribe(channel)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.model_validate_json(message["data"])
                except ValidationError:
                    logger.warning("change_feed_bad_message", extra={"channel": channel})
                    continue
                self._deliver(user_id, queue, event)
        except RedisError as e:
            # The subscriber keeps its local queue and still gets this process's events
            logger.warning(
                "change_feed_redis_subscription_lost",
                extra={"channel": channel, "error": str(e)},
            )
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning("change_feed_redis_unsubscribe_failed", extra={"error": str(e)})


def insert_event(row: BookmarkResponse) -> ChangeEvent:
    """Build an INSERT event."""
    return ChangeEvent(event_type="INSERT", new=row)


def update_event(row: BookmarkResponse, previous: BookmarkResponse) -> ChangeEvent:
    """Build an UPDATE event."""
    return ChangeEvent(event_type="UPDATE", new=row, old=previous)


def delete_event(row: BookmarkResponse) -> ChangeEvent:
    """Build a DELETE event."""
    return ChangeEvent(event_type="DELETE", old=row)


# Global change feed instance
change_feed = ChangeFeed()

"""Bookmark CRUD endpoints and the per-owner change stream."""
import asyncio
import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query, Response, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_change_feed
from schemas.bookmark import (
    BookmarkCreate,
    BookmarkResponse,
    BookmarkUpdate,
    DeleteResponse,
    clean_text,
)
from services import bookmark_service
from services.change_feed import ChangeFeed, delete_event, insert_event, update_event
from services.exceptions import BookmarkValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.get("/", response_model=list[BookmarkResponse])
async def list_bookmarks(
    user_id: str | None = Query(default=None, alias="userId"),
    search: str | None = Query(default=None, description="Case-insensitive match on title or url"),
    db: AsyncSession = Depends(get_async_session),
) -> list[BookmarkResponse]:
    """List the owner's bookmarks, newest first, optionally filtered by search text."""
    user_id = clean_text(user_id)
    if user_id is None:
        raise BookmarkValidationError("User ID is required")
    bookmarks = await bookmark_service.get_bookmarks(db, user_id, search or None)
    return [BookmarkResponse.model_validate(b) for b in bookmarks]


@router.post("/", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    response: Response,
    db: AsyncSession = Depends(get_async_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> BookmarkResponse:
    """
    Create a new bookmark.

    Replaying a create with the same client-supplied id returns the existing
    bookmark with 200 and publishes nothing.
    """
    bookmark, created = await bookmark_service.create_bookmark(db, data)
    result = BookmarkResponse.model_validate(bookmark)
    if created:
        await feed.publish(result.user_id, insert_event(result))
    else:
        response.status_code = status.HTTP_200_OK
    return result


@router.put("/", response_model=BookmarkResponse)
async def update_bookmark(
    data: BookmarkUpdate,
    db: AsyncSession = Depends(get_async_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> BookmarkResponse:
    """Update a bookmark's title and url."""
    bookmark, previous = await bookmark_service.update_bookmark(db, data)
    result = BookmarkResponse.model_validate(bookmark)
    await feed.publish(result.user_id, update_event(result, previous))
    return result


@router.delete("/", response_model=DeleteResponse)
async def delete_bookmark(
    bookmark_id: str | None = Query(default=None, alias="id"),
    user_id: str | None = Query(default=None, alias="userId"),
    db: AsyncSession = Depends(get_async_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> DeleteResponse:
    """Delete a bookmark."""
    bookmark_id = clean_text(bookmark_id)
    user_id = clean_text(user_id)
    if bookmark_id is None or user_id is None:
        raise BookmarkValidationError("Missing required fields: id, userId")
    deleted = await bookmark_service.delete_bookmark(db, user_id, bookmark_id)
    await feed.publish(user_id, delete_event(deleted))
    return DeleteResponse(message="Bookmark deleted successfully")


@router.websocket("/changes")
async def stream_changes(
    websocket: WebSocket,
    user_id: str | None = Query(default=None, alias="userId"),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    """Push the owner's INSERT/UPDATE/DELETE events as JSON messages."""
    user_id = clean_text(user_id)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info("change_stream_opened", extra={"user_id": user_id})
    sender = asyncio.create_task(_forward_events(websocket, feed, user_id))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        if sender in done:
            sender.result()
            if receiver not in done:
                await websocket.close()
    finally:
        # Cancelling the sender closes the subscription
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)
        logger.info("change_stream_closed", extra={"user_id": user_id})


async def _forward_events(websocket: WebSocket, feed: ChangeFeed, user_id: str) -> None:
    try:
        async with aclosing(feed.subscribe(user_id)) as events:
            async for event in events:
                await websocket.send_json(event.model_dump(mode="json", by_alias=True))
    except WebSocketDisconnect:
        pass


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Read and discard client messages until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

"""Service layer for bookmark CRUD operations, scoped to a single owner."""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from services.exceptions import (
    BookmarkForbiddenError,
    BookmarkIdConflictError,
    BookmarkNotFoundError,
    StoreError,
)
from services.utils import escape_ilike

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _store_errors(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Roll back and re-raise database failures as StoreError."""
    try:
        yield
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("bookmark_store_error", extra={"operation": operation})
        raise StoreError from e


async def _get_owned_bookmark(
    db: AsyncSession, user_id: str, bookmark_id: str,
) -> Bookmark:
    """
    Load a bookmark and verify ownership.

    Not-found and wrong-owner are reported separately (404 vs 403); either way
    the caller never gets access to another user's row.
    """
    bookmark = await db.get(Bookmark, bookmark_id)
    if bookmark is None:
        raise BookmarkNotFoundError
    if bookmark.user_id != user_id:
        logger.warning(
            "bookmark_owner_mismatch",
            extra={"bookmark_id": bookmark_id, "user_id": user_id},
        )
        raise BookmarkForbiddenError
    return bookmark


async def get_bookmarks(
    db: AsyncSession, user_id: str, search: str | None = None,
) -> list[Bookmark]:
    """
    Return the user's bookmarks, newest first.

    If search is given, only bookmarks whose title or url contains it
    (case-insensitive) are returned.
    """
    query = (
        select(Bookmark)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc())
    )
    if search:
        pattern = f"%{escape_ilike(search)}%"
        query = query.where(
            or_(
                Bookmark.title.ilike(pattern, escape="\\"),
                Bookmark.url.ilike(pattern, escape="\\"),
            ),
        )
    async with _store_errors(db, "list"):
        result = await db.execute(query)
        return list(result.scalars().all())


async def create_bookmark(
    db: AsyncSession, data: BookmarkCreate,
) -> tuple[Bookmark, bool]:
    """
    Create a bookmark. Returns (bookmark, created).

    When the client supplies an id that already exists for the same owner the
    existing row is returned with created=False.
    """
    async with _store_errors(db, "create"):
        if data.id is not None:
            existing = await db.get(Bookmark, data.id)
            if existing is not None:
                if existing.user_id != data.user_id:
                    raise BookmarkIdConflictError
                return existing, False

        bookmark = Bookmark(title=data.title, url=data.url, user_id=data.user_id)
        if data.id is not None:
            bookmark.id = data.id
        db.add(bookmark)
        await db.commit()

    logger.info("bookmark_created", extra={"bookmark_id": bookmark.id, "user_id": data.user_id})
    return bookmark, True


async def update_bookmark(
    db: AsyncSession, data: BookmarkUpdate,
) -> tuple[Bookmark, BookmarkResponse]:
    """Update title and url in place. Returns (bookmark, state before the update)."""
    async with _store_errors(db, "update"):
        bookmark = await _get_owned_bookmark(db, data.user_id, data.id)
        previous = BookmarkResponse.model_validate(bookmark)
        bookmark.title = data.title
        bookmark.url = data.url
        await db.commit()

    logger.info("bookmark_updated", extra={"bookmark_id": bookmark.id, "user_id": data.user_id})
    return bookmark, previous


async def delete_bookmark(
    db: AsyncSession, user_id: str, bookmark_id: str,
) -> BookmarkResponse:
    """Delete a bookmark. Returns the deleted row's final state."""
    async with _store_errors(db, "delete"):
        bookmark = await _get_owned_bookmark(db, user_id, bookmark_id)
        deleted = BookmarkResponse.model_validate(bookmark)
        await db.delete(bookmark)
        await db.commit()

    logger.info("bookmark_deleted", extra={"bookmark_id": bookmark_id, "user_id": user_id})
    return deleted

"""
Client-held bookmark list with optimistic mutations and live reconciliation.

The view-model owns a newest-first copy of one user's bookmarks. Local
create/update/delete calls change the copy immediately and roll back if the
server rejects them. Change events pushed by the server are merged in, except
for echoes of mutations this view-model already applied; those are consumed
once via `locally_pending`.

Everything runs on one event loop; no locking is needed.
"""
import logging
import math
import uuid
from collections import Counter
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from client.api_client import ApiError, BookmarksApiClient
from client.intents import (
    MutationIntent,
    MutationKind,
    index_of,
    insert_newest_first,
    reduce_intent,
    remove_row,
    replace_row,
)
from schemas.bookmark import BookmarkResponse, ChangeEvent

logger = logging.getLogger(__name__)

PAGE_SIZE = 5

NotificationLevel = Literal["info", "success", "error"]


@dataclass(frozen=True)
class Notification:
    """A transient, user-visible message."""

    level: NotificationLevel
    message: str


@dataclass
class BookmarkForm:
    """Draft values of the add-bookmark form."""

    title: str = ""
    url: str = ""

    def clear(self) -> None:
        """Reset both fields."""
        self.title = ""
        self.url = ""


def matches_search(row: BookmarkResponse, search: str) -> bool:
    """Case-insensitive substring match on title or url, as the server filters."""
    if not search:
        return True
    needle = search.lower()
    return needle in row.title.lower() or needle in row.url.lower()


class BookmarkListViewModel:
    """Bookmark list state for one signed-in user."""

    def __init__(
        self,
        api: BookmarksApiClient,
        user_id: str | None,
        on_notify: Callable[[Notification], None] | None = None,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self._api = api
        self.user_id = user_id
        self.page_size = page_size
        self.rows: list[BookmarkResponse] = []
        self.search = ""
        self.page = 1
        self.loading = False
        self.locally_pending: set[str] = set()
        self.form = BookmarkForm()
        self.editing: BookmarkResponse | None = None
        self.notifications: list[Notification] = []
        self._on_notify = on_notify
        self._in_flight: Counter[str] = Counter()
        # Echoes that arrived while their mutation was still in flight, per id
        self._echoed: Counter[str] = Counter()
        self._refresh_seq = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @property
    def page_count(self) -> int:
        """Number of pages (0 when the list is empty)."""
        return math.ceil(len(self.rows) / self.page_size)

    @property
    def visible_rows(self) -> list[BookmarkResponse]:
        """Rows on the current page."""
        start = (self.page - 1) * self.page_size
        return self.rows[start:start + self.page_size]

    @property
    def total_count(self) -> int:
        """Number of bookmarks held."""
        return len(self.rows)

    def next_page(self) -> None:
        """Advance one page; no-op on the last page."""
        if self.page < self.page_count:
            self.page += 1

    def previous_page(self) -> None:
        """Go back one page; no-op on the first page."""
        if self.page > 1:
            self.page -= 1

    async def set_search(self, text: str) -> None:
        """Change the search text, jump back to page 1 and reload."""
        self.search = text
        self.page = 1
        await self.refresh()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """
        Replace the held rows with the server's list; keep them if the call fails.

        Only the most recently started refresh may update the rows or clear
        `loading`; responses to earlier ones are dropped.
        """
        if not self._require_user():
            return
        self._refresh_seq += 1
        request = self._refresh_seq
        self.loading = True
        try:
            rows = await self._api.list_bookmarks(self.user_id, self.search or None)
        except ApiError as e:
            if request == self._refresh_seq and not self._closed:
                self._notify("error", e.message or "Failed to fetch bookmarks")
            return
        finally:
            if request == self._refresh_seq:
                self.loading = False
        if request != self._refresh_seq:
            logger.debug("stale_refresh_dropped", extra={"search": self.search})
            return
        if self._closed:
            return
        self._set_rows(rows)

    # ------------------------------------------------------------------
    # Optimistic mutations
    # ------------------------------------------------------------------

    def begin_edit(self, bookmark_id: str) -> None:
        """Open the edit form for a held row."""
        index = index_of(self.rows, bookmark_id)
        self.editing = self.rows[index] if index is not None else None

    def cancel_edit(self) -> None:
        """Close the edit form without saving."""
        self.editing = None

    async def create(
        self, title: str | None = None, url: str | None = None,
    ) -> BookmarkResponse | None:
        """
        Add a bookmark, showing it before the server confirms.

        The generated id is sent to the server and reused for the stored row,
        so the synthetic row and its confirmation share one id.
        """
        if not self._require_user():
            return None
        title = self.form.title if title is None else title
        url = self.form.url if url is None else url
        temp_id = str(uuid.uuid4())
        intent = MutationIntent(
            kind=MutationKind.CREATE,
            bookmark_id=temp_id,
            proposed=BookmarkResponse(
                id=temp_id,
                title=title.strip(),
                url=url.strip(),
                user_id=self.user_id,
                created_at=datetime.now(UTC),
            ),
        )
        self._begin(intent)
        self.form.clear()

        try:
            created = await self._api.create_bookmark(
                self.user_id, title, url, bookmark_id=temp_id,
            )
        except ApiError as e:
            self._fail(intent, e)
            return None
        self._succeed(intent.applied(created), created.id, "Bookmark added successfully")
        return created

    async def update(
        self, bookmark_id: str, title: str, url: str,
    ) -> BookmarkResponse | None:
        """Edit a held bookmark in place; restore it if the server refuses."""
        if not self._require_user():
            return None
        index = index_of(self.rows, bookmark_id)
        if index is None:
            self._notify("error", "Bookmark not found")
            return None
        snapshot = self.rows[index]
        intent = MutationIntent(
            kind=MutationKind.UPDATE,
            bookmark_id=bookmark_id,
            proposed=snapshot.model_copy(update={"title": title.strip(), "url": url.strip()}),
            snapshot=snapshot,
        )
        self._begin(intent)
        self.editing = None

        try:
            updated = await self._api.update_bookmark(self.user_id, bookmark_id, title, url)
        except ApiError as e:
            self._fail(intent, e)
            return None
        self._succeed(intent.applied(updated), bookmark_id, "Bookmark updated successfully")
        return updated

    async def delete(self, bookmark_id: str) -> bool:
        """Remove a held bookmark; put it back in order if the server refuses."""
        if not self._require_user():
            return False
        index = index_of(self.rows, bookmark_id)
        if index is None:
            self._notify("error", "Bookmark not found")
            return False
        intent = MutationIntent(
            kind=MutationKind.DELETE,
            bookmark_id=bookmark_id,
            snapshot=self.rows[index],
        )
        self._begin(intent)

        try:
            await self._api.delete_bookmark(self.user_id, bookmark_id)
        except ApiError as e:
            self._fail(intent, e)
            return False
        self._succeed(intent.applied(), bookmark_id, "Bookmark deleted successfully")
        return True

    # ------------------------------------------------------------------
    # Remote changes
    # ------------------------------------------------------------------

    def apply_remote_event(self, event: ChangeEvent) -> None:
        """Merge one pushed change, skipping echoes of local mutations."""
        if self._closed:
            return
        record_id = event.record_id

        if record_id in self.locally_pending:
            self.locally_pending.discard(record_id)
            logger.debug("change_event_echo_consumed", extra={"bookmark_id": record_id})
            return
        if self._in_flight[record_id]:
            # Echo arrived before the HTTP response; the response will settle the row
            self._echoed[record_id] += 1
            return

        if event.event_type == "INSERT":
            row = event.new
            if index_of(self.rows, row.id) is not None or not matches_search(row, self.search):
                return
            self._set_rows(insert_newest_first(self.rows, row))
            self._notify("info", "Bookmark added in another session")
        elif event.event_type == "UPDATE":
            if event.new is None or index_of(self.rows, record_id) is None:
                return
            self._set_rows(replace_row(self.rows, record_id, event.new))
            self._notify("info", "Bookmark updated in another session")
        elif event.event_type == "DELETE":
            if index_of(self.rows, record_id) is None:
                return
            self._set_rows(remove_row(self.rows, record_id))
            self._notify("info", "Bookmark deleted in another session")

    async def watch(self, events: AsyncIterable[ChangeEvent]) -> None:
        """Apply events from a feed until it ends or the view-model is closed."""
        async for event in events:
            if self._closed:
                break
            self.apply_remote_event(event)

    def close(self) -> None:
        """Stop accepting responses and events; state is frozen from here on."""
        self._closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_user(self) -> bool:
        if self.user_id:
            return True
        self._notify("error", "Sign in required")
        return False

    def _begin(self, intent: MutationIntent) -> None:
        self._in_flight[intent.bookmark_id] += 1
        self._set_rows(reduce_intent(self.rows, intent))

    def _settle(self, intent: MutationIntent) -> None:
        self._in_flight[intent.bookmark_id] -= 1
        if self._in_flight[intent.bookmark_id] <= 0:
            del self._in_flight[intent.bookmark_id]

    def _succeed(self, intent: MutationIntent, server_id: str, message: str) -> None:
        if self._closed:
            return
        self._settle(intent)
        self._set_rows(reduce_intent(self.rows, intent))
        if self._echoed[server_id]:
            self._echoed[server_id] -= 1
            if not self._echoed[server_id]:
                del self._echoed[server_id]
        else:
            self.locally_pending.add(server_id)
        self._notify("success", message)

    def _fail(self, intent: MutationIntent, error: ApiError) -> None:
        if self._closed:
            return
        self._settle(intent)
        if not self._in_flight[intent.bookmark_id]:
            # No mutation left to claim an early echo for this id
            self._echoed.pop(intent.bookmark_id, None)
        self._set_rows(reduce_intent(self.rows, intent.failed()))
        logger.warning(
            "optimistic_mutation_rolled_back",
            extra={
                "kind": intent.kind.value,
                "bookmark_id": intent.bookmark_id,
                "status_code": error.status_code,
            },
        )
        self._notify("error", error.message)

    def _set_rows(self, rows: list[BookmarkResponse]) -> None:
        self.rows = rows
        last_page = max(1, self.page_count)
        if self.page > last_page:
            self.page = last_page

    def _notify(self, level: NotificationLevel, message: str) -> None:
        notification = Notification(level, message)
        self.notifications.append(notification)
        if self._on_notify is not None:
            self._on_notify(notification)

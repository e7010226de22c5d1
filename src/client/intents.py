"""
Optimistic mutations expressed as tagged intents and a pure reducer.

A mutation moves PENDING -> APPLIED or PENDING -> FAILED. Reducing the held
rows with the intent in each state gives the optimistic apply, the server
reconciliation and the rollback respectively, so every failure path has a
matching undo.
"""
from dataclasses import dataclass, replace
from enum import Enum

from schemas.bookmark import BookmarkResponse


class MutationKind(Enum):
    """What the mutation does to the list."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class IntentStatus(Enum):
    """Lifecycle of a mutation's round-trip."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class MutationIntent:
    """
    A locally initiated mutation.

    bookmark_id: id of the affected row (the temporary id for CREATE)
    proposed: row as optimistically shown (CREATE/UPDATE)
    snapshot: row before the mutation (UPDATE/DELETE), used for rollback
    result: row confirmed by the server (CREATE/UPDATE, once APPLIED)
    """

    kind: MutationKind
    bookmark_id: str
    proposed: BookmarkResponse | None = None
    snapshot: BookmarkResponse | None = None
    result: BookmarkResponse | None = None
    status: IntentStatus = IntentStatus.PENDING

    def applied(self, result: BookmarkResponse | None = None) -> "MutationIntent":
        """The server confirmed the mutation."""
        return replace(self, status=IntentStatus.APPLIED, result=result)

    def failed(self) -> "MutationIntent":
        """The server rejected the mutation or could not be reached."""
        return replace(self, status=IntentStatus.FAILED)


def index_of(rows: list[BookmarkResponse], bookmark_id: str) -> int | None:
    """Position of the row with the given id, or None."""
    for i, row in enumerate(rows):
        if row.id == bookmark_id:
            return i
    return None


def insert_newest_first(
    rows: list[BookmarkResponse], row: BookmarkResponse,
) -> list[BookmarkResponse]:
    """
    Insert row keeping rows in descending created_at order.

    Ties go after existing rows with the same timestamp. Inserting an id that
    is already present returns the rows unchanged.
    """
    if index_of(rows, row.id) is not None:
        return list(rows)
    position = len(rows)
    for i, existing in enumerate(rows):
        if existing.created_at < row.created_at:
            position = i
            break
    return [*rows[:position], row, *rows[position:]]


def replace_row(
    rows: list[BookmarkResponse], bookmark_id: str, row: BookmarkResponse,
) -> list[BookmarkResponse]:
    """Replace the row with bookmark_id in place; unchanged if absent."""
    return [row if existing.id == bookmark_id else existing for existing in rows]


def remove_row(rows: list[BookmarkResponse], bookmark_id: str) -> list[BookmarkResponse]:
    """Drop the row with bookmark_id."""
    return [existing for existing in rows if existing.id != bookmark_id]


def reduce_intent(
    rows: list[BookmarkResponse], intent: MutationIntent,
) -> list[BookmarkResponse]:
    """Return the rows after applying the intent in its current state."""
    if intent.kind == MutationKind.CREATE:
        return _reduce_create(rows, intent)
    if intent.kind == MutationKind.UPDATE:
        if intent.status == IntentStatus.PENDING:
            return replace_row(rows, intent.bookmark_id, intent.proposed)
        if intent.status == IntentStatus.APPLIED:
            return replace_row(rows, intent.bookmark_id, intent.result or intent.proposed)
        return replace_row(rows, intent.bookmark_id, intent.snapshot)
    if intent.status == IntentStatus.FAILED:
        return insert_newest_first(rows, intent.snapshot)
    # Removing again on APPLIED drops a copy a refresh brought back meanwhile
    return remove_row(rows, intent.bookmark_id)


def _reduce_create(
    rows: list[BookmarkResponse], intent: MutationIntent,
) -> list[BookmarkResponse]:
    if intent.status == IntentStatus.PENDING:
        if index_of(rows, intent.bookmark_id) is not None:
            return list(rows)
        return [intent.proposed, *rows]
    if intent.status == IntentStatus.FAILED:
        return remove_row(rows, intent.bookmark_id)
    # The temporary row was removed meanwhile (deleted or replaced by a refresh)
    if index_of(rows, intent.bookmark_id) is None:
        return list(rows)
    # Drop a copy of the server row already inserted by a remote event
    without_dup = [
        r for r in rows if r.id != intent.result.id or r.id == intent.bookmark_id
    ]
    return replace_row(without_dup, intent.bookmark_id, intent.result)



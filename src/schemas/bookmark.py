"""Pydantic schemas for bookmark endpoints and change events."""
from datetime import UTC, datetime
from typing import Literal

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from models.bookmark import TITLE_MAX_LENGTH


_any_url = TypeAdapter(AnyUrl)


def clean_text(value: str | None) -> str | None:
    """Strip surrounding whitespace, mapping blank strings to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def is_valid_url(url: str) -> bool:
    """Return True if url parses as an absolute URL (scheme required)."""
    try:
        _any_url.validate_python(url)
    except ValidationError:
        return False
    return True


def check_title_length(title: str) -> None:
    """Reject titles longer than the stored column allows."""
    if len(title) > TITLE_MAX_LENGTH:
        raise PydanticCustomError(
            "title_too_long",
            "Title must be at most {max_length} characters",
            {"max_length": TITLE_MAX_LENGTH},
        )


def require_fields(values: dict[str, str | None]) -> None:
    """
    Raise a single validation error listing every required field.

    The message names all required fields (not just the missing ones) so the
    client sees the full contract, e.g. "Missing required fields: title, url, userId".
    """
    if any(value is None for value in values.values()):
        raise PydanticCustomError(
            "missing_fields",
            "Missing required fields: {fields}",
            {"fields": ", ".join(values)},
        )


class BookmarkCreate(BaseModel):
    """Schema for creating a new bookmark."""

    model_config = ConfigDict(populate_by_name=True)

    # Optional client-generated id; replays with the same id are idempotent
    id: str | None = Field(default=None, max_length=36)
    title: str | None = None
    url: str | None = None
    user_id: str | None = Field(default=None, alias="userId")

    @model_validator(mode="after")
    def check_required(self) -> "BookmarkCreate":
        """Trim inputs, then require title/url/userId and a parseable url."""
        self.id = clean_text(self.id)
        self.title = clean_text(self.title)
        self.url = clean_text(self.url)
        self.user_id = clean_text(self.user_id)
        require_fields({"title": self.title, "url": self.url, "userId": self.user_id})
        check_title_length(self.title)
        if not is_valid_url(self.url):
            raise PydanticCustomError("invalid_url", "Invalid URL format")
        return self


class BookmarkUpdate(BaseModel):
    """Schema for updating an existing bookmark (full replacement of title and url)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    title: str | None = None
    url: str | None = None
    user_id: str | None = Field(default=None, alias="userId")

    @model_validator(mode="after")
    def check_required(self) -> "BookmarkUpdate":
        """Trim inputs, then require every field and a parseable url."""
        self.id = clean_text(self.id)
        self.title = clean_text(self.title)
        self.url = clean_text(self.url)
        self.user_id = clean_text(self.user_id)
        require_fields(
            {"id": self.id, "title": self.title, "url": self.url, "userId": self.user_id},
        )
        check_title_length(self.title)
        if not is_valid_url(self.url):
            raise PydanticCustomError("invalid_url", "Invalid URL format")
        return self


class BookmarkResponse(BaseModel):
    """Schema for bookmark rows returned by every endpoint and change event."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    url: str
    user_id: str
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps (SQLite drops tzinfo) as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class DeleteResponse(BaseModel):
    """Confirmation returned by DELETE /bookmarks/."""

    message: str


ChangeEventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    """
    A row-level change pushed to every open session of the bookmark's owner.

    INSERT carries `new`, DELETE carries `old`, UPDATE carries both.
    """

    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeEventType = Field(alias="eventType")
    new: BookmarkResponse | None = None
    old: BookmarkResponse | None = None

    @model_validator(mode="after")
    def check_has_row(self) -> "ChangeEvent":
        """Every event must carry the affected row."""
        if self.new is None and self.old is None:
            raise ValueError("Change event carries no row")
        return self

    @property
    def record_id(self) -> str:
        """Id of the affected row."""
        row = self.new if self.new is not None else self.old
        return row.id

"""Data models for meowpad."""

import datetime
import secrets
import threading
import time
import uuid
from datetime import timezone
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, Field, field_validator

from meowpad.exceptions import InvalidTagTargetError


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached, microsecond precision.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def bump_modified(previous: Optional[datetime.datetime]) -> datetime.datetime:
    """Return a modification instant that never precedes ``previous``.

    A wall clock stepping backwards must not make ``modified_at`` decrease.
    """
    now = utc_now()
    if previous is None:
        return now
    previous = ensure_timezone_aware(previous)
    return now if now >= previous else previous


# UUIDv7 generator state. The 12-bit rand_a field is used as a sequence
# counter so ids minted within the same millisecond still sort in order.
_id_lock = threading.Lock()
_last_ms = 0
_sequence = 0
_SEQUENCE_MAX = 0xFFF


def new_id() -> uuid.UUID:
    """Generate a time-ordered 128-bit identifier (UUID version 7 layout).

    Layout (RFC 9562):
        - 48 bits: Unix timestamp in milliseconds
        - 4 bits: version (7)
        - 12 bits: per-millisecond sequence counter
        - 2 bits: variant (0b10)
        - 62 bits: randomness

    Within one process the returned values are strictly increasing. When the
    sequence counter overflows inside a millisecond, the timestamp borrows
    the next millisecond rather than wrapping.
    """
    global _last_ms, _sequence

    with _id_lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            # Random start leaves headroom for same-millisecond increments
            _sequence = secrets.randbits(10)
        else:
            _sequence += 1
            if _sequence > _SEQUENCE_MAX:
                _last_ms += 1
                _sequence = 0

        value = (_last_ms & 0xFFFF_FFFF_FFFF) << 80
        value |= 0x7 << 76
        value |= (_sequence & _SEQUENCE_MAX) << 64
        value |= 0b10 << 62
        value |= secrets.randbits(62)
        return uuid.UUID(int=value)


def id_timestamp(identifier: uuid.UUID) -> datetime.datetime:
    """Extract the creation instant (millisecond precision) from a v7 id."""
    millis = identifier.int >> 80
    return datetime.datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


class ItemRef(BaseModel):
    """Reference to exactly one taggable item: a link or a note.

    Storage keeps two nullable columns; at the API layer the target is
    always one of the two concrete variants below.
    """

    kind: ClassVar[str] = ""
    id: uuid.UUID

    model_config = {"frozen": True}

    @property
    def link_id(self) -> Optional[uuid.UUID]:
        return self.id if self.kind == "link" else None

    @property
    def note_id(self) -> Optional[uuid.UUID]:
        return self.id if self.kind == "note" else None

    @classmethod
    def from_ids(
        cls,
        link_id: Optional[uuid.UUID] = None,
        note_id: Optional[uuid.UUID] = None,
    ) -> "ItemRef":
        """Build a reference from a nullable column pair.

        Raises:
            InvalidTagTargetError: If both or neither ids are given.
        """
        if (link_id is None) == (note_id is None):
            raise InvalidTagTargetError(link_id=link_id, note_id=note_id)
        if link_id is not None:
            return LinkRef(id=link_id)
        return NoteRef(id=note_id)

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


class LinkRef(ItemRef):
    """Reference to a link."""

    kind: ClassVar[str] = "link"


class NoteRef(ItemRef):
    """Reference to a note."""

    kind: ClassVar[str] = "note"


# Tag associations bind a tag to one item reference
TagTarget = ItemRef


class Link(BaseModel):
    """A captured URL."""

    id: uuid.UUID = Field(default_factory=new_id, description="Unique ID of the link")
    url: str = Field(..., description="Normalized URL, unique across links")
    title: Optional[str] = Field(default=None, description="Page or user title")
    description: Optional[str] = Field(default=None, description="Short summary")
    is_primary: bool = Field(
        default=True,
        description="False for links only kept as the target of a relation",
    )
    created_at: datetime.datetime = Field(default_factory=utc_now)
    modified_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @property
    def ref(self) -> LinkRef:
        return LinkRef(id=self.id)


class Note(BaseModel):
    """A free-form note, standalone or attached to one link."""

    id: uuid.UUID = Field(default_factory=new_id, description="Unique ID of the note")
    title: str = Field(..., description="Unique title of the note")
    content: str = Field(..., description="Body of the note")
    link_id: Optional[uuid.UUID] = Field(default=None, description="Owning link")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    modified_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @property
    def ref(self) -> NoteRef:
        return NoteRef(id=self.id)


class Tag(BaseModel):
    """A named label shared by links and notes."""

    id: uuid.UUID = Field(default_factory=new_id)
    name: str = Field(..., description="Display name")
    slug: str = Field(..., description="Normalized form used for matching")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    modified_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "frozen": True}

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class TagAssociation(BaseModel):
    """A tag bound to one item."""

    tag: Tag
    target: ItemRef

    model_config = {"frozen": True}


class Relation(BaseModel):
    """A directed edge from a primary link to a related link."""

    primary_link_id: uuid.UUID
    related_link_id: uuid.UUID
    relationship: Optional[str] = Field(
        default=None, description='Free-text label such as "via" or "response-to"'
    )

    model_config = {"frozen": True, "extra": "forbid"}


class ConflictPolicy(str, Enum):
    """What create_link does when the URL is already stored."""

    FAIL = "fail"
    MERGE = "merge"


class IfTagged(str, Enum):
    """What attach_tag does when the association already exists."""

    ERROR = "error"
    IGNORE = "ignore"

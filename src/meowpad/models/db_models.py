"""SQLAlchemy database models for meowpad.

The tables themselves are created by ``meowpad.storage.migrations``; the
declarations here only map the migrated schema for querying.
"""
import datetime
import uuid
from datetime import timezone

from sqlalchemy import (Boolean, Column, ForeignKey, Integer, LargeBinary,
                        String, Table, Text, UniqueConstraint)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

# Create base class for SQLAlchemy models
Base = declarative_base()


class UUIDBlob(TypeDecorator):
    """UUID stored as a 16-byte BLOB."""

    impl = LargeBinary
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value.bytes
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        return uuid.UUID(str(value)).bytes

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return uuid.UUID(bytes=bytes(value))


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime stored as ISO 8601 text with a ``Z`` suffix.

    Values are written at fixed microsecond width so text comparison in SQL
    orders them chronologically. Second-resolution values written by older
    tools (``2025-01-31T12:00:00Z``) are read back as well.
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime.datetime):
            parsed = value
        else:
            parsed = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)


class DBLink(Base):
    """Database model for a captured URL."""
    __tablename__ = "link"
    id = Column(UUIDBlob, primary_key=True)
    url = Column(Text, unique=True, nullable=False)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    is_primary = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    modified_at = Column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of link."""
        return f"<Link(id='{self.id}', url='{self.url}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "note"
    id = Column(UUIDBlob, primary_key=True)
    content = Column(Text, nullable=False)
    title = Column(Text, unique=True, nullable=False)
    link_id = Column(UUIDBlob, ForeignKey("link.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    modified_at = Column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tag"
    id = Column(UUIDBlob, primary_key=True)
    name = Column(Text, unique=True, nullable=False)
    slug = Column(Text, nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False)
    modified_at = Column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id='{self.id}', name='{self.name}')>"


# Polymorphic association: exactly one of link_id / note_id is set
item_tag = Table(
    "item_tag",
    Base.metadata,
    Column("tag_id", UUIDBlob, ForeignKey("tag.id", ondelete="CASCADE"), nullable=False),
    Column("note_id", UUIDBlob, ForeignKey("note.id", ondelete="CASCADE"), nullable=True),
    Column("link_id", UUIDBlob, ForeignKey("link.id", ondelete="CASCADE"), nullable=True),
    UniqueConstraint("tag_id", "link_id", "note_id"),
)

# Directed edge between two links
related_link = Table(
    "related_link",
    Base.metadata,
    Column("primary_link_id", UUIDBlob, ForeignKey("link.id", ondelete="CASCADE"), nullable=False),
    Column("related_link_id", UUIDBlob, ForeignKey("link.id", ondelete="CASCADE"), nullable=False),
    Column("relationship", Text, nullable=True),
    UniqueConstraint("primary_link_id", "related_link_id"),
)

# Extracted link text; mirrored into the link_content_fts FTS5 table by triggers
link_content = Table(
    "link_content",
    Base.metadata,
    Column("id", Integer, primary_key=True),
    Column("link_id", UUIDBlob, ForeignKey("link.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("content", Text, nullable=False),
)

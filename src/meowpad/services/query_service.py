"""Read-side queries: filtered listings, relations, search and export."""
import datetime
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql import Select

from meowpad.exceptions import ErrorCode, SearchError, StorageError
from meowpad.models.db_models import DBLink, DBNote, related_link
from meowpad.models.schema import (
    Link,
    LinkRef,
    Note,
    NoteRef,
    Tag,
    ensure_timezone_aware,
)
from meowpad.observability import traced
from meowpad.services.entity_store import EntityStore
from meowpad.storage.database import is_fts_query_error
from meowpad.storage.link_repository import LinkRepository
from meowpad.storage.note_repository import NoteRepository
from meowpad.storage.tag_repository import TagRepository
from meowpad.utils import slugify

logger = logging.getLogger(__name__)


class TagMatch(str, Enum):
    """How several tag filters combine."""
    ALL = "all"
    ANY = "any"


class OrderBy(str, Enum):
    """Result ordering."""
    MODIFIED_DESC = "modified_desc"
    MODIFIED_ASC = "modified_asc"
    CREATED_DESC = "created_desc"
    CREATED_ASC = "created_asc"


class QueryFilter(BaseModel):
    """Criteria for listing links or notes.

    Date bounds are half-open: ``after`` is inclusive, ``before`` exclusive.
    """

    tags: Tuple[str, ...] = Field(default=(), description="Tag names, matched by slug")
    tag_match: TagMatch = TagMatch.ALL
    text: Optional[str] = Field(default=None, description="Full-text query")
    created_after: Optional[datetime.datetime] = None
    created_before: Optional[datetime.datetime] = None
    modified_after: Optional[datetime.datetime] = None
    modified_before: Optional[datetime.datetime] = None
    primary_only: bool = Field(default=True, description="Links only: skip secondary links")
    standalone_only: bool = Field(default=False, description="Notes only: skip link notes")
    order: OrderBy = OrderBy.MODIFIED_DESC
    limit: Optional[int] = Field(default=None, ge=1)

    model_config = {"frozen": True}

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v):
        """Accept a single name or any iterable of names."""
        if isinstance(v, str):
            return (v,)
        return tuple(v)

    @field_validator(
        "created_after", "created_before", "modified_after", "modified_before"
    )
    @classmethod
    def validate_bounds(cls, v: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        """Treat naive datetimes as UTC."""
        return ensure_timezone_aware(v) if v is not None else None


@dataclass(frozen=True)
class RelatedLink:
    """One end of a relation together with its label."""
    link: Link
    relationship: Optional[str] = None


@dataclass(frozen=True)
class SearchResult:
    """A search hit resolved to its link or note."""
    item: Union[Link, Note]
    score: float


@dataclass(frozen=True)
class LinkRecord:
    """Everything stored about one link, for exporters."""
    link: Link
    tags: List[Tag] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    related: List[RelatedLink] = field(default_factory=list)
    content: Optional[str] = None


@dataclass(frozen=True)
class NoteRecord:
    """A standalone note with its tags, for exporters."""
    note: Note
    tags: List[Tag] = field(default_factory=list)


ExportRecord = Union[LinkRecord, NoteRecord]


class QueryEngine:
    """Answers read queries over the store.

    ``links()`` and ``notes()`` return lazy iterators: rows are fetched in
    batches while the caller consumes them, and every call runs the query
    afresh.
    """

    BATCH_SIZE = 100

    def __init__(self, store: EntityStore):
        self.store = store
        self.db = store.db

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def links(self, query_filter: Optional[QueryFilter] = None) -> Iterator[Link]:
        """Links matching the filter."""
        f = query_filter or QueryFilter()
        stmt = select(DBLink)
        if f.primary_only:
            stmt = stmt.where(DBLink.is_primary.is_(True))
        if f.text:
            stmt = stmt.where(self.store.index.link_filter(f.text))
        stmt = self._apply_filter(stmt, DBLink, f, "link")
        return self._stream(stmt, LinkRepository.to_model, f.text)

    def notes(self, query_filter: Optional[QueryFilter] = None) -> Iterator[Note]:
        """Notes matching the filter."""
        f = query_filter or QueryFilter()
        stmt = select(DBNote)
        if f.standalone_only:
            stmt = stmt.where(DBNote.link_id.is_(None))
        if f.text:
            stmt = stmt.where(self.store.index.note_filter(f.text))
        stmt = self._apply_filter(stmt, DBNote, f, "note")
        return self._stream(stmt, NoteRepository.to_model, f.text)

    @staticmethod
    def _apply_filter(stmt: Select, model, f: QueryFilter, kind: str) -> Select:
        if f.tags:
            slugs = [slugify(name) for name in f.tags]
            stmt = stmt.where(model.id.in_(
                TagRepository.tagged_ids(slugs, f.tag_match is TagMatch.ALL, kind)
            ))
        if f.created_after is not None:
            stmt = stmt.where(model.created_at >= f.created_after)
        if f.created_before is not None:
            stmt = stmt.where(model.created_at < f.created_before)
        if f.modified_after is not None:
            stmt = stmt.where(model.modified_at >= f.modified_after)
        if f.modified_before is not None:
            stmt = stmt.where(model.modified_at < f.modified_before)

        ordering = {
            OrderBy.MODIFIED_DESC: (model.modified_at.desc(), model.id.desc()),
            OrderBy.MODIFIED_ASC: (model.modified_at.asc(), model.id.asc()),
            OrderBy.CREATED_DESC: (model.created_at.desc(), model.id.desc()),
            OrderBy.CREATED_ASC: (model.created_at.asc(), model.id.asc()),
        }[f.order]
        stmt = stmt.order_by(*ordering)

        if f.limit is not None:
            stmt = stmt.limit(f.limit)
        return stmt

    def _stream(self, stmt: Select, convert: Callable, text: Optional[str]) -> Iterator:
        with self.db.read_session() as session:
            try:
                rows = session.scalars(stmt.execution_options(yield_per=self.BATCH_SIZE))
                for row in rows:
                    yield convert(row)
            except OperationalError as e:
                if text and is_fts_query_error(e):
                    raise SearchError(
                        f"Malformed search query '{text}'",
                        query=text,
                        code=ErrorCode.SEARCH_INVALID_QUERY,
                    ) from e
                raise StorageError("Query failed", operation="query", original_error=e) from e

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def related(self, link_id: uuid.UUID) -> List[RelatedLink]:
        """Links this link points to, oldest first.

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        self.store.require_link(link_id)
        return self._edges(related_link.c.primary_link_id, related_link.c.related_link_id, link_id)

    def referrers(self, link_id: uuid.UUID) -> List[RelatedLink]:
        """Links pointing at this link, oldest first.

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        self.store.require_link(link_id)
        return self._edges(related_link.c.related_link_id, related_link.c.primary_link_id, link_id)

    def _edges(self, from_column, to_column, link_id: uuid.UUID) -> List[RelatedLink]:
        with self.db.read_session() as session:
            rows = session.execute(
                select(DBLink, related_link.c.relationship)
                .join(related_link, DBLink.id == to_column)
                .where(from_column == link_id)
                .order_by(DBLink.created_at, DBLink.id)
            ).all()
            return [
                RelatedLink(link=LinkRepository.to_model(db_link), relationship=relationship)
                for db_link, relationship in rows
            ]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @traced("search")
    def search(self, query: str, limit: Optional[int] = 20) -> List[SearchResult]:
        """Full-text search over link content and notes, best match first.

        Raises:
            SearchError: If the query is blank or malformed.
        """
        with self.db.read_session() as session:
            hits = self.store.index.search(session, query, limit=limit)
            results = []
            for hit in hits:
                if isinstance(hit.ref, LinkRef):
                    db_item = session.get(DBLink, hit.ref.id)
                    item = LinkRepository.to_model(db_item) if db_item else None
                else:
                    db_item = session.get(DBNote, hit.ref.id)
                    item = NoteRepository.to_model(db_item) if db_item else None
                if item is not None:
                    results.append(SearchResult(item=item, score=hit.score))
            return results

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self) -> Iterator[ExportRecord]:
        """Every link (secondary ones included) and every standalone note,
        oldest first, with their tags, notes, relations and content.
        """
        for link in self.links(QueryFilter(primary_only=False, order=OrderBy.CREATED_ASC)):
            yield LinkRecord(
                link=link,
                tags=self.store.tags_for(link.ref),
                notes=self.store.notes.list_for_link(link.id),
                related=self._edges(
                    related_link.c.primary_link_id, related_link.c.related_link_id, link.id
                ),
                content=self.store.get_content(link.id),
            )
        for note in self.notes(QueryFilter(standalone_only=True, order=OrderBy.CREATED_ASC)):
            yield NoteRecord(note=note, tags=self.store.tags_for(NoteRef(id=note.id)))

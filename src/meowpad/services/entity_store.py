"""Service layer for links, notes, tags and relations.

Every mutating operation runs inside ``Database.transaction()``. Calls made
while a transaction is already open join it, so

    with store.transaction():
        link = store.create_link(url)
        store.attach_tag("reading", link.ref)

either commits both writes or neither.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meowpad.exceptions import (
    AlreadyTaggedError,
    DuplicateRelationError,
    DuplicateUrlError,
    InvalidTagTargetError,
    LinkNotFoundError,
    MigrationError,
    NoteNotFoundError,
    SelfRelationError,
    StorageError,
    TagNotFoundError,
    ValidationError,
)
from meowpad.models.schema import (
    ConflictPolicy,
    IfTagged,
    ItemRef,
    Link,
    LinkRef,
    Note,
    NoteRef,
    Relation,
    Tag,
    TagAssociation,
    utc_now,
)
from meowpad.observability import traced
from meowpad.storage.database import Database
from meowpad.storage.fts_index import FtsIndex
from meowpad.storage.link_repository import LinkRepository
from meowpad.storage.migrations import MigrationManager
from meowpad.storage.note_repository import NoteRepository
from meowpad.storage.relation_repository import RelationRepository
from meowpad.storage.tag_repository import TagRepository
from meowpad.utils import normalize_url

logger = logging.getLogger(__name__)


class EntityStore:
    """Service for managing the meowpad data model.

    Args:
        db: Database to operate on. Its schema must already be current;
            use ``open_store()`` to migrate and open in one step.
        verify_schema: Check the schema version before accepting calls.
    """

    def __init__(self, db: Database, verify_schema: bool = True):
        if verify_schema:
            MigrationManager(db.engine).require_current()
        self.db = db
        self.links = LinkRepository(db)
        self.notes = NoteRepository(db)
        self.tags = TagRepository(db)
        self.relations = RelationRepository(db)
        self.index = FtsIndex(db)

    @classmethod
    def open(cls, database_url: Optional[str] = None) -> "EntityStore":
        """Migrate the database to the current schema and open a store on it.

        Raises:
            MigrationError: If the schema cannot be brought up to date. No
                store is returned in that case.
        """
        db = Database(database_url)
        try:
            version = MigrationManager(db.engine).migrate()
        except MigrationError:
            db.dispose()
            raise
        logger.debug(f"Database ready at schema version {version}")
        return cls(db, verify_schema=False)

    def close(self) -> None:
        self.db.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Group several store operations into one atomic unit."""
        with self._unit("transaction") as session:
            yield session

    @contextmanager
    def _unit(self, operation: str) -> Iterator[Session]:
        """Transaction scope that turns stray driver errors into StorageError."""
        try:
            with self.db.transaction() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(
                f"Storage failure during {operation}",
                operation=operation,
                original_error=e,
            ) from e

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    @traced()
    def create_link(
        self,
        url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        is_primary: bool = True,
        on_conflict: Union[ConflictPolicy, str] = ConflictPolicy.FAIL,
    ) -> Link:
        """Create a link for a URL.

        Args:
            url: Web URL; stored in normalized form.
            title: Optional title.
            description: Optional short summary.
            is_primary: False for links kept only as a relation target.
            on_conflict: FAIL raises on a known URL; MERGE updates the
                existing link (new title/description overwrite, a secondary
                link is promoted when ``is_primary`` is True).

        Raises:
            InvalidUrlError: If the URL is not a valid http(s) URL.
            DuplicateUrlError: If the URL is known and the policy is FAIL.
        """
        on_conflict = ConflictPolicy(on_conflict)
        normalized = normalize_url(url)
        with self._unit("create_link"):
            existing = self.links.get_by_url(normalized)
            if existing is not None:
                if on_conflict is ConflictPolicy.FAIL:
                    raise DuplicateUrlError(normalized)
                promote = is_primary and not existing.is_primary
                logger.debug(f"Merging into existing link {existing.id} <{normalized}>")
                return self.links.update(
                    existing.id,
                    title=title,
                    description=description,
                    is_primary=True if promote else None,
                )

            now = utc_now()
            return self.links.create(Link(
                url=normalized,
                title=title,
                description=description,
                is_primary=is_primary,
                created_at=now,
                modified_at=now,
            ))

    def get_link(self, link_id: uuid.UUID) -> Optional[Link]:
        """Retrieve a link by ID."""
        return self.links.get(link_id)

    def get_link_by_url(self, url: str) -> Optional[Link]:
        """Retrieve a link by URL (normalized before lookup)."""
        return self.links.get_by_url(normalize_url(url))

    def require_link(self, link_id: uuid.UUID) -> Link:
        link = self.links.get(link_id)
        if link is None:
            raise LinkNotFoundError(link_id)
        return link

    @traced()
    def update_link(
        self,
        link_id: uuid.UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
        is_primary: Optional[bool] = None,
    ) -> Link:
        """Update link metadata; fields left as None are unchanged."""
        with self._unit("update_link"):
            return self.links.update(
                link_id, title=title, description=description, is_primary=is_primary
            )

    @traced()
    def delete_link(self, link_id: uuid.UUID) -> None:
        """Delete a link with its notes, tag associations, relations and content.

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        with self._unit("delete_link"):
            if not self.links.delete(link_id):
                raise LinkNotFoundError(link_id)
        logger.info(f"Deleted link {link_id}")

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    @traced()
    def update_content(self, link_id: uuid.UUID, text: str) -> Link:
        """Replace the indexed text of a link and bump its ``modified_at``.

        Blank text removes the link from the index.
        """
        with self._unit("update_content") as session:
            self.require_link(link_id)
            self.index.index(session, link_id, text)
            return self.links.touch(link_id)

    def get_content(self, link_id: uuid.UUID) -> Optional[str]:
        """Indexed text of a link, or None if it was never extracted."""
        with self.db.read_session() as session:
            return self.index.get(session, link_id)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @traced()
    def create_note(
        self,
        content: str,
        title: str,
        link_id: Optional[uuid.UUID] = None,
    ) -> Note:
        """Create a note, standalone or attached to a link.

        Raises:
            ValidationError: If title or content is empty.
            DuplicateTitleError: If the title is taken.
            LinkNotFoundError: If ``link_id`` names no link.
        """
        if not title or not title.strip():
            raise ValidationError("Note title is required", field="title")
        if not content or not content.strip():
            raise ValidationError("Note content is required", field="content")

        with self._unit("create_note"):
            if link_id is not None:
                self.require_link(link_id)
            now = utc_now()
            return self.notes.create(Note(
                title=title,
                content=content,
                link_id=link_id,
                created_at=now,
                modified_at=now,
            ))

    def get_note(self, note_id: uuid.UUID) -> Optional[Note]:
        """Retrieve a note by ID."""
        return self.notes.get(note_id)

    def get_note_by_title(self, title: str) -> Optional[Note]:
        """Retrieve a note by title."""
        return self.notes.get_by_title(title)

    def get_note_for_link(self, link_id: uuid.UUID) -> Optional[Note]:
        """The note attached to a link, if any."""
        return self.notes.get_for_link(link_id)

    @traced()
    def update_note(
        self,
        note_id: uuid.UUID,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Note:
        """Update an existing note."""
        if title is not None and not title.strip():
            raise ValidationError("Note title is required", field="title")
        with self._unit("update_note"):
            return self.notes.update(note_id, title=title, content=content)

    @traced()
    def delete_note(self, note_id: uuid.UUID) -> None:
        """Delete a note and its tag associations.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self._unit("delete_note"):
            if not self.notes.delete(note_id):
                raise NoteNotFoundError(note_id)
        logger.info(f"Deleted note {note_id}")

    def get_editable_content(self, target: ItemRef) -> str:
        """Text to pre-fill an editor with.

        A ``NoteRef`` yields that note's content. A ``LinkRef`` yields the
        content of the note attached to the link, or an empty string when
        the link has no note yet.
        """
        if isinstance(target, LinkRef):
            self.require_link(target.id)
            note = self.notes.get_for_link(target.id)
            return note.content if note else ""
        note = self.notes.get(target.id)
        if note is None:
            raise NoteNotFoundError(target.id)
        return note.content

    @traced()
    def replace_content(self, target: ItemRef, text: str) -> Note:
        """Store edited text back.

        For a ``LinkRef`` whose link has no note yet, a note titled with the
        link's URL is created.
        """
        with self._unit("replace_content"):
            if isinstance(target, NoteRef):
                return self.update_note(target.id, content=text)
            link = self.require_link(target.id)
            note = self.notes.get_for_link(link.id)
            if note is not None:
                return self.update_note(note.id, content=text)
            return self.create_note(text, title=link.url, link_id=link.id)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def _require_target(self, target: ItemRef) -> None:
        if not isinstance(target, (LinkRef, NoteRef)):
            raise InvalidTagTargetError(link_id=None, note_id=None)
        if isinstance(target, LinkRef):
            self.require_link(target.id)
        elif self.notes.get(target.id) is None:
            raise NoteNotFoundError(target.id)

    def _touch(self, target: ItemRef) -> None:
        if isinstance(target, LinkRef):
            self.links.touch(target.id)
        else:
            self.notes.update(target.id)

    @traced()
    def attach_tag(
        self,
        tag_name: str,
        target: ItemRef,
        if_tagged: Union[IfTagged, str] = IfTagged.ERROR,
    ) -> TagAssociation:
        """Tag a link or a note, creating the tag if needed.

        Args:
            tag_name: Tag name; matched against existing tags by slug.
            target: ``LinkRef`` or ``NoteRef`` naming the item.
            if_tagged: ERROR raises on a repeat; IGNORE returns the existing
                association.

        Raises:
            InvalidTagError: If the name has no usable slug.
            LinkNotFoundError / NoteNotFoundError: If the target is missing.
            AlreadyTaggedError: On a repeat with ``IfTagged.ERROR``.
        """
        if_tagged = IfTagged(if_tagged)
        with self._unit("attach_tag"):
            self._require_target(target)
            tag = self.tags.get_or_create(tag_name)
            if self.tags.is_associated(tag.id, target):
                if if_tagged is IfTagged.IGNORE:
                    return TagAssociation(tag=tag, target=target)
                raise AlreadyTaggedError(tag.name, target)
            association = self.tags.associate(tag, target)
            self._touch(target)
            return association

    @traced()
    def detach_tag(self, tag_name: str, target: ItemRef) -> bool:
        """Remove a tag from an item. Returns False if it was not attached."""
        with self._unit("detach_tag"):
            tag = self.tags.get_by_name(tag_name)
            if tag is None:
                return False
            removed = self.tags.dissociate(tag.id, target)
            if removed:
                self._touch(target)
            return removed

    def tags_for(self, target: ItemRef) -> List[Tag]:
        """Tags attached to an item, ordered by slug."""
        return self.tags.get_tags_for(target)

    def tags_with_counts(self) -> Dict[str, int]:
        """Every tag name with the number of items carrying it."""
        return self.tags.get_with_counts()

    def get_tag_by_name(self, tag_name: str) -> Optional[Tag]:
        """Retrieve a tag by name (case-insensitive through its slug)."""
        return self.tags.get_by_name(tag_name)

    @traced()
    def delete_tag(self, tag_id: uuid.UUID) -> int:
        """Delete a tag and its associations; tagged items are untouched.

        Returns:
            Number of associations removed.

        Raises:
            TagNotFoundError: If the tag does not exist.
        """
        with self._unit("delete_tag"):
            count = self.tags.count_associations(tag_id)
            if not self.tags.delete(tag_id):
                raise TagNotFoundError(tag_id)
        logger.info(f"Deleted tag {tag_id} ({count} associations)")
        return count

    @traced()
    def delete_unused_tags(self) -> int:
        """Delete tags no item carries anymore."""
        with self._unit("delete_unused_tags"):
            return self.tags.delete_unused()

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    @traced()
    def relate_links(
        self,
        primary_id: uuid.UUID,
        related_id: uuid.UUID,
        relationship: Optional[str] = None,
    ) -> Relation:
        """Record a directed relation ``primary -> related``.

        Raises:
            SelfRelationError: If both ids are the same.
            LinkNotFoundError: If either link is missing.
            DuplicateRelationError: If the edge already exists.
        """
        if primary_id == related_id:
            raise SelfRelationError(primary_id)
        with self._unit("relate_links"):
            self.require_link(primary_id)
            self.require_link(related_id)
            if self.relations.get(primary_id, related_id) is not None:
                raise DuplicateRelationError(primary_id, related_id)
            relation = self.relations.create(Relation(
                primary_link_id=primary_id,
                related_link_id=related_id,
                relationship=relationship,
            ))
            self.links.touch(primary_id)
            return relation

    @traced()
    def unrelate_links(self, primary_id: uuid.UUID, related_id: uuid.UUID) -> bool:
        """Remove a directed relation. Returns False if it did not exist."""
        with self._unit("unrelate_links"):
            removed = self.relations.delete(primary_id, related_id)
            if removed:
                self.links.touch(primary_id)
            return removed


def open_store(database_url: Optional[str] = None) -> EntityStore:
    """Migrate the configured database and return a store bound to it."""
    return EntityStore.open(database_url)

"""Repository for notes."""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from meowpad.exceptions import NoteNotFoundError
from meowpad.models.db_models import DBNote
from meowpad.models.schema import Note, bump_modified, ensure_timezone_aware
from meowpad.storage.database import Database, translate_integrity_error

logger = logging.getLogger(__name__)


class NoteRepository:
    """Repository for notes, standalone or attached to a link."""

    def __init__(self, db: Database):
        """Initialize the note repository.

        Args:
            db: Database providing the transaction scope.
        """
        self.db = db

    @staticmethod
    def to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content,
            link_id=db_note.link_id,
            created_at=ensure_timezone_aware(db_note.created_at),
            modified_at=ensure_timezone_aware(db_note.modified_at),
        )

    def create(self, note: Note) -> Note:
        """Insert a new note.

        Raises:
            DuplicateTitleError: If another note has the same title.
            NotFoundError: If ``note.link_id`` names no link.
        """
        with self.db.transaction() as session:
            try:
                with session.begin_nested():
                    session.add(DBNote(
                        id=note.id,
                        title=note.title,
                        content=note.content,
                        link_id=note.link_id,
                        created_at=note.created_at,
                        modified_at=note.modified_at,
                    ))
                    session.flush()
            except IntegrityError as e:
                raise translate_integrity_error(
                    e, title=note.title, missing_id=note.link_id, operation="create_note"
                ) from e
        logger.debug(f"Created note {note.id} '{note.title}'")
        return note

    def get(self, note_id: uuid.UUID) -> Optional[Note]:
        """Get a note by id, or None."""
        with self.db.read_session() as session:
            db_note = session.get(DBNote, note_id)
            return self.to_model(db_note) if db_note else None

    def get_by_title(self, title: str) -> Optional[Note]:
        """Get a note by its exact title, or None."""
        with self.db.read_session() as session:
            db_note = session.scalar(select(DBNote).where(DBNote.title == title))
            return self.to_model(db_note) if db_note else None

    def get_for_link(self, link_id: uuid.UUID) -> Optional[Note]:
        """The oldest note attached to a link, or None."""
        with self.db.read_session() as session:
            db_note = session.scalar(
                select(DBNote)
                .where(DBNote.link_id == link_id)
                .order_by(DBNote.created_at, DBNote.id)
                .limit(1)
            )
            return self.to_model(db_note) if db_note else None

    def list_for_link(self, link_id: uuid.UUID) -> List[Note]:
        """All notes attached to a link, oldest first."""
        with self.db.read_session() as session:
            db_notes = session.scalars(
                select(DBNote)
                .where(DBNote.link_id == link_id)
                .order_by(DBNote.created_at, DBNote.id)
            ).all()
            return [self.to_model(n) for n in db_notes]

    def update(
        self,
        note_id: uuid.UUID,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Note:
        """Overwrite title and/or content and bump ``modified_at``.

        Raises:
            NoteNotFoundError: If the note does not exist.
            DuplicateTitleError: If the new title is taken.
        """
        with self.db.transaction() as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                raise NoteNotFoundError(note_id)
            try:
                with session.begin_nested():
                    if title is not None:
                        db_note.title = title
                    if content is not None:
                        db_note.content = content
                    db_note.modified_at = bump_modified(db_note.modified_at)
                    session.flush()
            except IntegrityError as e:
                raise translate_integrity_error(
                    e, title=title, operation="update_note"
                ) from e
            return self.to_model(db_note)

    def delete(self, note_id: uuid.UUID) -> bool:
        """Delete a note and its tag associations.

        Returns:
            True if a row was deleted.
        """
        with self.db.transaction() as session:
            result = session.execute(
                delete(DBNote).where(DBNote.id == note_id),
                execution_options={"synchronize_session": False},
            )
            # Cascaded rows may still sit in the identity map
            session.expire_all()
            return result.rowcount > 0

"""Repository for directed relations between links."""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, func, insert, or_, select
from sqlalchemy.exc import IntegrityError

from meowpad.models.db_models import related_link
from meowpad.models.schema import Relation
from meowpad.storage.database import Database, translate_integrity_error

logger = logging.getLogger(__name__)


class RelationRepository:
    """Repository for managing relations between links.

    Relations are directed: ``primary -> related``. The reverse edge is a
    separate row.
    """

    def __init__(self, db: Database):
        """Initialize the relation repository.

        Args:
            db: Database providing the transaction scope.
        """
        self.db = db

    @staticmethod
    def _to_model(row) -> Relation:
        return Relation(
            primary_link_id=row.primary_link_id,
            related_link_id=row.related_link_id,
            relationship=row.relationship,
        )

    def create(self, relation: Relation) -> Relation:
        """Insert a relation.

        Raises:
            DuplicateRelationError: If the same directed edge exists.
        """
        with self.db.transaction() as session:
            try:
                with session.begin_nested():
                    session.execute(insert(related_link).values(
                        primary_link_id=relation.primary_link_id,
                        related_link_id=relation.related_link_id,
                        relationship=relation.relationship,
                    ))
            except IntegrityError as e:
                raise translate_integrity_error(
                    e,
                    primary_id=relation.primary_link_id,
                    related_id=relation.related_link_id,
                    missing_id=relation.related_link_id,
                    operation="relate_links",
                ) from e
        return relation

    def get(self, primary_id: uuid.UUID, related_id: uuid.UUID) -> Optional[Relation]:
        """Get a relation by its endpoints.

        Args:
            primary_id: The source link ID.
            related_id: The target link ID.

        Returns:
            The Relation if found, None otherwise.
        """
        with self.db.read_session() as session:
            row = session.execute(
                select(related_link).where(
                    (related_link.c.primary_link_id == primary_id) &
                    (related_link.c.related_link_id == related_id)
                )
            ).first()
            return self._to_model(row) if row else None

    def get_outgoing(self, link_id: uuid.UUID) -> List[Relation]:
        """Get all relations from a link."""
        with self.db.read_session() as session:
            rows = session.execute(
                select(related_link).where(related_link.c.primary_link_id == link_id)
            ).all()
            return [self._to_model(row) for row in rows]

    def get_incoming(self, link_id: uuid.UUID) -> List[Relation]:
        """Get all relations pointing at a link."""
        with self.db.read_session() as session:
            rows = session.execute(
                select(related_link).where(related_link.c.related_link_id == link_id)
            ).all()
            return [self._to_model(row) for row in rows]

    def delete(self, primary_id: uuid.UUID, related_id: uuid.UUID) -> bool:
        """Delete one directed relation.

        Returns:
            True if the relation existed.
        """
        with self.db.transaction() as session:
            result = session.execute(
                delete(related_link).where(
                    (related_link.c.primary_link_id == primary_id) &
                    (related_link.c.related_link_id == related_id)
                )
            )
            return result.rowcount > 0

    def count_connections(self, link_id: uuid.UUID) -> int:
        """Count relations (incoming + outgoing) touching a link."""
        with self.db.read_session() as session:
            return session.scalar(
                select(func.count()).select_from(related_link).where(or_(
                    related_link.c.primary_link_id == link_id,
                    related_link.c.related_link_id == link_id,
                ))
            ) or 0

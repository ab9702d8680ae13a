"""Repository for captured links."""
import logging
import uuid
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from meowpad.exceptions import LinkNotFoundError
from meowpad.models.db_models import DBLink
from meowpad.models.schema import Link, bump_modified, ensure_timezone_aware
from meowpad.storage.database import Database, translate_integrity_error

logger = logging.getLogger(__name__)


class LinkRepository:
    """Repository for managing links.

    Every method runs inside ``Database.transaction()``, so calls made while
    a transaction is open join it.
    """

    def __init__(self, db: Database):
        """Initialize the link repository.

        Args:
            db: Database providing the transaction scope.
        """
        self.db = db

    @staticmethod
    def to_model(db_link: DBLink) -> Link:
        return Link(
            id=db_link.id,
            url=db_link.url,
            title=db_link.title,
            description=db_link.description,
            is_primary=bool(db_link.is_primary),
            created_at=ensure_timezone_aware(db_link.created_at),
            modified_at=ensure_timezone_aware(db_link.modified_at),
        )

    def create(self, link: Link) -> Link:
        """Insert a new link.

        Raises:
            DuplicateUrlError: If a link with the same URL exists.
        """
        with self.db.transaction() as session:
            try:
                with session.begin_nested():
                    session.add(DBLink(
                        id=link.id,
                        url=link.url,
                        title=link.title,
                        description=link.description,
                        is_primary=link.is_primary,
                        created_at=link.created_at,
                        modified_at=link.modified_at,
                    ))
                    session.flush()
            except IntegrityError as e:
                raise translate_integrity_error(e, url=link.url, operation="create_link") from e
        logger.debug(f"Created link {link.id} <{link.url}>")
        return link

    def get(self, link_id: uuid.UUID) -> Optional[Link]:
        """Get a link by id, or None."""
        with self.db.read_session() as session:
            db_link = session.get(DBLink, link_id)
            return self.to_model(db_link) if db_link else None

    def get_by_url(self, url: str) -> Optional[Link]:
        """Get a link by its normalized URL, or None."""
        with self.db.read_session() as session:
            db_link = session.scalar(select(DBLink).where(DBLink.url == url))
            return self.to_model(db_link) if db_link else None

    def exists(self, link_id: uuid.UUID) -> bool:
        with self.db.read_session() as session:
            return session.scalar(select(DBLink.id).where(DBLink.id == link_id)) is not None

    def update(
        self,
        link_id: uuid.UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
        is_primary: Optional[bool] = None,
    ) -> Link:
        """Overwrite the given fields and bump ``modified_at``.

        Fields passed as None are left unchanged.

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        with self.db.transaction() as session:
            db_link = session.get(DBLink, link_id)
            if db_link is None:
                raise LinkNotFoundError(link_id)
            if title is not None:
                db_link.title = title
            if description is not None:
                db_link.description = description
            if is_primary is not None:
                db_link.is_primary = is_primary
            db_link.modified_at = bump_modified(db_link.modified_at)
            session.flush()
            return self.to_model(db_link)

    def touch(self, link_id: uuid.UUID) -> Link:
        """Bump ``modified_at`` without changing anything else."""
        return self.update(link_id)

    def delete(self, link_id: uuid.UUID) -> bool:
        """Delete a link; notes, tag associations, relations and indexed
        content go with it through ON DELETE CASCADE.

        Returns:
            True if a row was deleted.
        """
        with self.db.transaction() as session:
            result = session.execute(
                delete(DBLink).where(DBLink.id == link_id),
                execution_options={"synchronize_session": False},
            )
            # Cascaded rows may still sit in the identity map
            session.expire_all()
            return result.rowcount > 0

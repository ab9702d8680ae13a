"""Repository for tags and their associations with links and notes."""
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql import Select

from meowpad.models.db_models import DBTag, item_tag
from meowpad.models.schema import (ItemRef, LinkRef, Tag, TagAssociation,
                                   ensure_timezone_aware)
from meowpad.storage.database import Database, translate_integrity_error
from meowpad.utils import slugify

logger = logging.getLogger(__name__)


def _target_clause(target: ItemRef):
    if isinstance(target, LinkRef):
        return item_tag.c.link_id == target.id
    return item_tag.c.note_id == target.id


class TagRepository:
    """Repository for managing tags.

    Tags are matched by slug, so "Rust" and "rust" are the same tag; the
    name stored is the one used when the tag was first created.
    """

    def __init__(self, db: Database):
        """Initialize the tag repository.

        Args:
            db: Database providing the transaction scope.
        """
        self.db = db

    @staticmethod
    def to_model(db_tag: DBTag) -> Tag:
        return Tag(
            id=db_tag.id,
            name=db_tag.name,
            slug=db_tag.slug,
            created_at=ensure_timezone_aware(db_tag.created_at),
            modified_at=ensure_timezone_aware(db_tag.modified_at),
        )

    def get_or_create(self, tag_name: str) -> Tag:
        """Get the tag matching ``tag_name`` by slug, creating it if absent.

        Raises:
            InvalidTagError: If the name has no usable slug.
        """
        slug = slugify(tag_name)
        with self.db.transaction() as session:
            db_tag = session.scalar(select(DBTag).where(DBTag.slug == slug).limit(1))
            if db_tag is not None:
                return self.to_model(db_tag)

            tag = Tag(name=tag_name.strip(), slug=slug)
            try:
                with session.begin_nested():
                    session.add(DBTag(
                        id=tag.id,
                        name=tag.name,
                        slug=tag.slug,
                        created_at=tag.created_at,
                        modified_at=tag.modified_at,
                    ))
                    session.flush()
            except IntegrityError as e:
                raise translate_integrity_error(e, tag_name=tag_name, operation="create_tag") from e
            logger.debug(f"Created tag '{tag.name}' ({tag.slug})")
            return tag

    def get(self, tag_id: uuid.UUID) -> Optional[Tag]:
        """Get a tag by id, or None."""
        with self.db.read_session() as session:
            db_tag = session.get(DBTag, tag_id)
            return self.to_model(db_tag) if db_tag else None

    def get_by_name(self, tag_name: str) -> Optional[Tag]:
        """Get a tag by name (compared by slug), or None.

        Raises:
            InvalidTagError: If the name has no usable slug.
        """
        slug = slugify(tag_name)
        with self.db.read_session() as session:
            db_tag = session.scalar(select(DBTag).where(DBTag.slug == slug).limit(1))
            return self.to_model(db_tag) if db_tag else None

    def get_all(self) -> List[Tag]:
        """All tags ordered by slug."""
        with self.db.read_session() as session:
            db_tags = session.scalars(select(DBTag).order_by(DBTag.slug)).all()
            return [self.to_model(t) for t in db_tags]

    def get_with_counts(self) -> Dict[str, int]:
        """Get all tags with their usage counts.

        Returns:
            Dictionary mapping tag names to the number of tagged items.
        """
        with self.db.read_session() as session:
            result = session.execute(
                select(DBTag.name, func.count(item_tag.c.tag_id))
                .select_from(DBTag)
                .outerjoin(item_tag, DBTag.id == item_tag.c.tag_id)
                .group_by(DBTag.id, DBTag.name)
                .order_by(DBTag.slug)
            ).all()
            return {name: count for name, count in result}

    def is_associated(self, tag_id: uuid.UUID, target: ItemRef) -> bool:
        with self.db.read_session() as session:
            return session.scalar(
                select(func.count())
                .select_from(item_tag)
                .where(item_tag.c.tag_id == tag_id)
                .where(_target_clause(target))
            ) > 0

    def associate(self, tag: Tag, target: ItemRef) -> TagAssociation:
        """Attach a tag to one item.

        Raises:
            AlreadyTaggedError: If the association already exists.
            NotFoundError: If the target item does not exist.
        """
        with self.db.transaction() as session:
            try:
                with session.begin_nested():
                    session.execute(insert(item_tag).values(
                        tag_id=tag.id,
                        link_id=target.link_id,
                        note_id=target.note_id,
                    ))
            except IntegrityError as e:
                raise translate_integrity_error(
                    e,
                    tag_name=tag.name,
                    target=target,
                    link_id=target.link_id,
                    note_id=target.note_id,
                    missing_id=target.id,
                    operation="attach_tag",
                ) from e
        return TagAssociation(tag=tag, target=target)

    def dissociate(self, tag_id: uuid.UUID, target: ItemRef) -> bool:
        """Remove a tag from one item.

        Returns:
            True if the tag was removed, False if it wasn't present.
        """
        with self.db.transaction() as session:
            result = session.execute(
                delete(item_tag)
                .where(item_tag.c.tag_id == tag_id)
                .where(_target_clause(target))
            )
            return result.rowcount > 0

    def get_tags_for(self, target: ItemRef) -> List[Tag]:
        """Tags attached to one item, ordered by slug."""
        with self.db.read_session() as session:
            db_tags = session.scalars(
                select(DBTag)
                .join(item_tag, DBTag.id == item_tag.c.tag_id)
                .where(_target_clause(target))
                .order_by(DBTag.slug)
            ).all()
            return [self.to_model(t) for t in db_tags]

    def count_associations(self, tag_id: uuid.UUID) -> int:
        with self.db.read_session() as session:
            return session.scalar(
                select(func.count()).select_from(item_tag).where(item_tag.c.tag_id == tag_id)
            ) or 0

    def delete(self, tag_id: uuid.UUID) -> bool:
        """Delete a tag; its associations cascade, tagged items are untouched.

        Returns:
            True if a row was deleted.
        """
        with self.db.transaction() as session:
            result = session.execute(
                delete(DBTag).where(DBTag.id == tag_id),
                execution_options={"synchronize_session": False},
            )
            session.expire_all()
            return result.rowcount > 0

    def delete_unused(self) -> int:
        """Delete tags that are not associated with any item.

        Returns:
            Number of tags deleted.
        """
        with self.db.transaction() as session:
            used = select(item_tag.c.tag_id).distinct()
            result = session.execute(
                delete(DBTag).where(DBTag.id.not_in(used)),
                execution_options={"synchronize_session": False},
            )
            return result.rowcount

    @staticmethod
    def tagged_ids(slugs: Sequence[str], match_all: bool, kind: str) -> Select:
        """Select the ids of items of ``kind`` carrying any or all of ``slugs``.

        Args:
            slugs: Normalized tag slugs.
            match_all: If True, only items that have ALL tags.
                      If False, items that have ANY of the tags.
            kind: "link" or "note".
        """
        id_column = item_tag.c.link_id if kind == "link" else item_tag.c.note_id
        base = (
            select(id_column)
            .select_from(item_tag)
            .join(DBTag, item_tag.c.tag_id == DBTag.id)
            .where(id_column.is_not(None))
            .where(DBTag.slug.in_(list(slugs)))
        )
        if match_all:
            # A tag name could map onto several rows sharing a slug in old
            # databases, so count distinct slugs rather than rows.
            return base.group_by(id_column).having(
                func.count(func.distinct(DBTag.slug)) == len(set(slugs))
            )
        return base.distinct()

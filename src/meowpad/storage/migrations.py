"""Versioned schema migrations for the meowpad database.

Each step is a plain function taking an alembic ``Operations`` object, the
same ``op`` API alembic revision files use. Steps run strictly in order and
each one commits together with its ``schema_version`` row, so the persisted
version always names the last step that fully applied.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from meowpad.exceptions import MigrationError
from meowpad.models.schema import utc_now

logger = logging.getLogger(__name__)

VERSION_TABLE = "schema_version"


@dataclass(frozen=True)
class Migration:
    """One forward-only schema step."""
    version: int
    name: str
    upgrade: Callable[[Operations], None]

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def _id_column(name: str = "id", *args, **kwargs) -> sa.Column:
    return sa.Column(name, sa.LargeBinary(16), *args, **kwargs)


def _timestamps() -> List[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
    ]


def initial_schema(op: Operations) -> None:
    """Create links, notes, tags and their associations."""
    op.create_table(
        "link",
        _id_column(primary_key=True),
        sa.Column("url", sa.Text(), nullable=False, unique=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("length(id) = 16", name="ck_link_id_length"),
    )
    op.create_table(
        "note",
        _id_column(primary_key=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, unique=True),
        _id_column("link_id", sa.ForeignKey("link.id", ondelete="CASCADE"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("length(id) = 16", name="ck_note_id_length"),
    )
    op.create_table(
        "tag",
        _id_column(primary_key=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("slug", sa.Text(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("length(id) = 16", name="ck_tag_id_length"),
    )
    op.create_table(
        "item_tag",
        _id_column("tag_id", sa.ForeignKey("tag.id", ondelete="CASCADE"), nullable=False),
        _id_column("note_id", sa.ForeignKey("note.id", ondelete="CASCADE"), nullable=True),
        _id_column("link_id", sa.ForeignKey("link.id", ondelete="CASCADE"), nullable=True),
        sa.UniqueConstraint("tag_id", "link_id", "note_id"),
    )
    op.create_table(
        "related_link",
        _id_column("primary_link_id", sa.ForeignKey("link.id", ondelete="CASCADE"), nullable=False),
        _id_column("related_link_id", sa.ForeignKey("link.id", ondelete="CASCADE"), nullable=False),
        sa.Column("relationship", sa.Text(), nullable=True),
        sa.UniqueConstraint("primary_link_id", "related_link_id"),
    )


def link_content_index(op: Operations) -> None:
    """Move extracted link text into its own full-text indexed table.

    Rows with no content stay unindexed. The old column is dropped once its
    values have been copied across.

    Databases written by the earlier tool already hold the text in a
    ``link_content`` FTS5 table of ``(link_id, content)``. Its rows are read
    out, the table is dropped and the rows are copied into the new layout.
    """
    conn = op.get_bind()
    legacy_rows = None
    legacy_table = conn.execute(text(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'link_content'"
    )).scalar()
    if legacy_table:
        legacy_rows = {}
        for link_id, content in conn.execute(text(
            "SELECT link_id, content FROM link_content "
            "WHERE link_id IN (SELECT id FROM link)"
        )):
            if content is not None and content.strip():
                legacy_rows[bytes(link_id)] = content
        op.execute("DROP TABLE link_content")

    op.create_table(
        "link_content",
        sa.Column("id", sa.Integer(), primary_key=True),
        _id_column(
            "link_id",
            sa.ForeignKey("link.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("content", sa.Text(), nullable=False),
    )
    op.execute("""
        CREATE VIRTUAL TABLE link_content_fts USING fts5(
            content,
            content='link_content',
            content_rowid='id'
        )
    """)
    op.execute("""
        CREATE TRIGGER link_content_ai AFTER INSERT ON link_content BEGIN
            INSERT INTO link_content_fts(rowid, content)
            VALUES (NEW.id, NEW.content);
        END
    """)
    op.execute("""
        CREATE TRIGGER link_content_ad AFTER DELETE ON link_content BEGIN
            INSERT INTO link_content_fts(link_content_fts, rowid, content)
            VALUES ('delete', OLD.id, OLD.content);
        END
    """)
    op.execute("""
        CREATE TRIGGER link_content_au AFTER UPDATE ON link_content BEGIN
            INSERT INTO link_content_fts(link_content_fts, rowid, content)
            VALUES ('delete', OLD.id, OLD.content);
            INSERT INTO link_content_fts(rowid, content)
            VALUES (NEW.id, NEW.content);
        END
    """)
    if legacy_rows is not None:
        if legacy_rows:
            conn.execute(
                text("INSERT INTO link_content (link_id, content) VALUES (:link_id, :content)"),
                [{"link_id": k, "content": v} for k, v in legacy_rows.items()],
            )
        return

    op.execute("""
        INSERT INTO link_content (link_id, content)
        SELECT id, content FROM link
        WHERE content IS NOT NULL AND trim(content) != ''
    """)
    op.execute("ALTER TABLE link DROP COLUMN content")


def note_search_and_lookup_indexes(op: Operations) -> None:
    """Full-text index for notes plus indexes for tag and relation lookups.

    Also enforces the tag-target rule in storage: duplicate rows left behind
    by older versions (NULLs never collide in the UNIQUE constraint) are
    removed, partial unique indexes take over duplicate detection, and a
    trigger rejects rows naming both or neither target.
    """
    op.execute("""
        CREATE VIRTUAL TABLE note_fts USING fts5(
            id UNINDEXED,
            title,
            content
        )
    """)
    op.execute("""
        CREATE TRIGGER note_fts_ai AFTER INSERT ON note BEGIN
            INSERT INTO note_fts(id, title, content)
            VALUES (NEW.id, NEW.title, NEW.content);
        END
    """)
    op.execute("""
        CREATE TRIGGER note_fts_ad AFTER DELETE ON note BEGIN
            DELETE FROM note_fts WHERE id = OLD.id;
        END
    """)
    op.execute("""
        CREATE TRIGGER note_fts_au AFTER UPDATE ON note BEGIN
            DELETE FROM note_fts WHERE id = OLD.id;
            INSERT INTO note_fts(id, title, content)
            VALUES (NEW.id, NEW.title, NEW.content);
        END
    """)
    op.execute("INSERT INTO note_fts(id, title, content) SELECT id, title, content FROM note")

    op.execute("DELETE FROM item_tag WHERE (link_id IS NULL) = (note_id IS NULL)")
    op.execute("""
        DELETE FROM item_tag WHERE rowid NOT IN (
            SELECT min(rowid) FROM item_tag GROUP BY tag_id, link_id, note_id
        )
    """)
    op.create_index(
        "ux_item_tag_link", "item_tag", ["tag_id", "link_id"],
        unique=True, sqlite_where=sa.text("link_id IS NOT NULL"),
    )
    op.create_index(
        "ux_item_tag_note", "item_tag", ["tag_id", "note_id"],
        unique=True, sqlite_where=sa.text("note_id IS NOT NULL"),
    )
    op.execute("""
        CREATE TRIGGER item_tag_single_target BEFORE INSERT ON item_tag
        WHEN (NEW.link_id IS NULL) = (NEW.note_id IS NULL) BEGIN
            SELECT RAISE(ABORT, 'item_tag must reference exactly one of link_id or note_id');
        END
    """)

    op.create_index("ix_tag_slug", "tag", ["slug"])
    op.create_index("ix_item_tag_link_id", "item_tag", ["link_id"])
    op.create_index("ix_item_tag_note_id", "item_tag", ["note_id"])
    op.create_index("ix_related_link_related_link_id", "related_link", ["related_link_id"])
    op.create_index("ix_note_link_id", "note", ["link_id"])


MIGRATIONS: Sequence[Migration] = (
    Migration(1, "initial_schema", initial_schema),
    Migration(2, "link_content_index", link_content_index),
    Migration(3, "note_search_and_lookup_indexes", note_search_and_lookup_indexes),
)


class MigrationManager:
    """Brings a database to the schema version this code expects.

    Args:
        engine: Engine from ``create_db_engine`` (explicit BEGIN, so DDL
            participates in transactions).
        migrations: Ordered steps; versions must run 1..N without gaps.
    """

    def __init__(self, engine: Engine, migrations: Sequence[Migration] = MIGRATIONS):
        expected = list(range(1, len(migrations) + 1))
        if [m.version for m in migrations] != expected:
            raise ValueError(
                f"Migration versions must be contiguous from 1, got "
                f"{[m.version for m in migrations]}"
            )
        self.engine = engine
        self.migrations = list(migrations)

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def current_version(self) -> int:
        """Read the persisted schema version (0 for an empty database)."""
        with self.engine.begin() as conn:
            self._ensure_version_table(conn)
            return self._read_version(conn)

    def pending(self) -> List[Migration]:
        """Steps not yet applied, in order."""
        current = self.current_version()
        return [m for m in self.migrations if m.version > current]

    def migrate(self) -> int:
        """Apply every pending step and return the resulting version.

        Raises:
            MigrationError: If the database is newer than this code or a
                step fails. A failed step leaves the database at the last
                committed version.
        """
        current = self.current_version()
        if current > self.latest_version:
            raise MigrationError(
                f"Database schema version {current} is newer than the latest "
                f"known version {self.latest_version}; upgrade meowpad",
                version=current,
            )

        for step in self.migrations:
            if step.version <= current:
                continue
            logger.info(f"Applying migration {step.label}")
            try:
                with self.engine.begin() as conn:
                    step.upgrade(Operations(MigrationContext.configure(conn)))
                    conn.execute(
                        text(
                            f"INSERT INTO {VERSION_TABLE} (version, applied_at) "
                            "VALUES (:version, :applied_at)"
                        ),
                        {"version": step.version, "applied_at": utc_now().isoformat()},
                    )
            except Exception as e:
                logger.error(
                    f"Migration {step.label} failed, database left at version {current}: {e}"
                )
                raise MigrationError(
                    f"Migration {step.label} failed; database left at version {current}",
                    version=step.version,
                    name=step.name,
                    original_error=e,
                ) from e
            current = step.version

        return current

    def require_current(self) -> None:
        """Raise MigrationError unless the database is exactly at the latest version."""
        current = self.current_version()
        if current != self.latest_version:
            raise MigrationError(
                f"Database schema is at version {current}, expected {self.latest_version}",
                version=current,
            )

    @staticmethod
    def _ensure_version_table(conn: Connection) -> None:
        conn.execute(text(
            f"CREATE TABLE IF NOT EXISTS {VERSION_TABLE} ("
            "version INTEGER NOT NULL PRIMARY KEY, applied_at TEXT NOT NULL)"
        ))

    @staticmethod
    def _read_version(conn: Connection) -> int:
        version: Optional[int] = conn.execute(
            text(f"SELECT MAX(version) FROM {VERSION_TABLE}")
        ).scalar()
        if version is not None:
            return version
        # Databases written by the earlier tool track their version in
        # PRAGMA user_version instead of a table. Only its first step matches
        # ours; its second leaves link_content in a shape step 2 converts.
        legacy = conn.exec_driver_sql("PRAGMA user_version").scalar() or 0
        if not legacy:
            return 0
        logger.info(f"Adopting legacy schema version {legacy} as version 1")
        conn.execute(
            text(
                f"INSERT INTO {VERSION_TABLE} (version, applied_at) "
                "VALUES (:version, :applied_at)"
            ),
            {"version": 1, "applied_at": utc_now().isoformat()},
        )
        return 1

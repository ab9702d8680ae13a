"""FTS5 full-text index over link content and notes.

Link text lives in ``link_content`` and is mirrored into the
external-content table ``link_content_fts`` by triggers; notes are mirrored
into ``note_fts``. Writes happen inside the caller's transaction, so indexed
text is searchable as soon as that transaction commits.
"""
import logging
import re
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, literal_column, select, table, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from meowpad.exceptions import ErrorCode, SearchError
from meowpad.models.db_models import DBLink, DBNote, link_content
from meowpad.models.schema import ItemRef, LinkRef, NoteRef
from meowpad.storage.database import Database, is_fts_query_error

logger = logging.getLogger(__name__)

SEARCH_KINDS = ("link", "note")


@dataclass(frozen=True)
class SearchHit:
    """A ranked full-text match. Higher scores are better."""
    ref: ItemRef
    score: float


class FtsIndex:
    """Keeps link text indexed and answers full-text queries.

    Args:
        db: Database whose transaction scope is used for ``rebuild``.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Link content
    # ------------------------------------------------------------------

    def index(self, session: Session, link_id: uuid.UUID, content: str) -> None:
        """Insert or replace the indexed text of a link.

        Blank text removes the entry instead; a link is only indexed when
        there is something to search.
        """
        if not content or not content.strip():
            self.remove(session, link_id)
            return
        stmt = sqlite_insert(link_content).values(link_id=link_id, content=content)
        stmt = stmt.on_conflict_do_update(
            index_elements=[link_content.c.link_id],
            set_={"content": stmt.excluded.content},
        )
        session.execute(stmt)
        logger.debug(f"Indexed {len(content)} chars for link {link_id}")

    def remove(self, session: Session, link_id: uuid.UUID) -> bool:
        """Drop a link's indexed text. Returns False if there was none."""
        result = session.execute(
            delete(link_content).where(link_content.c.link_id == link_id)
        )
        return result.rowcount > 0

    def get(self, session: Session, link_id: uuid.UUID) -> Optional[str]:
        """Indexed text of a link, or None."""
        return session.execute(
            select(link_content.c.content).where(link_content.c.link_id == link_id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def search(
        self,
        session: Session,
        query: str,
        limit: Optional[int] = None,
        kinds: Iterable[str] = SEARCH_KINDS,
    ) -> List[SearchHit]:
        """Rank links and notes against a query.

        Args:
            session: Session to query with.
            query: Plain words (matched as a phrase) or FTS5 syntax.
            limit: Maximum number of hits overall.
            kinds: Which item kinds to search ("link", "note").

        Raises:
            SearchError: If the query is blank or malformed.
        """
        fts_query = self.prepare_query(query)
        kinds = set(kinds)
        sql_limit = -1 if limit is None else limit
        hits: List[SearchHit] = []

        try:
            if "link" in kinds:
                rows = session.execute(
                    text("""
                        SELECT rowid, -bm25(link_content_fts) AS score
                        FROM link_content_fts
                        WHERE link_content_fts MATCH :query
                        ORDER BY score DESC
                        LIMIT :limit
                    """),
                    {"query": fts_query, "limit": sql_limit},
                ).all()
                scores = {row[0]: row[1] for row in rows}
                if scores:
                    mapping = session.execute(
                        select(link_content.c.id, link_content.c.link_id)
                        .where(link_content.c.id.in_(list(scores)))
                    ).all()
                    hits.extend(
                        SearchHit(ref=LinkRef(id=link_id), score=scores[rowid])
                        for rowid, link_id in mapping
                    )

            if "note" in kinds:
                rows = session.execute(
                    text("""
                        SELECT id, -bm25(note_fts) AS score
                        FROM note_fts
                        WHERE note_fts MATCH :query
                        ORDER BY score DESC
                        LIMIT :limit
                    """),
                    {"query": fts_query, "limit": sql_limit},
                ).all()
                hits.extend(
                    SearchHit(ref=NoteRef(id=uuid.UUID(bytes=bytes(row[0]))), score=row[1])
                    for row in rows
                )
        except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
            raise self._search_error(query, e) from e

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits if limit is None else hits[:limit]

    def link_filter(self, query: str) -> ColumnElement:
        """WHERE clause restricting ``DBLink`` rows to those matching ``query``."""
        fts_query = self.prepare_query(query)
        matching_rowids = (
            select(literal_column("rowid"))
            .select_from(table("link_content_fts"))
            .where(text("link_content_fts MATCH :link_fts_query").bindparams(
                link_fts_query=fts_query
            ))
        )
        return DBLink.id.in_(
            select(link_content.c.link_id).where(link_content.c.id.in_(matching_rowids))
        )

    def note_filter(self, query: str) -> ColumnElement:
        """WHERE clause restricting ``DBNote`` rows to those matching ``query``."""
        fts_query = self.prepare_query(query)
        return DBNote.id.in_(
            select(literal_column("id"))
            .select_from(table("note_fts"))
            .where(text("note_fts MATCH :note_fts_query").bindparams(
                note_fts_query=fts_query
            ))
        )

    def rebuild(self) -> Tuple[int, int]:
        """Rebuild both FTS tables from their source rows.

        Returns:
            (indexed link entries, indexed notes)
        """
        with self.db.transaction() as session:
            session.execute(
                text("INSERT INTO link_content_fts(link_content_fts) VALUES('rebuild')")
            )
            session.execute(text("DELETE FROM note_fts"))
            session.execute(text(
                "INSERT INTO note_fts(id, title, content) SELECT id, title, content FROM note"
            ))
            links = session.execute(select(func.count()).select_from(link_content)).scalar()
            notes = session.execute(text("SELECT COUNT(*) FROM note_fts")).scalar()
        logger.info(f"Rebuilt full-text index: {links} links, {notes} notes")
        return links, notes

    # ------------------------------------------------------------------
    # Query escaping helpers
    # ------------------------------------------------------------------

    @classmethod
    def prepare_query(cls, query: str) -> str:
        """Turn user input into an FTS5 MATCH expression."""
        if query is None or not query.strip():
            raise SearchError(
                "Search query cannot be empty",
                query=query,
                code=ErrorCode.SEARCH_INVALID_QUERY,
            )
        if cls._should_escape(query):
            return cls._escape_query(query)
        return query

    @staticmethod
    def _should_escape(query: str) -> bool:
        """Auto-detect whether a query needs FTS5 escaping."""
        FTS5_KEYWORDS = {"AND", "OR", "NOT", "NEAR"}
        words = query.upper().split()
        if any(kw in words for kw in FTS5_KEYWORDS):
            return False
        if query.count('"') >= 2:
            return False
        if re.search(r"\b\w+\*", query):
            return False
        if re.search(r"\b\w+:", query):
            return False
        return True

    @staticmethod
    def _escape_query(query: str) -> str:
        """Escape query for FTS5 literal matching (quoted phrase)."""
        result = query.replace('"', '""')
        result = re.sub(r"[*^]", "", result)
        return f'"{result}"'

    @staticmethod
    def _search_error(query: str, error: Exception) -> SearchError:
        if is_fts_query_error(error):
            logger.warning(f"Malformed search query '{query}': {error}")
            return SearchError(
                f"Malformed search query '{query}'",
                query=query,
                code=ErrorCode.SEARCH_INVALID_QUERY,
            )
        logger.error(f"Full-text search failed for '{query}': {error}")
        return SearchError(f"Search for '{query}' failed", query=query)

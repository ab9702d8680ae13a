"""Storage layer for meowpad."""

from meowpad.storage.database import Database
from meowpad.storage.fts_index import FtsIndex, SearchHit
from meowpad.storage.link_repository import LinkRepository
from meowpad.storage.migrations import MIGRATIONS, Migration, MigrationManager
from meowpad.storage.note_repository import NoteRepository
from meowpad.storage.relation_repository import RelationRepository
from meowpad.storage.tag_repository import TagRepository

__all__ = [
    "Database",
    "FtsIndex",
    "SearchHit",
    "LinkRepository",
    "MIGRATIONS",
    "Migration",
    "MigrationManager",
    "NoteRepository",
    "RelationRepository",
    "TagRepository",
]

"""Capture pipeline: URL -> fetch -> extract -> store -> index."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from meowpad.exceptions import (
    ExtractionFailure,
    MeowpadError,
    SelfRelationError,
    StorageError,
    ValidationError,
)
from meowpad.models.schema import ConflictPolicy, IfTagged, Link
from meowpad.observability import timed_operation
from meowpad.services.entity_store import EntityStore
from meowpad.services.extractor import Article, extract_article
from meowpad.services.fetcher import FetchedPage, PageFetcher
from meowpad.utils import normalize_url, slugify

logger = logging.getLogger(__name__)


class CaptureStatus(str, Enum):
    """What happened to the link record."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    REFRESHED = "refreshed"
    PROMOTED = "promoted"


class ExtractionStatus(str, Enum):
    """What happened to the link's searchable content."""
    INDEXED = "indexed"
    NO_CONTENT = "no_content"
    INDEX_FAILED = "index_failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CaptureOutcome:
    """Result of a capture.

    ``error`` holds the non-fatal problem behind a degraded extraction.
    """
    link: Link
    status: CaptureStatus
    extraction: ExtractionStatus
    error: Optional[MeowpadError] = None

    @property
    def degraded(self) -> bool:
        return self.extraction in (ExtractionStatus.NO_CONTENT, ExtractionStatus.INDEX_FAILED)


class CaptureService:
    """Turns a URL into a stored, indexed link.

    The network fetch happens before any transaction is opened, so a failed
    fetch leaves the database untouched. Extraction and indexing problems
    degrade the outcome but never lose the link.

    Args:
        store: Entity store to write to.
        fetcher: Page fetcher; configured from ``config`` by default.
        extractor: Callable turning a FetchedPage into an Article.
    """

    def __init__(
        self,
        store: EntityStore,
        fetcher: Optional[PageFetcher] = None,
        extractor: Callable[[FetchedPage], Article] = extract_article,
    ):
        self.store = store
        self.fetcher = fetcher if fetcher is not None else PageFetcher()
        self.extractor = extractor

    def capture(
        self,
        url: str,
        refresh: bool = False,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Sequence[str] = (),
        note: Optional[str] = None,
        related: Sequence[Tuple[str, Optional[str]]] = (),
    ) -> CaptureOutcome:
        """Capture a URL.

        Tags, the note and relations are written in the same transaction as
        the link, so either all of them are stored or none are.

        Args:
            url: Web URL to capture.
            refresh: Re-fetch and re-index a link that already exists.
            title: Title overriding the extracted one.
            description: Description overriding the extracted one.
            tags: Tag names to attach to the link.
            note: Text of the note attached to the link.
            related: ``(url, relationship)`` pairs; unknown URLs become
                secondary links.

        Raises:
            InvalidUrlError: If a URL is not a valid http(s) URL.
            InvalidTagError: If a tag name has no valid slug.
            FetchError: If the page cannot be retrieved. Nothing is written.
        """
        normalized = normalize_url(url)
        # Reject bad input before spending a network round trip
        for name in tags:
            slugify(name)
        if note is not None and not note.strip():
            raise ValidationError("Note content is required", field="note")
        relations = [(normalize_url(target), relationship) for target, relationship in related]
        if any(target == normalized for target, _ in relations):
            raise SelfRelationError(normalized)

        with timed_operation("capture", url=normalized[:50]) as op:
            existing = self.store.get_link_by_url(normalized)
            if existing is not None and existing.is_primary and not refresh:
                if tags or note is not None or relations:
                    with self.store.transaction():
                        existing = self._annotate(existing, tags, note, relations)
                op["status"] = CaptureStatus.ALREADY_EXISTS.value
                return CaptureOutcome(
                    link=existing,
                    status=CaptureStatus.ALREADY_EXISTS,
                    extraction=ExtractionStatus.SKIPPED,
                )

            page = self.fetcher.fetch(normalized)
            article, failure = self._extract(page)
            candidate_title = article.title if article else (failure.title if failure else None)
            candidate_description = article.description if article else None

            with self.store.transaction():
                current = self.store.get_link_by_url(normalized)
                if current is None:
                    link = self.store.create_link(
                        normalized,
                        title=title or candidate_title,
                        description=description or candidate_description,
                    )
                    status = CaptureStatus.CREATED
                else:
                    status = (
                        CaptureStatus.REFRESHED if current.is_primary else CaptureStatus.PROMOTED
                    )
                    link = self.store.update_link(
                        current.id,
                        title=title or candidate_title,
                        description=description or candidate_description,
                        is_primary=True,
                    )

                if article is None:
                    logger.warning(f"Captured <{normalized}> without content: {failure.reason}")
                    extraction, error = ExtractionStatus.NO_CONTENT, failure
                else:
                    extraction, error = self._index(link, article)

                if tags or note is not None or relations:
                    link = self._annotate(link, tags, note, relations)

            op["status"] = status.value
            op["extraction"] = extraction.value
            return CaptureOutcome(link=link, status=status, extraction=extraction, error=error)

    def _annotate(
        self,
        link: Link,
        tags: Sequence[str],
        note: Optional[str],
        relations: List[Tuple[str, Optional[str]]],
    ) -> Link:
        """Attach tags, note and relations; runs inside the caller's transaction."""
        for name in tags:
            self.store.attach_tag(name, link.ref, if_tagged=IfTagged.IGNORE)
        if note is not None:
            self.store.replace_content(link.ref, note)
        for target_url, relationship in relations:
            target = self.store.create_link(
                target_url, is_primary=False, on_conflict=ConflictPolicy.MERGE
            )
            if self.store.relations.get(link.id, target.id) is None:
                self.store.relate_links(link.id, target.id, relationship=relationship)
        return self.store.get_link(link.id)

    def _extract(
        self, page: FetchedPage
    ) -> Tuple[Optional[Article], Optional[ExtractionFailure]]:
        try:
            return self.extractor(page), None
        except ExtractionFailure as e:
            return None, e

    def _index(
        self, link: Link, article: Article
    ) -> Tuple[ExtractionStatus, Optional[MeowpadError]]:
        """Index the article inside a savepoint; a failure keeps the link."""
        try:
            with self.store.db.savepoint() as session:
                self.store.index.index(session, link.id, article.text)
        except (SQLAlchemyError, MeowpadError) as e:
            logger.warning(f"Indexing failed for link {link.id} <{link.url}>: {e}")
            error = e if isinstance(e, MeowpadError) else StorageError(
                f"Indexing failed for <{link.url}>",
                operation="index",
                original_error=e,
            )
            return ExtractionStatus.INDEX_FAILED, error
        return ExtractionStatus.INDEXED, None

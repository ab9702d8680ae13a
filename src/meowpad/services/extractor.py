"""Readable-text extraction from fetched pages."""
import logging
import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

from meowpad.exceptions import ExtractionFailure
from meowpad.services.fetcher import FetchedPage

logger = logging.getLogger(__name__)

HTML_TYPES = frozenset({"text/html", "application/xhtml+xml"})
TEXT_TYPES = frozenset({"text/plain", "text/markdown"})

# Page chrome that never belongs to the article body
NOISE_TAGS = [
    "script", "style", "noscript", "template", "iframe", "svg",
    "nav", "header", "footer", "aside", "form", "button",
]

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Article:
    """Readable content of a page."""
    text: str
    title: Optional[str] = None
    description: Optional[str] = None


def clean_text(text: str) -> str:
    """Strip lines, split runs of double spaces and drop blank lines."""
    lines = (line.strip() for line in text.splitlines())
    chunks = (phrase.strip() for line in lines for phrase in line.split("  "))
    return "\n".join(chunk for chunk in chunks if chunk)


def _collapse(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = _WHITESPACE.sub(" ", value).strip()
    return value or None


def _meta(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    return _collapse(tag.get("content"))


def _title(soup: BeautifulSoup) -> Optional[str]:
    title = _meta(soup, property="og:title")
    if title:
        return title
    if soup.title is not None:
        title = _collapse(soup.title.get_text())
        if title:
            return title
    h1 = soup.find("h1")
    return _collapse(h1.get_text()) if h1 is not None else None


def _description(soup: BeautifulSoup) -> Optional[str]:
    return _meta(soup, name="description") or _meta(soup, property="og:description")


def extract_article(page: FetchedPage) -> Article:
    """Extract the readable text, title and description of a page.

    Plain-text documents are used as they are. For HTML, page chrome is
    removed and ``<article>``, ``<main>`` or ``[role=main]`` is preferred
    over the whole ``<body>``.

    Raises:
        ExtractionFailure: For unsupported content types, documents without
            readable text, and parser errors. ``title`` carries whatever
            title could still be recovered.
    """
    if page.content_type in TEXT_TYPES:
        text = clean_text(page.text)
        if not text:
            raise ExtractionFailure(page.url, "empty document")
        return Article(text=text)

    if page.content_type not in HTML_TYPES:
        raise ExtractionFailure(page.url, f"unsupported content type {page.content_type}")

    try:
        soup = BeautifulSoup(page.body, "html.parser", from_encoding=page.charset)
        title = _title(soup)
        description = _description(soup)

        for element in soup(NOISE_TAGS):
            element.decompose()

        candidates = (
            soup.find("article"),
            soup.find("main"),
            soup.find(attrs={"role": "main"}),
            soup.body,
            soup,
        )
        text = ""
        for root in candidates:
            if root is None:
                continue
            # An empty placeholder element falls through to the next candidate
            text = clean_text(root.get_text("\n"))
            if text:
                break
    except Exception as e:
        logger.debug(f"HTML parsing failed for {page.url}: {e}")
        raise ExtractionFailure(page.url, "could not parse HTML", original_error=e) from e

    if not text:
        raise ExtractionFailure(page.url, "no readable text", title=title)
    return Article(text=text, title=title, description=description)

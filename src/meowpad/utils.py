"""Utility functions for meowpad."""
from urllib.parse import urlsplit, urlunsplit

from meowpad.exceptions import InvalidTagError, InvalidUrlError

_WEB_SCHEMES = {"http": 80, "https": 443}


def slugify(tag: str) -> str:
    """Derive the normalized slug for a tag name.

    Alphanumerics are kept (lowercased), ``:`` separates namespaces, and any
    run of other characters collapses into a single hyphen. Hyphens are then
    trimmed from each namespace piece.

    Examples:
        "Jacques Torneur" -> "jacques-torneur"
        "Mr. Bungle" -> "mr-bungle"
        "  ns1  : ns2 ?: actual term" -> "ns1:ns2:actual-term"

    Raises:
        InvalidTagError: If any namespace piece ends up empty
            (empty name, punctuation only, ":foo", "foo:", "foo::bar").
    """
    chars = []
    is_sep = True
    for c in tag.lower().strip():
        if c.isalnum():
            is_sep = False
            chars.append(c)
        elif c == ":":
            chars.append(":")
        elif not is_sep:
            chars.append("-")
            is_sep = True

    pieces = []
    for piece in "".join(chars).split(":"):
        stripped = piece.strip("-")
        if not stripped:
            raise InvalidTagError(tag)
        pieces.append(stripped)
    return ":".join(pieces)


def normalize_url(url: str) -> str:
    """Validate a web URL and return its canonical form.

    The scheme and host are lowercased, default ports and the fragment are
    dropped, and an empty path becomes ``/``. The query string is kept
    verbatim.

    Examples:
        "HTTPS://Example.COM" -> "https://example.com/"
        "http://example.com:80/a#top" -> "http://example.com/a"

    Raises:
        InvalidUrlError: If the URL is empty, malformed, not http(s) or has no host.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise InvalidUrlError(url, "empty URL")
    if any(c.isspace() for c in candidate):
        raise InvalidUrlError(url, "URL contains whitespace")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e

    scheme = parts.scheme.lower()
    if scheme not in _WEB_SCHEMES:
        raise InvalidUrlError(url, f"non-web URL scheme '{scheme or '(none)'}'")

    host = parts.hostname
    if not host:
        raise InvalidUrlError(url, "missing host")
    if ":" in host:
        host = f"[{host}]"

    netloc = host
    if port is not None and port != _WEB_SCHEMES[scheme]:
        netloc = f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))

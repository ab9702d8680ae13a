"""HTTP retrieval of pages to capture."""
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

import requests

from meowpad.config import config
from meowpad.exceptions import FetchError

logger = logging.getLogger(__name__)

# Statuses worth another attempt: the origin was briefly unreachable
RETRY_STATUSES = frozenset({502, 503, 504})
RETRY_BACKOFF_BASE = 0.5  # seconds

CHUNK_SIZE = 65536


def _charset(content_type_header: str) -> Optional[str]:
    for param in content_type_header.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"\'')
    return None


@dataclass(frozen=True)
class FetchedPage:
    """A retrieved document.

    ``url`` is the final address after redirects; ``charset`` is only set
    when the server declared one.
    """
    url: str
    status_code: int
    content_type: str
    body: bytes
    charset: Optional[str] = None

    @property
    def text(self) -> str:
        """Body decoded with the declared charset (UTF-8 otherwise)."""
        try:
            return self.body.decode(self.charset or "utf-8", errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


class PageFetcher:
    """Fetches web pages with bounded time, size, redirects and retries.

    Args:
        session: requests session to use; a new one by default.
        timeout: Read timeout in seconds.
        connect_timeout: Connect timeout in seconds.
        max_bytes: Largest body accepted.
        retries: Extra attempts after a transient failure.
        max_redirects: Redirect hops followed before giving up.
        user_agent: User-Agent header sent with every request.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        retries: Optional[int] = None,
        max_redirects: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout if timeout is not None else config.fetch_timeout
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else config.fetch_connect_timeout
        )
        self.max_bytes = max_bytes if max_bytes is not None else config.fetch_max_bytes
        self.retries = retries if retries is not None else config.fetch_retries
        self.max_redirects = (
            max_redirects if max_redirects is not None else config.max_redirects
        )
        self.user_agent = user_agent or config.user_agent

    def fetch(self, url: str) -> FetchedPage:
        """GET a URL.

        Transient failures (connection errors, timeouts, 502/503/504) are
        retried with exponential backoff.

        Raises:
            FetchError: On connection failure, timeout, a non-2xx status,
                too many redirects or a body larger than ``max_bytes``.
        """
        attempts = self.retries + 1
        last_error: Optional[FetchError] = None
        for attempt in range(attempts):
            try:
                return self._fetch_once(url)
            except FetchError as e:
                if not self._is_transient(e):
                    raise
                last_error = e

            if attempt < attempts - 1:
                delay = RETRY_BACKOFF_BASE * (2 ** attempt)
                logger.info(
                    "Fetch attempt %d for %s failed, retrying in %.1fs: %s",
                    attempt + 1, url, delay, last_error.reason,
                )
                time.sleep(delay)

        raise last_error

    @staticmethod
    def _is_transient(error: FetchError) -> bool:
        if error.status_code in RETRY_STATUSES:
            return True
        return isinstance(error.original_error, (requests.ConnectionError, requests.Timeout))

    def _fetch_once(self, url: str) -> FetchedPage:
        timeout = (self.connect_timeout, self.timeout)
        # requests bounds each socket read; the deadline bounds the whole attempt
        deadline = time.monotonic() + self.connect_timeout + self.timeout
        headers = {"User-Agent": self.user_agent}

        try:
            # Follow redirects by hand so only http(s) targets are visited
            target = url
            for _ in range(self.max_redirects + 1):
                resp = self.session.get(
                    target,
                    timeout=timeout,
                    headers=headers,
                    stream=True,
                    allow_redirects=False,
                )
                if not resp.is_redirect:
                    break
                if time.monotonic() > deadline:
                    resp.close()
                    raise requests.Timeout("redirect chain exceeded the time limit")
                location = resp.headers.get("Location", "")
                resp.close()
                target = urljoin(target, location)
                if not target.startswith(("http://", "https://")):
                    raise FetchError(url, f"redirect to unsupported URL {target}")
                logger.debug(f"Redirected to {target}")
            else:
                raise FetchError(url, f"more than {self.max_redirects} redirects")

            with resp:
                if not 200 <= resp.status_code < 300:
                    raise FetchError(
                        url, f"HTTP status {resp.status_code}", status_code=resp.status_code
                    )

                declared = resp.headers.get("content-length")
                if declared:
                    try:
                        if int(declared) > self.max_bytes:
                            raise FetchError(url, f"content too large: {declared} bytes")
                    except ValueError:
                        pass  # Malformed header; enforced while streaming below

                chunks = []
                downloaded = 0
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    downloaded += len(chunk)
                    if downloaded > self.max_bytes:
                        raise FetchError(
                            url, f"content larger than {self.max_bytes} bytes"
                        )
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise requests.Timeout("body not received within the time limit")

                content_type_header = resp.headers.get("content-type", "")
                content_type = content_type_header.split(";")[0].strip().lower()
                return FetchedPage(
                    url=target,
                    status_code=resp.status_code,
                    content_type=content_type or "application/octet-stream",
                    body=b"".join(chunks),
                    charset=_charset(content_type_header),
                )
        except requests.Timeout as e:
            raise FetchError(url, "request timed out", original_error=e) from e
        except requests.RequestException as e:
            raise FetchError(url, "connection failed", original_error=e) from e

"""Conditional HTTP fetching of a single feed, backed by the shared cache."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime, parsedate_to_datetime
from typing import Callable, Dict, Mapping, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import HTTPError as TransportError
from urllib3.exceptions import ReadTimeoutError

from feedring import __version__
from feedring.cachestore import CacheStore
from feedring.errors import (
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    ParseError,
    SourceError,
    ThrottledError,
)
from feedring.models import (
    SKIP_STILL_THROTTLED,
    SKIP_THROTTLED,
    CacheEntry,
    Failed,
    Fetched,
    FetchOutcome,
    Skipped,
)
from feedring.services.extractor import extract_articles

__all__ = [
    "ConditionalFetcher",
    "DEFAULT_HEADERS",
    "DEFAULT_RETRY_AFTER",
    "build_session",
    "normalize_etag",
    "parse_http_date",
    "parse_retry_after",
]

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": f"feedring/{__version__}",
    "Accept": (
        "application/atom+xml,application/rss+xml,application/rdf+xml;q=0.9,"
        "application/xml;q=0.8,text/xml;q=0.8,*/*;q=0.5"
    ),
    "Accept-Encoding": "gzip, deflate, br, zstd",
}

#: Wait applied after a 429 that carries no usable Retry-After header.
DEFAULT_RETRY_AFTER = timedelta(hours=4)

FETCH_TIMEOUT = 30.0
CONNECT_TIMEOUT = 10.0
CHUNK_SIZE = 64 * 1024

_LATEST = datetime.max.replace(tzinfo=UTC)


def build_session(pool_size: int = 10) -> requests.Session:
    """Return a session with feed headers and a connection pool of ``pool_size``."""

    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    # Failed sources are reported, not retried, within a run.
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def normalize_etag(value: str | None) -> str | None:
    """Return ``value`` with the quotes an ETag must carry."""

    if not value or not value.strip():
        return None
    etag = value.strip()
    if (etag.startswith('"') and etag.endswith('"') and len(etag) > 1) or (
        etag.startswith('W/"') and etag.endswith('"')
    ):
        return etag
    return f'"{etag}"'


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an HTTP-date header value; unparseable values yield ``None``."""

    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_retry_after(value: str | None, received: datetime) -> datetime:
    """Return the instant before which a throttled source must not be refetched.

    ``value`` may be delta-seconds or an HTTP-date. Missing or unparseable
    values fall back to :data:`DEFAULT_RETRY_AFTER`.
    """

    if value and value.strip():
        raw = value.strip()
        if raw.isdigit():
            try:
                return received + timedelta(seconds=int(raw))
            except OverflowError:
                return _LATEST
        when = parse_http_date(raw)
        if when is not None:
            return when
    return received + DEFAULT_RETRY_AFTER


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ConditionalFetcher:
    """Fetch one feed per call, honouring cache validators and throttling.

    The cache entry is read before the request and written after it; no lock
    is held while the request is in flight.
    """

    def __init__(
        self,
        cache: CacheStore,
        *,
        session: requests.Session | None = None,
        timeout: float = FETCH_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        per_source: int = 1,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.cache = cache
        self._owns_session = session is None
        self._session = session or build_session()
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.per_source = per_source
        self._clock = clock or _utc_now

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "ConditionalFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fetch(self, url: str) -> FetchOutcome:
        """Fetch ``url`` and return exactly one outcome for it."""

        now = self._clock()
        entry = self.cache.get(url, now)

        if entry is not None and entry.is_throttled(now):
            logger.debug(
                "Skipping request to %s due to 429 until %s, using feed from cache",
                url,
                entry.retry_after.isoformat(),
            )
            return self._skipped(url, entry, SKIP_STILL_THROTTLED)

        try:
            status, headers, body = self._request(url, entry)
        except SourceError as exc:
            logger.debug("Failed to get feed %s: %s", url, exc)
            return Failed(url, exc)

        received = self._clock()

        if status == 304:
            if entry is None:
                error = HttpStatusError(url, status, f"The feed at `{url}` returned 304 with nothing cached.")
                return Failed(url, error)
            logger.debug("Got 304 for %s, using feed from cache", url)
            refreshed = entry.model_copy(update={"fetched_at": received})
            self.cache.put(url, refreshed)
            return self._fetched(url, refreshed.body)

        if 200 <= status < 300:
            logger.debug("Got %d for %s, using feed from body and updating cache", status, url)
            self.cache.put(
                url,
                CacheEntry(
                    etag=normalize_etag(headers.get("ETag")),
                    last_modified=parse_http_date(headers.get("Last-Modified")),
                    retry_after=None,
                    fetched_at=received,
                    body=body,
                ),
            )
            return self._fetched(url, body)

        if status == 429:
            retry_after = parse_retry_after(headers.get("Retry-After"), received)
            logger.debug(
                "Got 429 for %s (Retry-After: %s), backing off until %s",
                url,
                headers.get("Retry-After"),
                retry_after.isoformat(),
            )
            if entry is None:
                throttled = CacheEntry(retry_after=retry_after, fetched_at=received)
            else:
                throttled = entry.model_copy(update={"retry_after": retry_after, "fetched_at": received})
            self.cache.put(url, throttled)
            if not throttled.body:
                return Failed(url, ThrottledError(url))
            return self._skipped(url, throttled, SKIP_THROTTLED)

        return Failed(url, HttpStatusError(url, status))

    def _request(self, url: str, entry: CacheEntry | None) -> Tuple[int, Mapping[str, str], bytes]:
        headers: Dict[str, str] = {}
        if entry is not None:
            if entry.etag:
                headers["If-None-Match"] = entry.etag
            if entry.last_modified is not None:
                headers["If-Modified-Since"] = format_datetime(entry.last_modified.astimezone(UTC), usegmt=True)

        deadline = time.monotonic() + self.timeout
        logger.debug("Sending request to %s with conditional headers %s", url, headers)
        try:
            response = self._session.get(
                url,
                headers=headers,
                timeout=(self.connect_timeout, self.timeout),
                stream=True,
            )
        except requests.Timeout as exc:
            raise FetchTimeoutError(url, f"Timed out fetching `{url}`: {exc}") from exc
        except requests.RequestException as exc:
            raise NetworkError(url, f"Failed to get feed `{url}`: {exc}") from exc

        try:
            status = response.status_code
            body = b""
            if 200 <= status < 300:
                body = self._read_body(url, response, deadline)
            return status, response.headers, body
        except (requests.Timeout, ReadTimeoutError) as exc:
            raise FetchTimeoutError(url, f"Timed out reading `{url}`: {exc}") from exc
        except (requests.RequestException, TransportError, OSError) as exc:
            raise NetworkError(url, f"Failed to read feed `{url}`: {exc}") from exc
        finally:
            response.close()

    def _read_body(self, url: str, response: requests.Response, deadline: float) -> bytes:
        """Read the body in whatever pieces arrive, checking ``deadline`` between reads.

        ``read1`` returns as soon as any data is available, so the transfer ends
        at most one socket read timeout past ``deadline``.
        """

        chunks = []
        while True:
            if time.monotonic() > deadline:
                raise FetchTimeoutError(url, f"Fetching `{url}` took longer than {self.timeout:g}s")
            chunk = response.raw.read1(CHUNK_SIZE, decode_content=True)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def _articles(self, url: str, body: bytes) -> tuple:
        return tuple(extract_articles(body, url, self.per_source))

    def _fetched(self, url: str, body: bytes) -> FetchOutcome:
        try:
            return Fetched(url, self._articles(url, body))
        except ParseError as exc:
            logger.debug("Failed to parse feed %s: %s", url, exc)
            return Failed(url, exc)

    def _skipped(self, url: str, entry: CacheEntry, reason: str) -> FetchOutcome:
        if not entry.body:
            logger.warning("Empty cached feed for throttled source %s", url)
            return Skipped(url, reason)
        try:
            return Skipped(url, reason, self._articles(url, entry.body))
        except ParseError as exc:
            logger.debug("Failed to parse cached feed %s: %s", url, exc)
            return Failed(url, exc)

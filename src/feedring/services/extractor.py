"""Turn raw Atom/RSS payloads into :class:`~feedring.models.Article` records."""

from __future__ import annotations

import html
import io
import logging
from datetime import UTC, datetime, timedelta, timezone
from typing import Any, Iterable, List, Mapping
from urllib.parse import urljoin, urlparse

import feedparser
from bs4 import BeautifulSoup
from dateutil.parser import parse as parse_date
from feedparser.exceptions import CharacterEncodingOverride, NonXMLContentType
from pydantic import ValidationError

from feedring.errors import ParseError
from feedring.models import Article

__all__ = [
    "extract_articles",
    "parse_feed",
    "parse_timestamp",
    "sanitize_html",
]

logger = logging.getLogger(__name__)

# Timezone abbreviations for date parsing
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "Z": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
}

_DROPPED_TAGS = ["script", "style", "noscript"]
_HTML_TYPES = {"text/html", "application/xhtml+xml"}
_DATE_FIELDS = ("published", "updated", "created")

# RSS 0.90/1.0 items identify themselves by rdf:about, which feedparser exposes as the id.
_RDF_VERSIONS = {"rss090", "rss10"}

# Bozo conditions feedparser recovers from without losing structure.
_TOLERATED_ERRORS = (CharacterEncodingOverride, NonXMLContentType)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 822 or RFC 3339 date, assuming UTC when no zone is given."""

    if not value or not value.strip():
        return None
    try:
        parsed = parse_date(value.strip(), tzinfos=TZINFOS)
    except (ValueError, OverflowError, TypeError):
        logger.debug("Failed to parse date %r", value, exc_info=True)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _plain(text: str) -> str:
    text = html.unescape(text).replace("\xa0", " ")
    return " ".join(text.split())


def sanitize_html(markup: str | None) -> str:
    """Strip markup from ``markup`` and return trimmed plain text.

    Script and style content is dropped, HTML entities are decoded (twice, for
    feeds that double-escape), and non-breaking spaces become plain spaces.
    """

    if not markup:
        return ""
    if "<" in markup:
        soup = BeautifulSoup(markup, "lxml")
        for tag in soup(_DROPPED_TAGS):
            tag.decompose()
        markup = soup.get_text()
    else:
        markup = html.unescape(markup)
    return _plain(markup)


def _text(container: Mapping[str, Any], key: str) -> str:
    value = container.get(key)
    if not value:
        return ""
    detail = container.get(f"{key}_detail") or {}
    if detail.get("type") in _HTML_TYPES:
        return sanitize_html(value)
    return _plain(value)


def _summary(entry: Mapping[str, Any]) -> str:
    # Content copied into the summary by feedparser carries no detail record.
    summary = sanitize_html(entry.get("summary"))
    if summary:
        return summary
    for content in entry.get("content") or []:
        text = sanitize_html(content.get("value"))
        if text:
            return text
    return ""


def _choose_link(links: Iterable[Mapping[str, Any]]) -> str | None:
    """Prefer an ``alternate`` link, then any non-``self`` link, then ``self``."""

    candidates = [link for link in links if link.get("href")]
    for link in candidates:
        if link.get("rel", "alternate") == "alternate":
            return link["href"]
    for link in candidates:
        if link.get("rel") != "self":
            return link["href"]
    return candidates[0]["href"] if candidates else None


def _entry_link(entry: Mapping[str, Any], version: str) -> str | None:
    link = _choose_link(entry.get("links") or []) or entry.get("link")
    if link:
        return link
    if version in _RDF_VERSIONS and entry.get("id"):
        return entry["id"]
    return None


def _entry_timestamp(entry: Mapping[str, Any]) -> datetime | None:
    for field in _DATE_FIELDS:
        timestamp = parse_timestamp(entry.get(field))
        if timestamp is not None:
            return timestamp
    # feedparser normalizes the formats dateutil cannot read into UTC struct_time.
    for field in _DATE_FIELDS:
        parsed = entry.get(f"{field}_parsed")
        if parsed:
            return datetime(*parsed[:6], tzinfo=UTC)
    return None


def _domain(url: str) -> str | None:
    return urlparse(url).hostname or None


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/"


def _is_malformed(parsed: feedparser.FeedParserDict) -> bool:
    if not parsed.get("bozo"):
        return False
    error = parsed.get("bozo_exception")
    if isinstance(error, _TOLERATED_ERRORS):
        return False
    # Undeclared HTML entities such as &nbsp; are recovered by the lenient parser.
    if "undefined entity" in str(error).lower() and parsed.get("entries"):
        return False
    return True


def parse_feed(body: bytes, source_url: str = "") -> feedparser.FeedParserDict:
    """Parse ``body`` with feedparser.

    Relative links resolve against ``source_url`` unless the document sets
    ``xml:base``. Raises :class:`~feedring.errors.ParseError` when the payload
    is not well-formed or is neither Atom nor RSS.
    """

    if not body or not body.strip():
        raise ParseError(source_url, f"The feed at `{source_url}` was empty.")

    # A stream keeps feedparser from treating the payload as a URL or path.
    parsed = feedparser.parse(
        io.BytesIO(body),
        response_headers={"content-location": source_url, "content-type": "application/xml"},
    )

    if _is_malformed(parsed):
        raise ParseError(source_url, f"The feed at `{source_url}` is malformed: {parsed.get('bozo_exception')}")
    if not parsed.get("version"):
        raise ParseError(source_url, f"The document at `{source_url}` is not an Atom or RSS feed.")
    if parsed.get("bozo"):
        logger.warning("Feed parsing warning for %s: %s", source_url, parsed.get("bozo_exception"))
    return parsed


def extract_articles(body: bytes, source_url: str, per_source: int) -> List[Article]:
    """Parse ``body`` and return at most ``per_source`` articles in feed order.

    The first ``per_source`` entries are taken before anything else; entries
    among them without a link or a date are skipped.
    """

    parsed = parse_feed(body, source_url)
    feed = parsed.feed
    version = parsed.get("version", "")

    feed_title = _text(feed, "title") or None
    source_title = feed_title or _domain(source_url) or source_url
    feed_link = _choose_link(feed.get("links") or []) or feed.get("link")
    source_link = urljoin(source_url, feed_link) if feed_link else _origin(source_url)

    articles: List[Article] = []
    for entry in parsed.entries[: max(per_source, 0)]:
        href = _entry_link(entry, version)
        timestamp = _entry_timestamp(entry)
        if not href or timestamp is None:
            logger.warning(
                "Skipping entry from %s: must have a link and a date (link=%r, date=%r)",
                source_url,
                href,
                entry.get("published") or entry.get("updated"),
            )
            continue

        summary = _summary(entry)
        if not summary:
            logger.info("No summary or content provided for %s in %s", href, source_url)

        try:
            articles.append(
                Article(
                    title=_text(entry, "title") or source_title,
                    link=urljoin(source_url, href),
                    summary=summary,
                    timestamp=timestamp,
                    source_title=source_title,
                    source_link=source_link,
                )
            )
        except ValidationError as exc:
            logger.warning("Skipping entry %r from %s: %s", href, source_url, exc)

    logger.debug("Extracted %d articles from %s feed %s", len(articles), version, source_url)
    return articles

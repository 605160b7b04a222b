"""Domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, HttpUrl, field_validator

__all__ = [
    "Article",
    "CacheEntry",
    "Failed",
    "Fetched",
    "FetchOutcome",
    "Skipped",
    "SKIP_STILL_THROTTLED",
    "SKIP_THROTTLED",
]

SKIP_STILL_THROTTLED = "still-throttled"
SKIP_THROTTLED = "throttled"


class Article(BaseModel):
    """Canonical representation of a feed entry."""

    model_config = ConfigDict(frozen=True)

    title: str
    link: HttpUrl
    summary: str = ""
    timestamp: AwareDatetime
    source_title: str
    source_link: HttpUrl


class CacheEntry(BaseModel):
    """Cached fetch metadata and body for a single source URL."""

    model_config = ConfigDict(frozen=True)

    etag: Optional[str] = None
    last_modified: Optional[AwareDatetime] = None
    retry_after: Optional[AwareDatetime] = None
    fetched_at: AwareDatetime
    body: bytes = Field(default=b"", description="Decompressed payload of the last 200 response")

    @field_validator("body", mode="before")
    @classmethod
    def _encode_body(cls, value: Any) -> Any:
        # Bodies are persisted as text; surrogateescape keeps non UTF-8 bytes intact.
        if isinstance(value, str):
            return value.encode("utf-8", errors="surrogateescape")
        return value

    def is_throttled(self, now: datetime) -> bool:
        """Return ``True`` while ``retry_after`` lies in the future."""

        return self.retry_after is not None and self.retry_after > now

    def to_record(self) -> Dict[str, str]:
        """Return the JSON-serializable record stored in the cache file."""

        record: Dict[str, str] = {}
        if self.etag is not None:
            record["etag"] = self.etag
        if self.last_modified is not None:
            record["last_modified"] = self.last_modified.isoformat()
        if self.retry_after is not None:
            record["retry_after"] = self.retry_after.isoformat()
        record["fetched_at"] = self.fetched_at.isoformat()
        record["body"] = self.body.decode("utf-8", errors="surrogateescape")
        return record


@dataclass(frozen=True)
class Fetched:
    """A body was obtained for ``url`` and extracted."""

    url: str
    articles: Tuple[Article, ...] = ()


@dataclass(frozen=True)
class Skipped:
    """No fresh body was fetched because the source is throttled.

    ``articles`` come from the cached body, when there is one.
    """

    url: str
    reason: str
    articles: Tuple[Article, ...] = ()


@dataclass(frozen=True)
class Failed:
    """Fetching or parsing ``url`` failed."""

    url: str
    error: Exception

    @property
    def articles(self) -> Tuple[Article, ...]:
        return ()


FetchOutcome = Union[Fetched, Skipped, Failed]

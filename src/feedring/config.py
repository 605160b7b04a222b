"""Configuration models and helpers for the feed aggregator."""

from __future__ import annotations

import json
import os
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, List
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

__all__ = [
    "AggregatorConfig",
    "DEFAULT_CACHE_FILE",
    "DEFAULT_CONFIG_PATH",
    "read_source_file",
]

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "data" / "feeds.json"
DEFAULT_CACHE_FILE = ".feedringcache"

_MAX_AGE_SECONDS = timedelta.max.total_seconds()


def _default_cache_path() -> Path:
    return Path(os.environ.get("FEEDRING_CACHE_PATH", DEFAULT_CACHE_FILE))


def read_source_file(path: Path | str) -> List[str]:
    """Return the feed URLs listed in ``path``, one per line.

    Blank lines and lines starting with ``#`` or ``//`` are ignored.
    """

    urls: List[str] = []
    for raw_line in Path(path).read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or line.startswith("//"):
            continue
        urls.append(line)
    return urls


class AggregatorConfig(BaseModel):
    """Settings consumed by the fetch pipeline."""

    sources: List[str] = Field(default_factory=list, description="Atom/RSS feed URLs")
    per_source: int = Field(default=1, ge=0, description="Most recent entries taken from each feed")
    num_articles: int = Field(default=3, ge=0, description="Total number of articles returned")
    before: datetime | None = Field(
        default=None,
        description=(
            "Only include articles strictly before this instant. A bare date means "
            "local midnight; feeds close to the boundary in other timezones may be "
            "filtered unexpectedly."
        ),
    )
    cache: bool = Field(
        default=False,
        description=(
            "Persist request metadata between runs. This only prevents refetching after "
            "a 429; otherwise it enables conditional requests via ETag and Last-Modified."
        ),
    )
    max_cache_age: timedelta = Field(
        default=timedelta(days=14),
        description="Discard cached requests older than this duration",
    )
    cache_path: Path = Field(default_factory=_default_cache_path)
    fetch_timeout: float = Field(default=30.0, gt=0, description="Upper bound for a single fetch, in seconds")
    connect_timeout: float = Field(default=10.0, gt=0)
    max_workers: int | None = Field(default=None, ge=1, description="Cap on concurrent fetches")

    @field_validator("before", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            value = date.fromisoformat(value.strip())
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.min)
        return value

    @field_validator("before")
    @classmethod
    def _assume_local_time(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.astimezone()
        return value

    @field_validator("max_cache_age", mode="before")
    @classmethod
    def _clamp_max_age(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if value >= _MAX_AGE_SECONDS:
                return timedelta.max
        return value

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "AggregatorConfig":
        """Load configuration data from a JSON file."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Configuration file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in configuration file: {config_path}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Configuration file is invalid: {config_path}\n{exc}") from exc

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the configuration back to disk as JSON."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    def source_hosts(self) -> List[str]:
        """Return the host name of every configured source."""

        return [urlparse(source.strip()).netloc for source in self.sources]

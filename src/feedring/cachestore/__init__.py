"""On-disk request cache shared by the concurrent feed fetchers."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Dict, Mapping, Union

from pydantic import ValidationError

from feedring.errors import CacheIOError
from feedring.models import CacheEntry

logger = logging.getLogger(__name__)

#: Earliest instant the cache can compare against; oversized max ages clamp to it.
EARLIEST = datetime.min.replace(tzinfo=UTC)

_Pathish = Union[str, Path]


class CacheStore:
    """Mapping of source URL to :class:`~feedring.models.CacheEntry`.

    The store is shared by every fetch task of a run. A single lock guards the
    underlying dict and is only held for the map access itself, so callers must
    read their entry before going to the network and write it afterwards.
    Entries whose ``fetched_at`` is not newer than ``now - max_age`` are
    treated as absent.
    """

    def __init__(self, max_age: timedelta, entries: Mapping[str, CacheEntry] | None = None) -> None:
        self.max_age = max_age
        self._entries: Dict[str, CacheEntry] = dict(entries or {})
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    def cutoff(self, now: datetime) -> datetime:
        """Return the oldest ``fetched_at`` that is still considered stale."""

        try:
            return now - self.max_age
        except OverflowError:
            return EARLIEST

    def is_fresh(self, entry: CacheEntry, now: datetime) -> bool:
        return entry.fetched_at > self.cutoff(now)

    def get(self, url: str, now: datetime | None = None) -> CacheEntry | None:
        """Return the entry for ``url`` unless it is missing or too old."""

        now = now or datetime.now(UTC)
        with self._lock:
            entry = self._entries.get(url)
        if entry is None or not self.is_fresh(entry, now):
            return None
        return entry

    def put(self, url: str, entry: CacheEntry) -> None:
        """Replace any prior entry for ``url``."""

        with self._lock:
            self._entries[url] = entry

    def snapshot(self) -> Dict[str, CacheEntry]:
        """Return a copy of every stored entry."""

        with self._lock:
            return dict(self._entries)

    @classmethod
    def load(cls, path: _Pathish, max_age: timedelta, now: datetime | None = None) -> "CacheStore":
        """Load a store from ``path``, degrading to an empty store on any error.

        The whole file is discarded without being read when its modification
        time is already older than ``max_age``.
        """

        store = cls(max_age)
        now = now or datetime.now(UTC)
        cache_path = Path(path)

        try:
            modified = datetime.fromtimestamp(cache_path.stat().st_mtime, UTC)
        except FileNotFoundError:
            logger.info("No cache found at %s; starting with an empty cache", cache_path)
            return store
        except OSError as exc:
            logger.warning("Could not inspect cache %s: %s. Continuing without.", cache_path, exc)
            return store

        if modified <= store.cutoff(now):
            logger.warning(
                "Cache is too old (modified: %s, max age: %s). Discarding and recreating.",
                modified.isoformat(),
                max_age,
            )
            return store

        try:
            entries = read_entries(cache_path)
        except CacheIOError as exc:
            logger.warning("Error while loading cache: %s. Continuing without.", exc)
            return store

        kept = {url: entry for url, entry in entries.items() if store.is_fresh(entry, now)}
        store._entries.update(kept)
        logger.info(
            "Cache is recent (modified: %s, max age: %s). Using %d of %d entries.",
            modified.isoformat(),
            max_age,
            len(kept),
            len(entries),
        )
        return store

    def save(self, path: _Pathish) -> None:
        """Write the full snapshot to ``path`` atomically.

        The data is written to a temporary file in the destination directory
        and renamed over the target, so an interrupted save leaves the previous
        file intact.
        """

        target = Path(path)
        payload = {url: entry.to_record() for url, entry in self.snapshot().items()}

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file:
                    json.dump(payload, file)
                    file.flush()
                    os.fsync(file.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise CacheIOError(f"Failed to write cache to {target}: {exc}") from exc

        logger.debug("Stored %d cache entries at %s", len(payload), target)


def read_entries(path: _Pathish) -> Dict[str, CacheEntry]:
    """Parse every record of the cache file at ``path``.

    Raises :class:`~feedring.errors.CacheIOError` when the file cannot be read
    or does not match the cache schema.
    """

    cache_path = Path(path)
    try:
        with cache_path.open("r", encoding="utf-8") as file:
            data = json.load(file)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CacheIOError(f"Could not read cache file {cache_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise CacheIOError(f"Cache file {cache_path} does not contain a JSON object")

    try:
        return {str(url): CacheEntry.model_validate(record) for url, record in data.items()}
    except ValidationError as exc:
        raise CacheIOError(f"Cache file {cache_path} is invalid: {exc}") from exc


__all__ = ["CacheStore", "EARLIEST", "read_entries"]

"""Concurrent fan-out of feed fetches with one outcome per unique source."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Protocol

from feedring.models import Failed, FetchOutcome

__all__ = ["FeedOrchestrator", "ProgressCallback", "dedupe_urls"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 16

#: Called after every completed fetch with ``(done, total, url, outcome)``.
ProgressCallback = Callable[[int, int, str, FetchOutcome], None]


class Fetcher(Protocol):
    def fetch(self, url: str) -> FetchOutcome: ...


def dedupe_urls(candidates: Iterable[str]) -> List[str]:
    """Trim ``candidates`` and drop blanks and exact duplicates, keeping first-seen order."""

    seen: Dict[str, None] = {}
    for candidate in candidates:
        url = candidate.strip()
        if url and url not in seen:
            seen[url] = None
    return list(seen)


class FeedOrchestrator:
    """Run one fetch per unique URL on a thread pool and collect the outcomes."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        max_workers: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.max_workers = max_workers
        self.progress = progress

    def fetch_all(self, candidates: Iterable[str]) -> List[FetchOutcome]:
        """Return one outcome per unique URL, in first-seen input order.

        Every task runs to completion independently; a failing source is
        logged and recorded but never stops or retries the others.
        """

        urls = dedupe_urls(candidates)
        if not urls:
            return []

        workers = min(self.max_workers or DEFAULT_MAX_WORKERS, len(urls))
        outcomes: Dict[str, FetchOutcome] = {}

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="feedring-fetch") as executor:
            futures = {executor.submit(self.fetcher.fetch, url): url for url in urls}
            for done, future in enumerate(as_completed(futures), start=1):
                url = futures[future]
                try:
                    outcome = future.result()
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Unexpected error while fetching %s", url)
                    outcome = Failed(url, exc)

                if isinstance(outcome, Failed):
                    logger.warning("Failed to fetch %s: %s", url, outcome.error)

                outcomes[url] = outcome
                if self.progress is not None:
                    self.progress(done, len(urls), url, outcome)

        return [outcomes[url] for url in urls]

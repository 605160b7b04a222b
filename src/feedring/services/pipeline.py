"""End-to-end run: load cache, fetch every source, save cache, aggregate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

import requests

from feedring.cachestore import CacheStore
from feedring.config import AggregatorConfig
from feedring.errors import CacheIOError, NoSourcesError
from feedring.models import Article, Failed, FetchOutcome
from feedring.services.aggregator import aggregate
from feedring.services.fetcher import ConditionalFetcher, build_session
from feedring.services.orchestrator import DEFAULT_MAX_WORKERS, FeedOrchestrator, ProgressCallback, dedupe_urls

__all__ = ["AggregationResult", "run"]

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    """Ordered articles plus the per-source outcomes that produced them."""

    articles: List[Article] = field(default_factory=list)
    outcomes: List[FetchOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[Failed]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, Failed)]


def run(
    config: AggregatorConfig,
    *,
    session: requests.Session | None = None,
    cache: CacheStore | None = None,
    progress: ProgressCallback | None = None,
) -> AggregationResult:
    """Fetch every configured source and return the aggregated article list.

    Raises :class:`~feedring.errors.NoSourcesError` before any fetching when
    no sources are configured. Per-source failures never raise; they are
    reported on the result and summarised in the log.
    """

    urls = dedupe_urls(config.sources)
    if not urls:
        raise NoSourcesError()

    if cache is None:
        if config.cache:
            cache = CacheStore.load(config.cache_path, config.max_cache_age)
        else:
            cache = CacheStore(config.max_cache_age)

    workers = min(config.max_workers or DEFAULT_MAX_WORKERS, len(urls))
    http = session or build_session(pool_size=workers)
    fetcher = ConditionalFetcher(
        cache,
        session=http,
        timeout=config.fetch_timeout,
        connect_timeout=config.connect_timeout,
        per_source=config.per_source,
    )
    orchestrator = FeedOrchestrator(fetcher, max_workers=workers, progress=progress)

    try:
        outcomes = orchestrator.fetch_all(urls)
    finally:
        if session is None:
            http.close()

    if config.cache:
        try:
            cache.save(config.cache_path)
        except CacheIOError as exc:
            logger.warning("Could not save cache: %s", exc)

    articles = aggregate(
        (outcome.articles for outcome in outcomes),
        num_articles=config.num_articles,
        before=config.before,
    )
    result = AggregationResult(articles=articles, outcomes=outcomes)

    logger.info(
        "Collected %d articles from %d of %d sources",
        len(articles),
        len(urls) - len(result.failures),
        len(urls),
    )
    for failure in result.failures:
        logger.warning("Source %s failed: %s", failure.url, failure.error)

    return result

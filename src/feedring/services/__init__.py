"""Service layer entry points for feedring."""

from __future__ import annotations

from .aggregator import aggregate  # noqa: F401
from .extractor import extract_articles, parse_feed  # noqa: F401
from .fetcher import ConditionalFetcher  # noqa: F401
from .orchestrator import FeedOrchestrator, dedupe_urls  # noqa: F401
from .pipeline import AggregationResult, run  # noqa: F401

__all__ = [
    "AggregationResult",
    "ConditionalFetcher",
    "FeedOrchestrator",
    "aggregate",
    "dedupe_urls",
    "extract_articles",
    "parse_feed",
    "run",
]

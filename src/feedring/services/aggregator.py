"""Merge, filter and rank articles from every source."""

from __future__ import annotations

from datetime import datetime
from itertools import chain
from typing import Iterable, List, Sequence

from feedring.models import Article

__all__ = ["aggregate"]


def aggregate(
    article_lists: Iterable[Sequence[Article]],
    *,
    num_articles: int,
    before: datetime | None = None,
) -> List[Article]:
    """Return the ``num_articles`` most recent articles across ``article_lists``.

    Lists are concatenated in source order. When ``before`` is given only
    articles strictly older than it are kept. Equal timestamps keep their
    source order, so the result never depends on fetch completion order.
    """

    articles = list(chain.from_iterable(article_lists))
    if before is not None:
        articles = [article for article in articles if article.timestamp < before]

    # sorted() is stable, including with reverse=True.
    ranked = sorted(articles, key=lambda article: article.timestamp, reverse=True)
    return ranked[: max(num_articles, 0)]

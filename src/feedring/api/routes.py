"""API routes exposing the aggregated article list."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import List
from urllib.parse import urlparse

from fastapi import APIRouter, Body, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, ValidationError

from feedring.config import AggregatorConfig
from feedring.errors import NoSourcesError
from feedring.models import Article
from feedring.services.pipeline import AggregationResult, run

logger = logging.getLogger(__name__)

router = APIRouter()


class SourceFailure(BaseModel):
    url: str
    error: str


class ArticlesResponse(BaseModel):
    articles: List[Article] = Field(default_factory=list)
    failures: List[SourceFailure] = Field(default_factory=list)


class ArticlesRequest(BaseModel):
    sources: List[str] | None = None
    per_source: int | None = Field(default=None, ge=0)
    num_articles: int | None = Field(default=None, ge=0)
    before: datetime | None = None


class SourceEntry(BaseModel):
    url: str
    slug: str
    host: str


class SourcesResponse(BaseModel):
    sources: List[SourceEntry] = Field(default_factory=list)


def _slugify_source(name: str) -> str:
    """Return a stable lowercase identifier for a feed host, ``source`` when nothing is left."""

    normalized = re.sub(r"[^a-z0-9]+", "-", name.strip().lower())
    slug = normalized.strip("-")
    return slug or "source"


def _load_config() -> AggregatorConfig:
    try:
        return AggregatorConfig.from_file()
    except FileNotFoundError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _to_response(result: AggregationResult) -> ArticlesResponse:
    return ArticlesResponse(
        articles=result.articles,
        failures=[SourceFailure(url=failure.url, error=str(failure.error)) for failure in result.failures],
    )


async def _aggregate(config: AggregatorConfig) -> ArticlesResponse:
    try:
        result = await run_in_threadpool(run, config)
    except NoSourcesError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _to_response(result)


@router.get("/sources", response_model=SourcesResponse)
async def list_sources() -> SourcesResponse:
    """Return the configured set of feed sources."""

    config = _load_config()

    entries: List[SourceEntry] = []
    for url, host in zip(config.sources, config.source_hosts()):
        entries.append(SourceEntry(url=url.strip(), slug=_slugify_source(host or url), host=host))

    return SourcesResponse(sources=entries)


@router.get("/articles", response_model=ArticlesResponse)
async def list_articles() -> ArticlesResponse:
    """Fetch every configured source and return the ranked article list."""

    return await _aggregate(_load_config())


@router.post("/articles", response_model=ArticlesResponse)
async def aggregate_articles(
    payload: ArticlesRequest | None = Body(default=None),
) -> ArticlesResponse:
    """Fetch sources with per-request overrides of the stored configuration."""

    request_payload = payload or ArticlesRequest()

    if request_payload.sources is not None:
        if not any(source.strip() for source in request_payload.sources):
            raise HTTPException(status_code=400, detail="Select at least one feed source.")

    overrides = request_payload.model_dump(exclude_none=True)
    try:
        config = AggregatorConfig.model_validate({**_load_config().model_dump(), **overrides})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    logger.info("Aggregating %d sources on request", len(config.sources))
    return await _aggregate(config)

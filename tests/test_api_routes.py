"""Tests for :mod:`feedring.api.routes`."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import patch

from fastapi.testclient import TestClient

from feedring.api.app import create_app
from feedring.config import AggregatorConfig
from feedring.errors import HttpStatusError, NoSourcesError
from feedring.models import Article, Failed, Fetched
from feedring.services.pipeline import AggregationResult

ALPHA = "https://alpha.example.com/feed.xml"
BETA = "https://beta.example.com/rss"


def make_result() -> AggregationResult:
    article = Article(
        title="Alpha one",
        link="https://alpha.example.com/1",
        summary="First",
        timestamp=datetime(2024, 3, 1, tzinfo=UTC),
        source_title="Alpha",
        source_link="https://alpha.example.com/",
    )
    return AggregationResult(
        articles=[article],
        outcomes=[Fetched(ALPHA, (article,)), Failed(BETA, HttpStatusError(BETA, 500))],
    )


def test_health_endpoint() -> None:
    client = TestClient(create_app())

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_sources_returns_configured_feeds() -> None:
    """Feed metadata from the configuration file is exposed via the API."""

    client = TestClient(create_app())
    config = AggregatorConfig(sources=[ALPHA, f" {BETA} "])

    with patch("feedring.api.routes.AggregatorConfig.from_file", return_value=config):
        response = client.get("/api/sources")

    assert response.status_code == 200
    payload = response.json()
    assert [entry["url"] for entry in payload["sources"]] == [ALPHA, BETA]
    assert payload["sources"][0]["slug"] == "alpha-example-com"
    assert payload["sources"][1]["host"] == "beta.example.com"


def test_list_articles_returns_articles_and_failures() -> None:
    client = TestClient(create_app())
    config = AggregatorConfig(sources=[ALPHA, BETA])

    with patch("feedring.api.routes.AggregatorConfig.from_file", return_value=config), patch(
        "feedring.api.routes.run",
        return_value=make_result(),
    ) as mock_run:
        response = client.get("/api/articles")

    assert response.status_code == 200
    payload = response.json()
    assert [article["title"] for article in payload["articles"]] == ["Alpha one"]
    assert payload["articles"][0]["link"] == "https://alpha.example.com/1"
    assert payload["failures"][0]["url"] == BETA
    assert "500" in payload["failures"][0]["error"]
    mock_run.assert_called_once_with(config)


def test_list_articles_without_sources_returns_400() -> None:
    client = TestClient(create_app())

    with patch("feedring.api.routes.AggregatorConfig.from_file", return_value=AggregatorConfig()), patch(
        "feedring.api.routes.run",
        side_effect=NoSourcesError(),
    ):
        response = client.get("/api/articles")

    assert response.status_code == 400
    assert "no feed urls" in response.json()["detail"].lower()


def test_broken_configuration_returns_500() -> None:
    client = TestClient(create_app())

    with patch("feedring.api.routes.AggregatorConfig.from_file", side_effect=ValueError("Configuration file is invalid")):
        response = client.get("/api/sources")

    assert response.status_code == 500
    assert "invalid" in response.json()["detail"]


def test_aggregate_requires_source_when_empty_list() -> None:
    """Submitting an explicit empty source list returns a validation error."""

    client = TestClient(create_app())

    response = client.post("/api/articles", json={"sources": ["", "  "]})

    assert response.status_code == 400
    assert "at least one feed" in response.json()["detail"].lower()


def test_aggregate_rejects_negative_limits() -> None:
    client = TestClient(create_app())

    response = client.post("/api/articles", json={"num_articles": -1})

    assert response.status_code == 422


def test_aggregate_passes_overrides_to_pipeline() -> None:
    """Request fields override the stored configuration for a single run."""

    client = TestClient(create_app())
    stored = AggregatorConfig(sources=[ALPHA], per_source=1, num_articles=7)
    captured: dict[str, object] = {}

    async def fake_run_in_threadpool(func, *args, **kwargs):  # type: ignore[override]
        captured["func"] = func
        captured["args"] = args
        return make_result()

    with patch("feedring.api.routes.AggregatorConfig.from_file", return_value=stored), patch(
        "feedring.api.routes.run_in_threadpool",
        side_effect=fake_run_in_threadpool,
    ):
        response = client.post(
            "/api/articles",
            json={"sources": [BETA], "per_source": 4, "before": "2024-03-02"},
        )

    assert response.status_code == 200
    (config,) = captured["args"]
    assert config.sources == [BETA]
    assert config.per_source == 4
    assert config.num_articles == 7
    assert config.before is not None
    assert config.before.date().isoformat() == "2024-03-02"


def test_source_slugs_are_lowercase_identifiers() -> None:
    from feedring.api.routes import _slugify_source

    assert _slugify_source("News.Example.COM") == "news-example-com"
    assert _slugify_source("  --  ") == "source"

from __future__ import annotations

import io
import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest
from requests.structures import CaseInsensitiveDict

from feedring.config import AggregatorConfig
from feedring.errors import HttpStatusError, NoSourcesError, ParseError
from feedring.services.pipeline import run

ALPHA = "https://alpha.example.com/atom.xml"
BETA = "https://beta.example.com/rss"
GAMMA = "https://gamma.example.com/feed"

ALPHA_BODY = b"""<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Alpha</title>
  <link href="https://alpha.example.com/"/>
  <entry><title>Alpha three</title><link href="/3"/><updated>2024-03-03T00:00:00Z</updated></entry>
  <entry><title>Alpha one</title><link href="/1"/><updated>2024-03-01T00:00:00Z</updated></entry>
</feed>"""

BETA_BODY = b"""<rss version="2.0"><channel><title>Beta</title><link>https://beta.example.com/</link>
  <item><title>Beta two</title><link>https://beta.example.com/2</link>
  <pubDate>Sat, 02 Mar 2024 00:00:00 GMT</pubDate><description>Second</description></item>
</channel></rss>"""


class DummyRaw(io.BytesIO):
    def read1(self, size: int = -1, decode_content: bool | None = None) -> bytes:
        return super().read1(size)


class DummyResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"", headers: dict | None = None) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.raw = DummyRaw(body)

    def close(self) -> None:
        pass


class DummySession:
    def __init__(self, responses: dict) -> None:
        self.responses = {url: list(queue) for url, queue in responses.items()}
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None, stream=False):
        with self._lock:
            self.calls.append((url, dict(headers or {})))
            return self.responses[url].pop(0)


def test_run_without_sources_raises_before_fetching() -> None:
    session = DummySession({})

    with pytest.raises(NoSourcesError):
        run(AggregatorConfig(sources=["", "   "]), session=session)

    assert session.calls == []


def test_run_aggregates_all_sources(tmp_path: Path) -> None:
    session = DummySession(
        {
            ALPHA: [DummyResponse(200, ALPHA_BODY)],
            BETA: [DummyResponse(200, BETA_BODY)],
            GAMMA: [DummyResponse(500)],
        }
    )
    config = AggregatorConfig(
        sources=[ALPHA, BETA, GAMMA, f" {ALPHA} "],
        per_source=2,
        num_articles=3,
        cache_path=tmp_path / "cache.json",
    )

    result = run(config, session=session)

    assert [article.title for article in result.articles] == ["Alpha three", "Beta two", "Alpha one"]
    assert str(result.articles[0].link) == "https://alpha.example.com/3"
    assert result.articles[1].summary == "Second"
    assert [outcome.url for outcome in result.outcomes] == [ALPHA, BETA, GAMMA]
    assert [failure.url for failure in result.failures] == [GAMMA]
    assert isinstance(result.failures[0].error, HttpStatusError)
    assert sorted(url for url, _ in session.calls) == [ALPHA, BETA, GAMMA]
    assert not (tmp_path / "cache.json").exists()


def test_run_applies_before_filter() -> None:
    session = DummySession({ALPHA: [DummyResponse(200, ALPHA_BODY)]})
    config = AggregatorConfig(sources=[ALPHA], per_source=5, num_articles=5, before="2024-03-02T00:00:00Z")

    result = run(config, session=session)

    assert [article.title for article in result.articles] == ["Alpha one"]


def test_cache_is_saved_and_used_for_conditional_requests(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache.json"
    config = AggregatorConfig(sources=[ALPHA], per_source=2, num_articles=5, cache=True, cache_path=cache_path)

    first = run(config, session=DummySession({ALPHA: [DummyResponse(200, ALPHA_BODY, {"ETag": '"v1"'})]}))

    records = json.loads(cache_path.read_text(encoding="utf-8"))
    assert records[ALPHA]["etag"] == '"v1"'
    assert datetime.fromisoformat(records[ALPHA]["fetched_at"]) <= datetime.now(UTC)

    session = DummySession({ALPHA: [DummyResponse(304)]})
    second = run(config, session=session)

    assert session.calls == [(ALPHA, {"If-None-Match": '"v1"'})]
    assert second.articles == first.articles
    assert second.failures == []


def test_cache_save_failure_is_logged_not_raised(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="feedring.services.pipeline")
    blocked = tmp_path / "cache-dir"
    blocked.mkdir()
    config = AggregatorConfig(sources=[BETA], cache=True, cache_path=blocked)

    result = run(config, session=DummySession({BETA: [DummyResponse(200, BETA_BODY)]}))

    assert [article.title for article in result.articles] == ["Beta two"]
    assert "Could not save cache" in caplog.text


def test_malformed_feed_fails_only_its_own_source() -> None:
    session = DummySession(
        {
            ALPHA: [DummyResponse(200, ALPHA_BODY)],
            GAMMA: [DummyResponse(200, b"<html><body>Maintenance</body></html>")],
        }
    )
    config = AggregatorConfig(sources=[GAMMA, ALPHA], per_source=1, num_articles=5)

    result = run(config, session=session)

    assert [article.title for article in result.articles] == ["Alpha three"]
    assert [failure.url for failure in result.failures] == [GAMMA]
    assert isinstance(result.failures[0].error, ParseError)

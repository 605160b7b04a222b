"""Exceptions raised while fetching, parsing and caching feeds."""

from __future__ import annotations

__all__ = [
    "CacheIOError",
    "FeedringError",
    "FetchTimeoutError",
    "HttpStatusError",
    "NetworkError",
    "NoSourcesError",
    "ParseError",
    "SourceError",
    "ThrottledError",
]


class FeedringError(Exception):
    """Base class for every error raised by feedring."""


class SourceError(FeedringError):
    """An error scoped to a single feed source.

    These never abort a run; the orchestrator records them as a failed outcome
    for ``url`` and moves on.
    """

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class NetworkError(SourceError):
    """Connection, TLS or other transport failure."""


class FetchTimeoutError(NetworkError):
    """The fetch did not complete within its deadline."""


class HttpStatusError(SourceError):
    """The server answered with a status we cannot use."""

    def __init__(self, url: str, status: int, message: str | None = None) -> None:
        super().__init__(url, message or f"The feed at `{url}` returned HTTP {status}.")
        self.status = status


class ThrottledError(HttpStatusError):
    """HTTP 429 with no cached body to fall back on."""

    def __init__(self, url: str) -> None:
        super().__init__(url, 429, f"The feed at `{url}` was rate limited (HTTP 429).")


class ParseError(SourceError):
    """The body is not a valid Atom or RSS document."""


class CacheIOError(FeedringError):
    """Reading, writing or serializing the cache file failed."""


class NoSourcesError(FeedringError):
    """No feed URLs were configured."""

    def __init__(self) -> None:
        super().__init__("No feed urls were provided. Add sources to the configuration.")

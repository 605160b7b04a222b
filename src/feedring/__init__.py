"""feedring package exposing configuration, the fetch pipeline and the API."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

__version__ = "0.1.0"


ENV_PREFIX = "FEEDRING_"


def load_env_file(env_path: Path | None = None) -> List[str]:
    """Export ``FEEDRING_*`` settings from a ``.env`` file into ``os.environ``.

    The file defaults to ``$FEEDRING_ENV_FILE`` or ``.env`` at the project root.
    Variables already present in the environment win. Returns the names that
    were set.
    """

    if env_path is None:
        override = os.environ.get(f"{ENV_PREFIX}ENV_FILE")
        env_path = Path(override) if override else Path(__file__).resolve().parents[2] / ".env"
    if not env_path.is_file():
        return []

    loaded = []
    for line in env_path.read_text(encoding="utf-8").splitlines():
        name, sep, value = line.strip().removeprefix("export ").partition("=")
        name = name.strip()
        if not sep or not name.startswith(ENV_PREFIX) or name in os.environ:
            continue
        os.environ[name] = value.strip().strip("'\"")
        loaded.append(name)
    return loaded


load_env_file()

from .config import AggregatorConfig, read_source_file  # noqa: E402,F401
from .models import Article, CacheEntry  # noqa: E402,F401

__all__ = ["AggregatorConfig", "Article", "CacheEntry", "__version__", "load_env_file", "read_source_file"]

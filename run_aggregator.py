"""Convenience script for running the feed aggregator locally.

Usage: ``python run_aggregator.py [config.json] [urls.txt]``. URLs listed in the
optional second file are added to the configured sources.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the feedring package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from feedring.config import AggregatorConfig, read_source_file  # noqa: E402  (import after path setup)
from feedring.errors import NoSourcesError  # noqa: E402
from feedring.models import FetchOutcome  # noqa: E402
from feedring.services.pipeline import run  # noqa: E402


def log_progress(done: int, total: int, url: str, outcome: FetchOutcome) -> None:
    logging.info("[%d/%d] %s: %s", done, total, url, type(outcome).__name__.lower())


def main() -> None:
    """Load the configuration, aggregate every source and print the articles as JSON."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        config = AggregatorConfig.from_file(config_path)
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Could not load configuration: %s", exc)
        sys.exit(1)

    if len(sys.argv) > 2:
        try:
            config.sources.extend(read_source_file(sys.argv[2]))
        except OSError as exc:
            logging.error("Could not read feed list %s: %s", sys.argv[2], exc)
            sys.exit(1)

    try:
        result = run(config, progress=log_progress)
    except NoSourcesError as exc:
        logging.error("%s", exc)
        sys.exit(1)

    print(json.dumps([article.model_dump(mode="json") for article in result.articles], indent=2))


if __name__ == "__main__":
    main()

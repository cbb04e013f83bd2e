#!/usr/bin/env python3
"""Index productivity-tracker exports as they land in the export directory.

Runs a catch-up sweep over exports already present, then watches the
directory and indexes each new export into Elasticsearch, deleting the file
once the index has accepted it.

Usage:
    python scripts/export_ingest_watcher.py --config config.yml
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from app.utils.config import load_settings
from app.utils.errors import IngestError
from app.utils.es_client import ElasticsearchClient
from domains.export_ingest.indexer import ExportIndexer
from domains.export_ingest.orchestrator import ExportIngestor

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Index productivity exports into Elasticsearch and remove them once indexed.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: config.yml in the working directory, if present).",
    )
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=None,
        help="Directory the tracker writes exports to (overrides config).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (overrides config).",
    )
    parser.add_argument(
        "--sweep-only",
        action="store_true",
        help="Index exports already present and exit without watching.",
    )
    return parser.parse_args(argv)


def configure_logging(level: str):
    """Send logs to stdout at ``level``."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level.upper())


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""
    args = parse_args(argv)

    try:
        settings = load_settings(
            args.config,
            export_dir=args.export_dir,
            log_level=args.log_level,
        )
    except (OSError, ValueError) as e:
        configure_logging("INFO")
        logger.error(f"Failed to load configuration: {e}")
        return 1

    configure_logging(settings.log_level)
    logger.info("Export ingestion - Elasticsearch indexer")

    export_dir = Path(settings.export_dir)
    if not export_dir.exists():
        export_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created export directory: {export_dir}")

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    with ElasticsearchClient(settings) as client:
        if not client.ping():
            logger.error(f"Elasticsearch is not reachable at {settings.es_url()}")
            return 1
        logger.success(f"Connected to Elasticsearch at {settings.es_url()}")

        indexer = ExportIndexer(
            client,
            index_prefix=settings.es_index_prefix,
            document_type=settings.es_document_type,
        )
        ingestor = ExportIngestor(settings, indexer)

        try:
            ingestor.run(stop_event, sweep_only=args.sweep_only)
        except IngestError as e:
            logger.error(f"Export ingestion terminated: {e}")
            return 1
        except Exception as e:
            logger.exception(f"Export ingestion crashed: {e}")
            return 1

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())

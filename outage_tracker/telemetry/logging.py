"""Logging configuration for ingestion runs."""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure process-wide logging to stdout at the given level name."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

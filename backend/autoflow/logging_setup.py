"""Logging configuration for the coordinator service."""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stdout using the service-wide format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Per-request lines from httpx drown out the polling loop at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

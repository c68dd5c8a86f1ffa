"""
AINotes Backend — Logging Configuration
=========================================

What:  One place that configures the standard library logging tree.
Who:   Called by the FastAPI lifespan and by the CLI before a backfill run.
How:   Root logger with a single stdout handler; every module logs through
       logging.getLogger(__name__).

Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
"""

import logging
import sys
from typing import Optional, TextIO

from ainotes.config import settings

NOISY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpcore",
    "httpx",
    "google.auth",
    "grpc",
)


def setup_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    """
    Configure logging for the process.

    Args:
        level: Level name overriding settings.log_level (the CLI's --log-level).
        stream: Log destination; stdout by default. The CLI logs to stderr so
            its result output stays machine-readable.
    """
    level_name = (level or settings.log_level).upper()

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(stream or sys.stdout),  # Docker captures stdout
        ],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""Structured logging setup using Loguru."""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

# Third-party loggers that are chatty at INFO (one line per HTTP request,
# one warning per malformed PDF object).
_NOISY_LIBRARIES = ("httpx", "httpcore", "openai", "pypdf")


def setup_logger(log_level: str = "INFO", log_file: str | None = "logs/kb_ingest.log") -> None:
    """
    Configure loguru for the ingestion core.

    - LOG_LEVEL in the environment overrides `log_level`
    - Console: coloured, human-readable
    - File: rotating, compressed, written from a queue (skipped when log_file is None)
    - httpx / openai / pypdf stdlib loggers are held at WARNING unless DEBUG
    """
    log_level = os.getenv("LOG_LEVEL", log_level).upper()
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}",
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    library_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    logger.debug(f"Logger initialised | level={log_level} | file={log_file}")

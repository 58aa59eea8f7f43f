"""Loguru setup for the server and the CLI.

Every record passes through a patcher that scrubs credentials embedded in
clone URLs and tags the line with the job being executed, if any.  Stdlib
logging (uvicorn, httpx) is forwarded into loguru so there is one format.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from loguru import logger

from gitsmith.orchestrator.git.urls import redact_url

if TYPE_CHECKING:
    from loguru import Record

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[job_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

NO_JOB = "-"

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _patch_record(record: Record) -> None:
    record["extra"].setdefault("job_id", NO_JOB)
    if "://" in record["message"] and "@" in record["message"]:
        record["message"] = redact_url(record["message"])


class _StdlibForwarder(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the caller.
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, serialize: bool = False) -> None:
    """Make loguru the only sink, writing to stderr at ``level``.

    ``serialize`` switches to one JSON object per line for log shippers.
    """
    level = level.upper()

    logger.remove()
    logger.configure(patcher=_patch_record)
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, serialize=serialize)

    logging.basicConfig(handlers=[_StdlibForwarder()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging ready (level={}, serialize={})", level, serialize)

"""
Goal: Set up loguru logging to the console and a rolling log file under TB_HOME/logs.
Every message is scrubbed before any sink sees it, so tokens and secrets never land in a log.
"""

import re
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from tunebridge.settings import LOG_DIR

_LONG_OPAQUE = re.compile(r"[A-Za-z0-9_\-.]{32,}")
_ASSIGNMENT = re.compile(r"(password|secret|private_?key|token)(\s*[=:]\s*)\S+", re.IGNORECASE)


def sanitize_log_message(msg: str) -> str:
    """Remove sensitive information from log messages."""
    # JWTs, access tokens, client secrets: anything long and opaque
    msg = _LONG_OPAQUE.sub("[REDACTED]", msg)
    # key=value / key: value pairs
    msg = _ASSIGNMENT.sub(r"\1\2[REDACTED]", msg)
    return msg


def _redact(record) -> None:
    record["message"] = sanitize_log_message(record["message"])


def configure_logging(log_dir: Optional[Path] = None, level: str = "INFO") -> None:
    logger.remove()
    logger.configure(patcher=_redact)

    stderr = getattr(sys, "stderr", None)
    if stderr and hasattr(stderr, "write"):
        logger.add(stderr, level=level, colorize=True, backtrace=False, diagnose=False)

    target = Path(log_dir or LOG_DIR)
    target.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(target / "{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention="14 days",
        level=level,
        backtrace=False,
        diagnose=False,
        serialize=False,
        enqueue=True,
        encoding="utf-8",
    )

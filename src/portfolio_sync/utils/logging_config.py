"""Logging setup for the sync client.

Console output goes through rich on stderr so command output on stdout stays
clean. Every handler carries a :class:`SecretFilter`: tokens and encrypted
blobs must never reach a log sink.
"""

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler

REDACTED = "[redacted]"

_BEARER = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")
# Long base64 runs: encrypted payloads, remembered keys, hashes of passwords
_BASE64_RUN = re.compile(r"[A-Za-z0-9+/]{40,}={0,2}")


def redact(text: str) -> str:
    """Mask bearer tokens and long base64 values in ``text``."""
    text = _BEARER.sub(rf"\g<1>{REDACTED}", text)
    return _BASE64_RUN.sub(REDACTED, text)


class SecretFilter(logging.Filter):
    """Rewrites record messages with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class SyncFileFormatter(logging.Formatter):
    """Plain formatter for log files with a ``module:line`` column."""

    def format(self, record: Any) -> str:
        record.location = f"{record.module}:{record.lineno}"
        return super().format(record)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    console_output: bool = True,
    max_file_size: int = 2 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Set up application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        console_output: Whether to log to the terminal
        max_file_size: Bytes before the log file rotates
        backup_count: Rotated files to keep
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if console_output:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_path=level <= logging.DEBUG,
            rich_tracebacks=True,
            log_time_format="%H:%M:%S",
        )
        console_handler.setLevel(level)
        console_handler.addFilter(SecretFilter())
        root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            SyncFileFormatter(
                fmt="%(asctime)s %(levelname)-8s %(location)-24s %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        file_handler.addFilter(SecretFilter())
        root_logger.addHandler(file_handler)

    logging.getLogger(__name__).debug(
        "Logging ready (level=%s, file=%s)", log_level, log_file or "-"
    )


def configure_third_party_loggers() -> None:
    """Quiet library loggers that are noisy or log request URLs."""
    for name in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)

"""Logging configuration using loguru.

Production writes one JSON object per line to stdout so the platform log
collector can index the fields; development gets colored text on stderr.
uvicorn, httpx and SQLAlchemy log through the standard library, which is
forwarded into loguru so there is a single sink.

Call sites pass structured fields as `logger.info("...", extra={...})`. Any
field named like a credential is masked before it reaches the JSON sink.
"""

import json
import logging
import sys
import traceback
from typing import Any

from loguru import logger

SENSITIVE_FIELDS = frozenset(
    {"access_token", "refresh_token", "client_secret", "password", "code", "secret_key"}
)

_FORWARDED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore")

_DEV_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "<level>{level: <8}</level> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> "
    "<level>{message}</level>"
    "{exception}"
)


def mask(value: str | None, visible: int = 6) -> str:
    """Return a short, non-reversible preview of a secret for log messages."""
    if not value:
        return "<empty>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}..."


def _structured_fields(extra: dict[str, Any]) -> dict[str, Any]:
    """Collect `extra` fields (including the nested `extra={...}` payload), masked."""
    fields = {key: value for key, value in extra.items() if key != "extra"}
    if isinstance(extra.get("extra"), dict):
        fields.update(extra["extra"])
    return {
        key: mask(str(value)) if key in SENSITIVE_FIELDS else value
        for key, value in fields.items()
        if not key.startswith("_")
    }


def _exception_fields(exception: Any) -> dict[str, Any]:
    formatted = None
    if exception.traceback:
        formatted = "".join(
            traceback.format_exception(exception.type, exception.value, exception.traceback)
        )
    return {
        "type": exception.type.__name__ if exception.type else None,
        "value": str(exception.value) if exception.value else None,
        "traceback": formatted,
    }


def _serialize_record(record: dict[str, Any]) -> str:
    """Render a loguru record as one JSON line.

    Always present: severity, message, time, logger. ERROR and above add the
    source location; records carrying an exception add its traceback.
    """
    entry: dict[str, Any] = {
        "severity": record["level"].name,
        "message": record["message"],
        "time": record["time"].isoformat(),
        "logger": record["name"],
    }

    if record["level"].no >= logging.ERROR:
        entry["source"] = {
            "file": record["file"].path,
            "line": record["line"],
            "function": record["function"],
        }

    if record["exception"] is not None:
        entry["exception"] = _exception_fields(record["exception"])

    entry.update(_structured_fields(record.get("extra", {})))
    return json.dumps(entry, default=str)


def _json_sink(message: Any) -> None:
    sys.stdout.write(_serialize_record(message.record) + "\n")
    sys.stdout.flush()


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real call site
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(*, is_production: bool, log_level: str = "INFO") -> None:
    """Configure loguru for the process.

    Args:
        is_production: JSON lines on stdout if True, colored text on stderr otherwise.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    logger.remove()

    # diagnose stays off in both modes: local variables may hold tokens
    if is_production:
        logger.add(_json_sink, level=log_level, format="{message}", diagnose=False)
    else:
        logger.add(
            sys.stderr,
            level=log_level,
            format=_DEV_FORMAT,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    handler = InterceptHandler()
    logging.basicConfig(handlers=[handler], level=log_level, force=True)
    for name in _FORWARDED_LOGGERS:
        forwarded = logging.getLogger(name)
        forwarded.handlers = [handler]
        forwarded.setLevel(log_level)

    # Statement logging can include bound secret values
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

"""Structured logging with correlation IDs.

Every record carries the correlation ID of the operation that produced it
(an upload, a webhook delivery, a poll cycle, a billing run) so the steps of
one payment can be followed across the log. Account, order and CID fields
are lifted to the top of each JSON record so a single payment or blob can be
filtered without parsing the free-form extras.
"""

import json
import logging
import sys
import traceback
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Lifted out of "extra" into top-level keys
CONTEXT_FIELDS = ("account_id", "order_id", "cid")

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "correlation_id",
}


def get_correlation_id() -> str:
    """Return the current correlation ID, minting one on first use."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = uuid.uuid4().hex
        correlation_id_var.set(cid)
    return cid


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Use `correlation_id` until the block exits, then restore the previous one.

    Celery runs many tasks on one worker thread, so a task must not leave its
    ID behind for the next one.
    """
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": f"{record.pathname}:{record.lineno}",
        }

        extra = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        for field in CONTEXT_FIELDS:
            if field in extra:
                payload[field] = extra.pop(field)
        if extra:
            payload["extra"] = extra

        if record.exc_info and self.include_stack_trace:
            exc_type, exc, tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc else None,
                "stack_trace": traceback.format_exception(exc_type, exc, tb) if tb else None,
            }

        return json.dumps(payload, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamp records logged without the helpers below (library loggers)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Replace the root handlers with a single stdout handler.

    Args:
        level: Log level name
        json_format: Emit StructuredFormatter JSON instead of plain text
    """
    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))
    root_logger.addHandler(handler)

    # SQL echo and per-request client logs drown out billing events
    for name in ("sqlalchemy.engine", "httpx", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    extra: dict[str, Any],
    exception: Optional[BaseException] = None,
) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exception, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error, with the exception's traceback when one is given.

    Args:
        logger: Logger instance
        message: Error message
        exception: Exception being handled, if any
        **extra: Context fields such as account_id, order_id or cid
    """
    _log(logger, logging.ERROR, message, extra, exception)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, extra)

"""
Logging for schemalens

Every record carries the analysis context of the thread that emitted it
(correlation id, environment, table). Worker threads inherit the context
of the run that spawned them through snapshot_context() / log_context().
Values under credential-like keys are masked before they reach a handler.
"""
from __future__ import annotations

import json
import logging
import sys
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Mapping, Optional

CONTEXT_FIELDS = ("correlation_id", "environment_id", "table_id")

SENSITIVE_KEYS = frozenset({
    "password", "passwd", "pwd", "secret", "token", "access_token",
    "api_key", "private_key", "credentials", "client_secret",
})
MASK = "***"

NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "google", "databricks", "mysql.connector")

_state = threading.local()


def _context() -> Dict[str, str]:
    return {name: getattr(_state, name) for name in CONTEXT_FIELDS if getattr(_state, name, None)}


def redact(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of fields with credential-like values masked, recursing into mappings"""
    clean: Dict[str, Any] = {}
    for key, value in fields.items():
        if str(key).lower() in SENSITIVE_KEYS and value is not None:
            clean[key] = MASK
        elif isinstance(value, Mapping):
            clean[key] = redact(value)
        else:
            clean[key] = value
    return clean


class JSONFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        entry.update(getattr(record, "context", {}))
        entry.update(getattr(record, "extra_fields", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for terminals"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        context = getattr(record, "context", {})
        tags = "".join(
            f"[{label}:{context[name][:8]}]"
            for name, label in (("correlation_id", "run"), ("table_id", "table"))
            if name in context
        )
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S.%f")[:-3]

        line = f"{color}{timestamp} {record.levelname:<7}{self.RESET} {record.name}: "
        if tags:
            line += f"{tags} "
        line += record.getMessage()

        fields = getattr(record, "extra_fields", None)
        if fields:
            line += "  " + " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class PipelineLogger(logging.LoggerAdapter):
    """Stamps the thread's analysis context on each record and masks secrets"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = _context()
        if "extra_fields" in extra:
            extra["extra_fields"] = redact(extra["extra_fields"])
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines on stderr instead of colored text
        log_file: Optional file that always receives JSON lines
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> PipelineLogger:
    return PipelineLogger(logging.getLogger(name), {})


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Start (or join) a correlation id on this thread"""
    _state.correlation_id = correlation_id or str(uuid.uuid4())
    return _state.correlation_id


def get_correlation_id() -> Optional[str]:
    return getattr(_state, "correlation_id", None)


def snapshot_context() -> Dict[str, str]:
    """Current context as keyword arguments for log_context() in another thread"""
    return _context()


def clear_context() -> None:
    for name in CONTEXT_FIELDS:
        if hasattr(_state, name):
            delattr(_state, name)


@contextmanager
def log_context(
    correlation_id: Optional[str] = None,
    environment_id: Optional[str] = None,
    table_id: Optional[str] = None
) -> Generator[None, None, None]:
    """
    Scope analysis context to a block; the previous context is restored on exit

    Usage:
        with log_context(environment_id=env.id, table_id=table.id):
            logger.info("Sampling table")
    """
    updates = {
        "correlation_id": correlation_id,
        "environment_id": environment_id,
        "table_id": table_id,
    }
    saved = {name: getattr(_state, name, None) for name in CONTEXT_FIELDS}
    for name, value in updates.items():
        if value:
            setattr(_state, name, value)
    try:
        yield
    finally:
        for name, value in saved.items():
            if value:
                setattr(_state, name, value)
            elif hasattr(_state, name):
                delattr(_state, name)


@contextmanager
def log_operation(
    logger: PipelineLogger,
    operation: str,
    **fields: Any
) -> Generator[Dict[str, Any], None, None]:
    """
    Log the start and outcome of an operation with its duration

    The yielded dict is logged with the outcome; set "status" on it to
    report something other than "success".

    Usage:
        with log_operation(logger, "relationship_inference", tables=4) as op:
            op["created"] = len(created)
    """
    started = time.perf_counter()
    details: Dict[str, Any] = {"operation": operation, **fields}
    logger.debug(f"{operation} started", extra={"extra_fields": dict(details)})

    try:
        yield details
    except Exception as e:
        details.update(
            status="error",
            error=str(e),
            error_type=type(e).__name__,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        logger.error(f"{operation} failed", extra={"extra_fields": details}, exc_info=True)
        raise

    details.setdefault("status", "success")
    details["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
    logger.info(f"{operation} finished", extra={"extra_fields": details})

from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict, Iterable, TextIO

from loguru import logger
from opentelemetry import trace

# Keys an operator needs to reconcile a payment by hand; emitted top level.
RECONCILIATION_KEYS = (
    "buyer_id",
    "payment_reference",
    "order_id",
    "order_number",
    "product_id",
    "enroll_key",
    "event_id",
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "stripe", "sqlalchemy.engine", "aiosqlite")

_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def mask_email(value: str) -> str:
    """Keep the first character and the domain: ``learner@example.com`` -> ``l***@example.com``."""
    local, sep, domain = value.partition("@")
    if not sep or not local:
        return "***"
    return f"{local[0]}***@{domain}"


def _shape_context(extra: Dict[str, Any]) -> tuple[Dict[str, Any], Dict[str, Any]]:
    promoted: Dict[str, Any] = {}
    context: Dict[str, Any] = {}
    for key, value in extra.items():
        if isinstance(value, str) and key.endswith("email"):
            value = mask_email(value)
        if key in RECONCILIATION_KEYS:
            promoted[key] = value
        else:
            context[key] = value
    return promoted, context


class InterceptHandler(logging.Handler):
    """Send stdlib records from uvicorn, SQLAlchemy and httpx through Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        try:
            message = record.getMessage()
        except (TypeError, ValueError):  # pragma: no cover - malformed format strings
            message = str(record.msg)
        logger.bind(**extra).opt(depth=6, exception=record.exc_info).log(
            level, message.replace("{", "{{").replace("}", "}}")
        )


class JsonLineSink:
    """Loguru sink writing one JSON object per record."""

    def __init__(self, *, service_name: str, environment: str, version: str, stream: TextIO | None = None) -> None:
        self._static = {"service": service_name, "environment": environment, "version": version}
        self._stream = stream

    def __call__(self, message: "logger.Message") -> None:
        record = message.record
        promoted, context = _shape_context(record["extra"])

        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **self._static,
            **promoted,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)
        if context:
            payload["context"] = context

        stream = self._stream or sys.stdout
        stream.write(json.dumps(payload, default=str) + "\n")


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    stream: TextIO | None = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Replace Loguru's handlers with the JSON sink and bridge stdlib logging into it."""

    logger.remove()
    logger.add(
        JsonLineSink(service_name=service_name, environment=environment, version=version, stream=stream),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

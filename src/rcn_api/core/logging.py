"""Structured JSON logging through Loguru with OpenTelemetry correlation."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, TextIO

from loguru import logger
from opentelemetry import trace

# Attributes every stdlib LogRecord carries; anything else arrived via ``extra=``.
_STDLIB_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_QUIET_LOGGERS: Dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, SQLAlchemy, Alembic) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_FIELDS}
        logger.bind(logger_name=record.name, **extra).opt(depth=6, exception=record.exc_info).log(
            level, "{}", message
        )


def _add_trace_context(record: Dict[str, Any]) -> None:
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        record["extra"]["trace_id"] = f"{span_context.trace_id:032x}"
        record["extra"]["span_id"] = f"{span_context.span_id:016x}"


class JsonLineSink:
    """Render each Loguru record as one JSON object per line."""

    def __init__(
        self,
        *,
        service_name: str,
        environment: str,
        version: str,
        stream: TextIO | None = None,
    ) -> None:
        self._service = {"service": service_name, "environment": environment, "version": version}
        self._stream = stream

    def __call__(self, message: "logger.Message") -> None:
        record = message.record
        extra = dict(record["extra"])
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": extra.pop("logger_name", record["name"]),
            **self._service,
        }
        payload.update(extra)
        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)

        stream = self._stream or sys.stdout
        stream.write(json.dumps(payload, default=str) + "\n")
        stream.flush()


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Send Loguru and stdlib logging to a single JSON sink."""

    sink = JsonLineSink(service_name=service_name, environment=environment, version=version)
    logger.configure(
        handlers=[{"sink": sink, "level": level.upper(), "backtrace": False, "diagnose": False}],
        patcher=_add_trace_context,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

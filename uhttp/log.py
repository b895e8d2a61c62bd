"""Structured logging for uhttp.

structlog with ISO timestamps, log level and a ``caller`` field on error
entries. Response and request bodies are logged as raw JSON: wrap the bytes in
``RawJSON`` and the JSON renderer splices them into the output line verbatim
instead of encoding them as a string.

Defaults come from LOG_LEVEL and LOG_FORMAT (``json`` or ``console``).
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from typing import Any, TextIO

import structlog
from structlog.processors import CallsiteParameter

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

_ERROR_METHODS = frozenset({"error", "exception", "critical"})


class RawJSON(bytes):
    """Bytes that already hold a JSON document."""

    def __repr__(self) -> str:
        return self.decode("utf-8", errors="replace")


class _NamedPrintLogger(structlog.PrintLogger):
    """PrintLogger that remembers the name it was requested under."""

    def __init__(self, file: TextIO | None = None, name: str | None = None) -> None:
        super().__init__(file)
        self.name = name


class _NamedPrintLoggerFactory:
    def __init__(self, file: TextIO | None = None) -> None:
        self._file = file

    def __call__(self, *args: Any) -> _NamedPrintLogger:
        return _NamedPrintLogger(self._file, args[0] if args else None)


def _add_logger_name(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    name = getattr(logger, "name", None)
    if name:
        event_dict.setdefault("logger", name)
    return event_dict


def _add_caller(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Collapse callsite parameters into ``caller`` for error entries only."""
    filename = event_dict.pop("filename", None)
    lineno = event_dict.pop("lineno", None)
    if method_name in _ERROR_METHODS and filename is not None:
        event_dict.setdefault("caller", f"{filename}:{lineno}")
    return event_dict


def dumps_with_raw_json(event_dict: dict[str, Any], **dumps_kw: Any) -> str:
    """json.dumps that writes top-level RawJSON values without re-encoding."""
    raw: dict[str, str] = {}
    prepared: dict[str, Any] = {}
    for key, value in event_dict.items():
        if isinstance(value, RawJSON):
            token = f"__raw_json_{uuid.uuid4().hex}__"
            text = value.decode("utf-8", errors="replace").strip()
            raw[json.dumps(token)] = text or "null"
            prepared[key] = token
        else:
            prepared[key] = value

    rendered = json.dumps(prepared, **dumps_kw)
    for quoted_token, text in raw.items():
        rendered = rendered.replace(quoted_token, text, 1)
    return rendered


def configure_logging(
    level: str = LOG_LEVEL,
    fmt: str = LOG_FORMAT,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog: level filter, timestamp, caller, JSON or console output."""
    level_value = getattr(logging, level.upper(), logging.INFO)
    out = stream or sys.stdout
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.CallsiteParameterAdder(
            {CallsiteParameter.FILENAME, CallsiteParameter.LINENO}
        ),
        _add_caller,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=out.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer(serializer=dumps_with_raw_json))

    # No logger caching: reconfiguration must reach loggers handed out earlier.
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=_NamedPrintLoggerFactory(file=out),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> Any:
    """Return a structured logger for ``name``.

    The logger stays lazy: every call picks up the configuration current at
    that moment, and entries carry ``logger=name``.

        logger = get_logger(__name__)
        logger.debug("resp_body", op="get", body=RawJSON(content))
    """
    return structlog.get_logger(name)

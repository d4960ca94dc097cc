"""Construction of the process logger writing key-value lines to stderr."""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import datetime, timezone

LOG_FORMAT_LOGFMT = "logfmt"
LOG_FORMAT_JSON = "json"

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


def _logfmt_value(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if not text or any(c in ' ="\\' or not c.isprintable() for c in text):
        return json.dumps(text, ensure_ascii=False)
    return text


class _KeyValueFormatter(logging.Formatter):
    def __init__(self, debug_name: str, as_json: bool) -> None:
        super().__init__()
        self._debug_name = debug_name
        self._as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, object] = {}
        if self._debug_name:
            fields["name"] = self._debug_name
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        fields["ts"] = stamp.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        fields["caller"] = f"{os.path.basename(record.pathname)}:{record.lineno}"
        fields["level"] = _level_name(record.levelno)
        fields["msg"] = record.getMessage()
        extra = getattr(record, "fields", None)
        if isinstance(extra, Mapping):
            fields.update((str(k), v) for k, v in extra.items())
        if record.exc_info:
            fields["err"] = self.formatException(record.exc_info)
        if self._as_json:
            return json.dumps(fields, default=str)
        return " ".join(f"{key}={_logfmt_value(value)}" for key, value in fields.items())


def new_logger(log_level: str, log_format: str, debug_name: str) -> logging.Logger:
    """Return a logger printing to stderr at the given level in logfmt or JSON.

    Every line carries a UTC timestamp and the caller, and the debug name when
    one is given. Extra key-values go in ``extra={"fields": {...}}``.
    Raises ValueError for a level other than error, warn, info or debug.
    """
    level = _LEVELS.get(log_level)
    if level is None:
        raise ValueError("unexpected log level")

    logger = logging.Logger(debug_name or "profmeta", level)
    logger.propagate = False
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_KeyValueFormatter(debug_name, log_format == LOG_FORMAT_JSON))
    logger.addHandler(handler)
    return logger
"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Operator log lines
published on the event bus carry `source` (the execution context that emitted
them) and `severity` (info/success/warning/error); both are lifted to
top-level keys so a run can be followed with a plain `jq 'select(.source)'`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Every attribute a bare LogRecord carries; anything else came from `extra=`.
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_TOP_LEVEL_FIELDS = ("source", "severity", "context")

_QUIET_LOGGERS = ("playwright", "urllib3", "asyncio", "uvicorn.access")


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Bus fields (`source`, `severity`, `context`) sit beside `level`; any other
    `extra=` fields are nested under "extra".
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key in _TOP_LEVEL_FIELDS:
            if key in extra:
                payload[key] = extra.pop(key)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Send everything to stdout as JSON lines at `level`.

    Playwright, urllib3, asyncio and uvicorn's access log stay at INFO or above
    even when `level` is DEBUG; page polling makes them very chatty.
    """

    root = logging.getLogger()

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))

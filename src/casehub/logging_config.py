"""Logging setup.

Plain text by default; ``LOG_JSON=true`` emits one JSON object per line for
log aggregators. The ``audit`` logger receives one JSON payload per audit
event regardless of the formatter in use.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from src.casehub.config import settings


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json_output is None else json_output

    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    # Replace handlers installed by a previous call (e.g. app reloads).
    for existing in list(root.handlers):
        if getattr(existing, "_casehub", False):
            root.removeHandler(existing)
    handler._casehub = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

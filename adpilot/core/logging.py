"""ADPILOT - Structured JSON Logging.

One JSON object per line on stdout. Structured fields travel through
``extra=`` or a ``bind()``-ed adapter and are emitted only when set.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Tuple

from adpilot.config import settings

EXTRA_FIELDS = (
    "endpoint",
    "api_key_id",
    "campaign_id",
    "step",
    "duration_ms",
    "status_code",
)


class JSONFormatter(logging.Formatter):
    """Produces structured JSON log lines for production observability."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        return json.dumps(log_entry, default=str)


class BoundLogger(logging.LoggerAdapter):
    """Adapter that stamps fixed fields on every record; per-call extras win."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> logging.Logger:
    """Return a named logger with structured JSON handler."""
    logger = logging.getLogger(f"adpilot.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


def bind(logger: logging.Logger, **fields: Any) -> BoundLogger:
    """e.g. ``bind(logger, campaign_id=draft.id).info("step done", extra={"step": "ad"})``"""
    return BoundLogger(logger, fields)

from __future__ import annotations

"""
JSON-lines logging for the watcher process.

The service logs from three threads (worker, refresh timer, reconcile timer)
plus the tile fetch pool, so every line carries the emitting thread name:

    {"ts": "2025-08-01T12:00:00.000Z", "lvl": "WARNING", "name": "watcher.compare",
     "thread": "watch-worker", "msg": "Tile missing", "extra": {"tile": [5, 6]}}

Structured fields go through `extra={"extra": {...}}` on the logging call.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_CONFIGURED_FLAG = "_canvas_watch_configured"

# one line per HTTP request otherwise
NOISY_LOGGERS = ("urllib3", "requests")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "lvl": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # datetimes and identities in `extra` fall back to str()
        return json.dumps(payload, ensure_ascii=False, default=str)


def resolve_level(level: Optional[str]) -> int:
    """`level`, else $LOG_LEVEL, else INFO. Unknown names mean INFO."""
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Install the JSON handler on the root logger.

    Module-level get_logger() calls configure INFO at import time, before the
    YAML config is read; main() calls again with force=True to apply
    `logging.level` from the config.
    """
    root = logging.getLogger()
    if getattr(root, _CONFIGURED_FLAG, False) and not force:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolve_level(level))
    setattr(root, _CONFIGURED_FLAG, True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)

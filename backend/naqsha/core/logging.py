"""JSON line logging for the service.

Every record is written to stdout as one JSON object:
``{"t": 1718000000000, "lvl": "INFO", "name": "naqsha.services.shift",
"msg": "...", "extra": {...}}``. Structured context is attached with
``logger.info("...", extra={"extra": {...}})``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once with JSON formatting.

    Level precedence: explicit ``level`` argument, then the ``LOG_LEVEL``
    environment variable, then INFO. Unknown level names fall back to INFO.
    Repeated calls are no-ops.
    """
    root = logging.getLogger()
    if getattr(root, "_naqsha_configured", False):
        return

    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(level_name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved)
    root._naqsha_configured = True  # type: ignore[attr-defined]

from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Optional

ENV_LEVEL = "LINELOC_LOG_LEVEL"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record:
      {"t": 1700000000000, "lvl": "INFO", "name": "lineloc.api.localizer", "msg": "text"}
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the `lineloc` logger once, writing JSON lines to stderr so that
    command output on stdout stays machine readable.

    Level precedence: `level` argument, then $LINELOC_LOG_LEVEL, then WARNING.
    """
    logger = logging.getLogger("lineloc")
    if getattr(logger, "_lineloc_configured", False):
        if level is not None:
            logger.setLevel(_level(level))
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(_level(level or os.environ.get(ENV_LEVEL) or "WARNING"))
    logger.propagate = False
    logger._lineloc_configured = True  # type: ignore[attr-defined]


def _level(name: str) -> int:
    lvl = logging.getLevelName(name.upper())
    return lvl if isinstance(lvl, int) else logging.WARNING

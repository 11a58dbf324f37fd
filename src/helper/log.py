# helper/log.py
from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, Optional, TextIO

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Install a single stream handler on the root logger.

    Engine modules only ever call logging.getLogger(__name__); this is the
    one place that decides where records go. Calling it again replaces the
    handler it installed before.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    handler.set_name("dispute")

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "dispute":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
    return handler

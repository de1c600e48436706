"""Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)``; this module only installs
the root handler once at startup. Two output formats are supported:

- ``text``: a single human-readable line per record
- ``json``: one JSON object per record (CloudWatch / ELK friendly)

Uvicorn's own loggers are routed into the same handler so access and error
lines share one format.
"""

from __future__ import annotations

import datetime
import json
import logging
import socket
import sys

_HOSTNAME = socket.gethostname()

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, hostname: str | None = None):
        super().__init__()
        self.hostname = hostname or _HOSTNAME

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "module": record.module,
            "hostname": self.hostname,
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Handler:
    """Install a single stdout handler on the root logger and return it.

    Calling this again replaces the previously installed handler.
    """
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _UVICORN_LOGGERS:
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = True

    # httpx logs every request URL at INFO, and the stats URL may carry the token
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return handler

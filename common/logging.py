from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# Extra attributes copied into JSON lines when present on the record.
_EXTRA_KEYS = ("service", "signature", "reason", "tx_id", "protocol", "network")


class JsonFormatter(logging.Formatter):
    """A minimal JSON formatter for structured logs."""

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__()
        self._service = service_name

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._service:
            payload["service"] = self._service

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging(fmt: str | None = None, *, service_name: str | None = None) -> None:
    """Configure root logger with plain text or JSON output.

    Args:
        fmt: 'json' or 'text'. Defaults to LOG_FORMAT env or 'text'.
        service_name: optional service label injected into every JSON line.
    """

    fmt = (fmt or os.getenv("LOG_FORMAT", "text")).lower()
    root = logging.getLogger()
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    # Clear default handlers (uvicorn/gunicorn install their own).
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter(service_name))
    else:
        prefix = f"{service_name} " if service_name else ""
        handler.setFormatter(
            logging.Formatter(
                f"[%(asctime)s] %(levelname)s {prefix}%(name)s: %(message)s"
            )
        )
    root.addHandler(handler)

    # httpx logs every request at INFO; RPC polling would flood the output.
    logging.getLogger("httpx").setLevel(logging.WARNING)

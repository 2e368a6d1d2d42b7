# smart_intake/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .middleware.request_id import get_pipeline_session_id, get_request_id

# keys lifted from `extra=` onto the JSON line when present
# (never a LogRecord attribute such as `filename`: makeRecord rejects those)
RECORD_EXTRAS = ("session_id", "phase", "upload_filename", "tool_name", "deal_id")

# logger name -> env var holding its level (default WARNING)
_NOISY_LOGGERS = {
    "sqlalchemy.engine": "SQL_LOG_LEVEL",
    "httpx": "HTTPX_LOG_LEVEL",
    "pdfminer": "PDF_LOG_LEVEL",
}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, request_id, plus any
    pipeline extras. session_id falls back to the id bound by the request
    middleware so route-level logs are attributable too.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        for k in RECORD_EXTRAS:
            v = getattr(record, k, None)
            if v is not None:
                payload[k] = v

        if "session_id" not in payload:
            sid = get_pipeline_session_id()
            if sid:
                payload["session_id"] = sid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn --reload re-imports; drop handlers from the previous run
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    for name, env in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel((os.getenv(env) or "WARNING").upper())

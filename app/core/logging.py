"""
Logging configuration.

Two formats:
- text: human-readable, the default for local runs
- json: one JSON object per line, for log shippers

Set LOG_FORMAT=json in production.
"""

import json
import logging
import sys
from typing import Any, Dict

from app.core.config import LOG_FORMAT, LOG_LEVEL

# attributes passed through `extra=` that end up in the JSON record
EXTRA_FIELDS = ("scan_job_id", "task_id", "attempt", "account_id")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "line": record.lineno,
        }

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def setup_logging(log_format: str | None = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Safe to call more than once (API startup and the Celery worker both call it).
    """
    root_logger = logging.getLogger()

    # Avoid adding multiple handlers
    if any(getattr(h, "_facescan", False) for h in root_logger.handlers):
        return

    root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler._facescan = True  # type: ignore[attr-defined]

    if (log_format or LOG_FORMAT) == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)

    # Set lower level for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

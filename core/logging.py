"""
Logging configuration

Pipeline components attach structured failure details with
``extra={"error_context": exc.to_dict()}``; the formatter appends the
provider, region and job fields from that context to the log line.
"""

import logging
import sys
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Context keys worth showing on a single log line
CONTEXT_KEYS = ("provider", "source", "region", "job_id", "status_code", "retry_count")


class ErrorContextFormatter(logging.Formatter):
    """Append selected ``error_context`` fields to the message"""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        error_context = getattr(record, "error_context", None)
        if not isinstance(error_context, dict):
            return message

        context = error_context.get("context") or {}
        fields = [f"{key}={context[key]}" for key in CONTEXT_KEYS if context.get(key) is not None]
        error_type = error_context.get("error_type")
        if error_type:
            fields.insert(0, f"error_type={error_type}")
        if fields:
            message += " | " + ", ".join(fields)
        return message


def setup_logging():
    """Configure application logging"""

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ErrorContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logging.basicConfig(level=log_level, handlers=[handler])

    # Statement logging is controlled by DATABASE_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    # Provider calls are logged by the adapters themselves
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {settings.LOG_LEVEL} level")

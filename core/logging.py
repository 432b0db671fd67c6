"""
Logging configuration

Stage components log with `extra={"error_context": {...}}`; the formatter
appends that context to the line so batch and staging ids reach the output.
"""

import logging
import sys
from typing import Optional
from core.config import settings


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class ContextFormatter(logging.Formatter):
    """Formatter that renders the error_context extra after the message"""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "error_context", None)
        if context:
            pairs = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} | {pairs}"
        return line


def setup_logging(level: Optional[str] = None):
    """Configure root logging for the ETL worker and scheduler"""
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Engine and job-store chatter
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {level_name} level")

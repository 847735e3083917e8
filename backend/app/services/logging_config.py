"""Structured logging configuration for the compliance analysis worker."""
import logging
import json
import os
import sys
from datetime import datetime, timezone

# Extra fields copied onto the JSON entry when a log call supplies them
_CONTEXT_FIELDS = ("analysis_id", "stage", "duration_ms")


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = None, json_output: bool = None):
    """Configure application logging. Defaults come from LOG_LEVEL / LOG_FORMAT."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "json").lower() != "text"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    # Suppress noisy loggers
    for name in ["LiteLLM", "litellm", "httpx", "httpcore", "botocore", "urllib3"]:
        logging.getLogger(name).setLevel(logging.WARNING)

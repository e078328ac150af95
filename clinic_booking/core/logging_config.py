"""
Logging configuration for the booking service.

Domain and infrastructure modules log through ``logging.getLogger(__name__)``;
this module installs the root handler once at app or worker startup.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Union


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shipping"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def configure_logging(level: Union[int, str] = "INFO", use_json_format: bool = False) -> None:
    """Replace root handlers with a single stdout handler"""
    if isinstance(level, int):
        resolved = level
    else:
        resolved = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    if use_json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    root_logger.addHandler(handler)

    # SQL echo is controlled by DATABASE_ECHO, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from flask import g, has_request_context

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_FILE_NAME = "accio.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB max log file size
LOG_FILE_BACKUP_COUNT = 3

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def log_level_from_env(default: str = "INFO") -> int:
    name = os.environ.get("LOG_LEVEL", default).upper()
    return getattr(logging, name, logging.INFO)


def sanitize_log_value(value: Any) -> Any:
    """Remove control characters from log values to prevent log injection."""

    if isinstance(value, str):
        escaped = value.replace("\n", "\\n").replace("\r", "\\r")
        return _CONTROL_CHAR_PATTERN.sub(
            lambda match: f"\\x{ord(match.group()):02x}", escaped
        )
    return value


def configure_logging(level: Optional[int] = None, log_dir: Optional[Path] = None) -> Optional[Path]:
    """Configure root logging and, with *log_dir*, a rotating file handler.

    Returns the log file path when file logging is active.
    """

    numeric_level = level if level is not None else log_level_from_env()
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger("accio").setLevel(numeric_level)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME
    root_logger = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", "") == str(log_path):
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)
            return log_path

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    return log_path


class RequestContextAdapter(logging.LoggerAdapter):
    """Prefix messages logged inside a request with ``request_id=<id>``."""

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        request_id = getattr(g, "request_id", None) if has_request_context() else None
        if request_id:
            msg = f"request_id={request_id} {msg}"
        return msg, kwargs


lifecycle_logger = RequestContextAdapter(logging.getLogger("accio.lifecycle"))
security_logger = RequestContextAdapter(logging.getLogger("accio.security"))

"""
Logging setup for the dept-records command-line tool.

Library modules only create ``logging.getLogger(__name__)`` loggers; the CLI
attaches handlers once through ``setup_logger``. Every handler carries a
``RedactingFilter`` because Gemini request URLs hold the API key.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Union

from dept_records.utils.security import sanitize_error

# httpx logs each request URL (with ?key=) at INFO
HTTP_LIBRARY_LOGGERS = ("httpx", "httpcore")


class RedactingFilter(logging.Filter):
    """Mask API keys in the rendered message of each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = sanitize_error(message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def setup_logger(
    name: str,
    log_level: str = "INFO",
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    log_file: Optional[Union[str, Path]] = None,
    overwrite: bool = False,
    quiet_loggers: Iterable[str] = HTTP_LIBRARY_LOGGERS,
) -> logging.Logger:
    """
    Configure the package logger with a stderr handler and an optional file.

    stdout is reserved for command output (persisted blobs, parsed JSON).

    Args:
        name: Logger name, normally "dept_records"
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: Format string for both handlers
        log_file: Optional log file, parent directories are created
        overwrite: Truncate ``log_file`` instead of appending
        quiet_loggers: Third-party loggers raised to WARNING

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers.clear()

    formatter = logging.Formatter(log_format)
    redactor = RedactingFilter()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode='w' if overwrite else 'a', encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        logger.addHandler(handler)

    for noisy in quiet_loggers:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger

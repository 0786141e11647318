"""
Utility modules for dept_records.

- Logger setup for the command-line tool
- Error sanitization (API keys in request URLs)
"""

from .logger import setup_logger
from .security import mask_api_key, sanitize_error

__all__ = [
    "setup_logger",
    "sanitize_error",
    "mask_api_key",
]

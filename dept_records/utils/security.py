"""
Security utilities for dept_records.

The Gemini REST API takes its key as a ``?key=`` query parameter, so the
request URL (and with it the key) ends up in httpx error messages. Pass
errors through ``sanitize_error`` before logging or returning them to a
caller.
"""

import re
from typing import Union

# Google API keys: "AIza" + 35 URL-safe characters
_GOOGLE_API_KEY = re.compile(r'AIza[0-9A-Za-z_-]{35}')
# Query/assignment forms: key=..., api_key=..., apikey: ...
_KEY_PARAM = re.compile(r'\b(api[_-]?key|key)([=:]\s*)[^\s&\'"]+', re.IGNORECASE)
_BEARER = re.compile(r'Bearer\s+[a-zA-Z0-9_.-]{20,}', re.IGNORECASE)


def sanitize_error(error: Union[str, Exception]) -> str:
    """
    Remove API keys and tokens from an error message.

    Examples:
        >>> sanitize_error("Client error for url 'https://x/models/m:generateContent?key=abc123'")
        "Client error for url 'https://x/models/m:generateContent?key=***'"
    """
    message = str(error)
    message = _GOOGLE_API_KEY.sub('AIza***', message)
    message = _KEY_PARAM.sub(r'\1\2***', message)
    message = _BEARER.sub('Bearer ***', message)
    return message


def mask_api_key(key: str) -> str:
    """
    Mask API key for display or logging.

    Examples:
        >>> mask_api_key("AIzaSyExample")
        'AIza***'
        >>> mask_api_key("")
        '***'
    """
    if not key:
        return "***"
    if key.startswith("AIza"):
        return "AIza***"
    return "***"

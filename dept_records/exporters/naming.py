"""File naming shared by the Excel and PDF exporters."""

import re

DEFAULT_MAX_NAME_LENGTH = 50

_EXTENSION = re.compile(r'\.[^.]+$')
_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9\s\-_]')


def clean_export_stem(file_name: str, max_length: int = DEFAULT_MAX_NAME_LENGTH) -> str:
    """
    Sanitised stem for an export file name.

    Drops the extension, keeps letters, digits, whitespace, ``-`` and ``_``,
    and truncates to ``max_length``. Falls back to ``"document"`` when
    nothing survives.

    Examples:
        >>> clean_export_stem("ICU Stock Register (Feb).pdf")
        'ICU Stock Register Feb'
    """
    stem = _UNSAFE_CHARS.sub('', _EXTENSION.sub('', file_name or ''))[:max_length]
    return stem or "document"

"""
Heuristic repair of JSON truncated by a model's output-token limit.

Gemini answers are cut off mid-token when ``finishReason`` is
``MAX_TOKENS``. The repair trims dangling partial tokens at the end of the
text, closes an open string and appends the missing closing brackets.

Two passes:
1. Trim a trailing partial string/array element and a trailing comma,
   close the open string, then close brackets in ``close_order``.
2. On failure, additionally trim a trailing partial object element,
   complete a dangling ``"key":`` with ``null`` and close brackets in true
   nesting order.

Only truncation at the end of the document is handled. Damage inside
non-trailing structures is out of reach and the repair reports failure.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Tuple

from dept_records.exceptions import JSONRepairError

logger = logging.getLogger(__name__)

# Bracket reclose orders for the first pass
ARRAYS_FIRST = "arrays_first"
OBJECTS_FIRST = "objects_first"
DEFAULT_CLOSE_ORDER = ARRAYS_FIRST

_TRAILING_PARTIAL_STRING = re.compile(r',\s*"[^"]*$')
_TRAILING_PARTIAL_ARRAY = re.compile(r',\s*\[[^\]]*$')
_TRAILING_PARTIAL_OBJECT = re.compile(r',\s*\{[^}]*$')
_TRAILING_COMMA = re.compile(r',\s*$')
_DANGLING_COLON = re.compile(r':\s*$')
_DANGLING_KEY = re.compile(r'[{,]\s*"(?:[^"\\]|\\.)*"\s*$')


@dataclass
class _BracketScan:
    """Result of scanning JSON text outside string literals."""

    in_string: bool = False
    open_braces: int = 0
    open_brackets: int = 0
    # Expected closers, innermost last
    stack: List[str] = field(default_factory=list)


def _scan_brackets(text: str) -> _BracketScan:
    """Count net open braces/brackets, honouring escapes inside strings."""
    scan = _BracketScan()
    escape_next = False

    for char in text:
        if escape_next:
            escape_next = False
            continue
        if char == '\\' and scan.in_string:
            escape_next = True
            continue
        if char == '"':
            scan.in_string = not scan.in_string
            continue
        if scan.in_string:
            continue

        if char == '{':
            scan.open_braces += 1
            scan.stack.append('}')
        elif char == '}':
            scan.open_braces -= 1
            if scan.stack and scan.stack[-1] == '}':
                scan.stack.pop()
        elif char == '[':
            scan.open_brackets += 1
            scan.stack.append(']')
        elif char == ']':
            scan.open_brackets -= 1
            if scan.stack and scan.stack[-1] == ']':
                scan.stack.pop()

    return scan


def _closers(scan: _BracketScan, close_order: str) -> str:
    brackets = ']' * max(0, scan.open_brackets)
    braces = '}' * max(0, scan.open_braces)
    if close_order == OBJECTS_FIRST:
        return braces + brackets
    if close_order == ARRAYS_FIRST:
        return brackets + braces
    raise ValueError(f"close_order must be '{ARRAYS_FIRST}' or '{OBJECTS_FIRST}', got {close_order!r}")


def _trim_trailing_fragments(text: str) -> str:
    fixed = text.strip()
    fixed = _TRAILING_PARTIAL_STRING.sub('', fixed, count=1)
    fixed = _TRAILING_PARTIAL_ARRAY.sub('', fixed, count=1)
    fixed = _TRAILING_COMMA.sub('', fixed, count=1)
    return fixed


def _first_pass(trimmed: str, close_order: str) -> str:
    scan = _scan_brackets(trimmed)
    repaired = trimmed
    if scan.in_string:
        repaired += '"'
    return repaired + _closers(scan, close_order)


def _second_pass(trimmed: str) -> str:
    fixed = _TRAILING_PARTIAL_OBJECT.sub('', trimmed, count=1)
    fixed = _TRAILING_PARTIAL_ARRAY.sub('', fixed, count=1)
    fixed = _TRAILING_COMMA.sub('', fixed, count=1)

    scan = _scan_brackets(fixed)
    if scan.in_string:
        fixed += '"'

    if _DANGLING_COLON.search(fixed):
        fixed += ' null'
    elif scan.stack and scan.stack[-1] == '}' and _DANGLING_KEY.search(fixed):
        fixed += ': null'

    return fixed + ''.join(reversed(scan.stack))


def repair_truncated_json(json_str: str, close_order: str = DEFAULT_CLOSE_ORDER) -> Any:
    """
    Best-effort reconstruction of a JSON value from truncated text.

    Already-valid JSON is returned unchanged (fast path), so the repair is
    idempotent on well-formed input.

    Args:
        json_str: Text presumed to be JSON cut off at the end
        close_order: Bracket reclose order for the first pass
            (``"arrays_first"`` or ``"objects_first"``)

    Returns:
        Parsed JSON value (object, array or primitive)

    Raises:
        JSONRepairError: If neither repair pass yields valid JSON
    """
    # Fast path
    try:
        return json.loads(json_str)
    except (ValueError, TypeError, RecursionError):
        pass

    if not isinstance(json_str, str):
        raise JSONRepairError(
            f"Cannot repair non-string input of type {type(json_str).__name__}"
        )

    trimmed = _trim_trailing_fragments(json_str)

    candidate = _first_pass(trimmed, close_order)
    try:
        result = json.loads(candidate)
        logger.debug("JSON repair: bracket closing succeeded")
        return result
    except (ValueError, RecursionError) as e:
        logger.debug(f"JSON repair first pass failed: {e}")

    candidate = _second_pass(trimmed)
    try:
        result = json.loads(candidate)
        logger.debug("JSON repair: aggressive cleanup succeeded")
        return result
    except (ValueError, RecursionError) as e:
        snippet = json_str[-80:]
        raise JSONRepairError(
            f"JSON repair failed after both passes: {e}",
            details={"length": len(json_str), "tail": snippet},
            cause=e,
        ) from e


def try_repair_json(json_str: str, close_order: str = DEFAULT_CLOSE_ORDER) -> Tuple[bool, Any]:
    """
    Non-raising variant of ``repair_truncated_json``.

    Returns:
        ``(True, value)`` on success, ``(False, None)`` on failure. JSON
        ``null`` is a legitimate repaired value, hence the explicit flag.
    """
    try:
        return True, repair_truncated_json(json_str, close_order=close_order)
    except JSONRepairError as e:
        logger.debug(f"{e}")
        return False, None

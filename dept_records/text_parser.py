"""
Structured extraction parser.

Turns the persisted ``extracted_text`` blob into a StructuredExtraction.
The blob is ideally canonical JSON, but may be wrapped in a code fence,
truncated by the model's token limit, or a legacy markdown/plain-text
answer stored by earlier versions of the system.

Resolution order:
1. Strip a wrapping code fence.
2. Parse JSON directly; decode into the canonical schema.
3. On a parse error, repair the truncated JSON and decode again.
4. Otherwise fall back to the line-oriented markdown parser, which always
   succeeds (at worst everything lands in ``raw_text``).

``parse_extracted_text`` never raises.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from dept_records.extraction_models import (
    DocumentSection,
    ExtractedTable,
    KeyValuePair,
    ParseDiagnostics,
    StructuredExtraction,
)
from dept_records.table_normalizer import normalize_table
from dept_records.truncated_json import try_repair_json

logger = logging.getLogger(__name__)

# Keys whose presence marks a JSON object as a structured extraction
RECOGNIZED_KEYS = ("keyValuePairs", "sections", "tables", "title")

_FENCED_BLOCK = re.compile(r'^```(?:json|[\w+-]+(?=\s))?\s*\n?([\s\S]*?)\n?\s*```$')
_OPEN_FENCE = re.compile(r'^```(?:json|[\w+-]+(?=\s))?\s*\n?([\s\S]*)')
_EMBEDDED_FENCE = re.compile(r'```(?:json)?\s*\n?([\s\S]*?)\n?\s*```')
_BRACED_SPAN = re.compile(r'(\{[\s\S]*\})')
_OPEN_BRACE_TAIL = re.compile(r'(\{[\s\S]*)')


# =============================================================================
# JSON path
# =============================================================================

def strip_code_fence(text: str) -> Tuple[str, bool]:
    """
    Unwrap a fenced block (optionally language-tagged).

    An opening fence without a closing one (truncated answer) is unwrapped
    too.

    Returns:
        (inner text, whether a fence was stripped)
    """
    clean = text.strip()
    match = _FENCED_BLOCK.match(clean) or _OPEN_FENCE.match(clean)
    if match:
        return match.group(1).strip(), True
    return clean, False


def _present(value: Any) -> bool:
    # Empty lists and dicts count as present; None, "", False and 0 do not
    return value not in (None, "", False)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _optional_text(value: Any) -> Optional[str]:
    return _as_text(value) if _present(value) else None


def decode_structured(
    value: Any, diagnostics: Optional[ParseDiagnostics] = None
) -> Optional[StructuredExtraction]:
    """
    Decode a parsed JSON value into the canonical schema.

    Args:
        value: Result of ``json.loads`` or of the JSON repair
        diagnostics: Optional collector for dropped tables/entries

    Returns:
        StructuredExtraction, or None when ``value`` is not an object carrying
        any of ``keyValuePairs``, ``sections``, ``tables`` or ``title``
    """
    if not isinstance(value, dict):
        return None
    if not any(_present(value.get(key)) for key in RECOGNIZED_KEYS):
        return None

    diagnostics = diagnostics if diagnostics is not None else ParseDiagnostics()

    raw_pairs = value.get("keyValuePairs")
    pairs: List[KeyValuePair] = []
    for item in raw_pairs if isinstance(raw_pairs, list) else []:
        if isinstance(item, dict):
            pairs.append(KeyValuePair(key=_as_text(item.get("key")), value=_as_text(item.get("value"))))
        else:
            diagnostics.dropped_entries += 1

    raw_sections = value.get("sections")
    sections: List[DocumentSection] = []
    for item in raw_sections if isinstance(raw_sections, list) else []:
        if isinstance(item, dict):
            sections.append(
                DocumentSection(heading=_as_text(item.get("heading")), content=_as_text(item.get("content")))
            )
        else:
            diagnostics.dropped_entries += 1

    raw_tables = value.get("tables")
    tables: List[ExtractedTable] = []
    for descriptor in raw_tables if isinstance(raw_tables, list) else []:
        table = normalize_table(descriptor, diagnostics)
        if table is None:
            diagnostics.dropped_tables += 1
            continue
        tables.append(table)

    if diagnostics.dropped_tables:
        logger.info(f"Dropped {diagnostics.dropped_tables} unrecognised table(s)")
    if diagnostics.dropped_rows:
        logger.info(f"Dropped {diagnostics.dropped_rows} malformed table row(s)")

    return StructuredExtraction(
        title=_optional_text(value.get("title")),
        document_type=_optional_text(value.get("documentType")),
        key_value_pairs=pairs,
        sections=sections,
        tables=tables,
    )


def parse_extracted_text(
    text: Optional[str], diagnostics: Optional[ParseDiagnostics] = None
) -> StructuredExtraction:
    """
    Parse a persisted extraction blob into a StructuredExtraction.

    Args:
        text: Raw blob (JSON, fenced JSON, truncated JSON or markdown)
        diagnostics: Optional collector describing which path was taken

    Returns:
        StructuredExtraction (never raises)
    """
    diagnostics = diagnostics if diagnostics is not None else ParseDiagnostics()
    text = text or ""

    clean_text, diagnostics.fence_stripped = strip_code_fence(text)

    try:
        parsed = json.loads(clean_text)
    except (ValueError, RecursionError):
        diagnostics.repair_attempted = True
        ok, repaired = try_repair_json(clean_text)
        diagnostics.repair_succeeded = ok
        if ok:
            result = decode_structured(repaired, diagnostics)
            if result is not None:
                logger.info("Parsed extraction from repaired (truncated) JSON")
                return result
    else:
        diagnostics.json_parsed = True
        result = decode_structured(parsed, diagnostics)
        if result is not None:
            return result

    diagnostics.used_markdown_fallback = True
    return MarkdownFallbackParser().parse(text)


def load_json_candidate(raw_text: str) -> Optional[Any]:
    """
    Locate and load the JSON value inside a model answer.

    Tries, in order: the whole text, a wrapping code fence, a fenced block
    anywhere in the text, the outermost ``{...}`` span, and finally the
    JSON repair of everything from the first ``{`` (truncated answers).

    Returns:
        Parsed value, or None when no JSON could be recovered
    """
    text = (raw_text or "").strip()
    candidates: List[str] = [text]

    inner, stripped = strip_code_fence(text)
    if stripped:
        candidates.append(inner)
    embedded = _EMBEDDED_FENCE.search(text)
    if embedded:
        candidates.append(embedded.group(1).strip())
    braced = _BRACED_SPAN.search(text)
    if braced:
        candidates.append(braced.group(1))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (ValueError, RecursionError):
            continue

    tail = _OPEN_BRACE_TAIL.search(inner if stripped else text)
    if tail:
        ok, repaired = try_repair_json(tail.group(1))
        if ok:
            logger.info("Recovered JSON candidate via truncation repair")
            return repaired
    return None


# =============================================================================
# Markdown fallback
# =============================================================================

# "**1. Document Title and Headers:**", "## Section", "**Section Name**"
_HEADING_PATTERNS = (
    re.compile(r'^\*\*(\d+\.\s*.+?):?\*\*:?\s*$'),
    re.compile(r'^#{1,3}\s+(.+)$'),
    re.compile(r'^\*\*([^*]+)\*\*\s*$'),
)

# "* **Key:** value", "**Key:** value" (colon inside or outside the bold), "Key: value"
_KEY_VALUE_PATTERNS = (
    re.compile(r'^[*\-•]\s+\*\*([^*:]+?)(?::\*\*|\*\*\s*:)\s*(.+)$'),
    re.compile(r'^\*\*([^*:]+?)(?::\*\*|\*\*\s*:)\s*(.+)$'),
    re.compile(r'^([A-Z][A-Za-z\s/.\-#()\d]+?)\s*:\s*(.+)$'),
)

_TABLE_SEPARATOR = re.compile(r'^\|[\s:|-]*-[\s:|-]*$')
_INTRO_LINE = re.compile(r"^(here'?s|here’s|the following|extracted|below)", re.IGNORECASE)
_LEADING_BULLET = re.compile(r'^[*\-•]\s+')


def clean_markers(value: str) -> str:
    """Strip bold markers and a leading bullet."""
    return _LEADING_BULLET.sub('', value.replace('**', '')).strip()


def match_heading(line: str) -> Optional[str]:
    """Return the cleaned heading if ``line`` is a section header."""
    for pattern in _HEADING_PATTERNS:
        match = pattern.match(line)
        if match:
            heading = clean_markers(match.group(1))
            if heading.endswith(':'):
                heading = heading[:-1]
            return heading.strip()
    return None


def match_key_value(line: str) -> Optional[KeyValuePair]:
    """Return a key-value pair for a label line; pipe lines never qualify."""
    if '|' in line:
        return None
    for pattern in _KEY_VALUE_PATTERNS:
        match = pattern.match(line)
        if match:
            value = clean_markers(match.group(2))
            if not value:
                return None
            return KeyValuePair(key=clean_markers(match.group(1)), value=value)
    return None


def is_table_separator(line: str) -> bool:
    return bool(_TABLE_SEPARATOR.match(line))


def split_markdown_row(line: str) -> List[str]:
    """Split a ``| a | b |`` row into trimmed, non-empty cells."""
    return [cell.strip() for cell in line.split('|') if cell.strip()]


class ParserState(str, Enum):
    """States of the markdown fallback scanner."""

    NO_SECTION = "no_section"
    IN_SECTION = "in_section"
    IN_TABLE = "in_table"


class MarkdownFallbackParser:
    """
    Line-oriented heuristic parser for legacy markdown/plain-text answers.

    A small state machine with one line classifier per state:

    - NO_SECTION: unmatched lines go to the remaining pool (intro filler
      such as "Here's the extracted..." is discarded)
    - IN_SECTION: unmatched lines are appended to the open section
    - IN_TABLE: pipe-prefixed lines are data rows; any other line flushes
      the table and is classified again in the enclosing state

    In the text states, header detection runs before key-value detection,
    which runs before table-start detection.
    """

    def __init__(self):
        self._handlers: Dict[ParserState, Callable[[str, str], int]] = {
            ParserState.NO_SECTION: self._classify_no_section,
            ParserState.IN_SECTION: self._classify_in_section,
            ParserState.IN_TABLE: self._classify_in_table,
        }
        self._reset()

    def _reset(self) -> None:
        self._result = StructuredExtraction(raw_text="")
        self._section: Optional[DocumentSection] = None
        self._table_headers: Optional[List[str]] = None
        self._table_rows: List[List[str]] = []
        self._remaining: List[str] = []

    @property
    def state(self) -> ParserState:
        if self._table_headers is not None:
            return ParserState.IN_TABLE
        if self._section is not None:
            return ParserState.IN_SECTION
        return ParserState.NO_SECTION

    def parse(self, text: str) -> StructuredExtraction:
        """Scan ``text`` and return the extraction (never raises)."""
        self._reset()
        lines = [line.strip() for line in (text or "").split('\n')]

        index = 0
        while index < len(lines):
            line = lines[index]
            next_line = lines[index + 1] if index + 1 < len(lines) else ""
            index += 1
            if not line:
                continue
            # Handlers return how many following lines they consumed
            index += self._handlers[self.state](line, next_line)

        self._flush_table()
        self._flush_section()
        if self._remaining:
            self._result.raw_text = '\n'.join(self._remaining)
        return self._result

    # --- state classifiers -------------------------------------------------

    def _classify_in_table(self, line: str, next_line: str) -> int:
        if line.startswith('|'):
            if is_table_separator(next_line):
                self._flush_table()
                self._table_headers = split_markdown_row(line)
                return 1
            self._table_rows.append(split_markdown_row(line))
            return 0

        self._flush_table()
        return self._handlers[self.state](line, next_line)

    def _classify_in_section(self, line: str, next_line: str) -> int:
        consumed = self._classify_structure(line, next_line)
        if consumed is not None:
            return consumed

        content = clean_markers(line)
        if content:
            section = self._section
            section.content = f"{section.content}\n{content}" if section.content else content
        return 0

    def _classify_no_section(self, line: str, next_line: str) -> int:
        consumed = self._classify_structure(line, next_line)
        if consumed is not None:
            return consumed

        if _INTRO_LINE.match(line):
            return 0
        content = clean_markers(line)
        if content:
            self._remaining.append(content)
        return 0

    def _classify_structure(self, line: str, next_line: str) -> Optional[int]:
        """Headers, key-value lines and table starts; None for plain text."""
        heading = match_heading(line)
        if heading is not None:
            self._flush_section()
            self._section = DocumentSection(heading=heading, content="")
            return 0

        pair = match_key_value(line)
        if pair is not None:
            self._result.key_value_pairs.append(pair)
            return 0

        if line.startswith('|') and is_table_separator(next_line):
            self._table_headers = split_markdown_row(line)
            self._table_rows = []
            return 1

        return None

    # --- flushing ------------------------------------------------------------

    def _flush_table(self) -> None:
        if self._table_headers:
            self._result.tables.append(ExtractedTable(headers=self._table_headers, rows=self._table_rows))
        self._table_headers = None
        self._table_rows = []

    def _flush_section(self) -> None:
        if self._section is not None:
            self._result.sections.append(self._section)
        self._section = None

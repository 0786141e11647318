"""
Core data models for structured document extraction.

StructuredExtraction is the canonical record derived from the persisted
``extracted_text`` blob. It is never persisted itself: every display or
export re-parses the blob through ``text_parser.parse_extracted_text``.

The persisted JSON shape uses camelCase keys (``keyValuePairs``,
``documentType``, ``rawText``); ``to_dict``/``from_dict`` convert between
that shape and these dataclasses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class KeyValuePair:
    """Labelled field from a form or register header."""

    key: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "value": self.value}


@dataclass
class DocumentSection:
    """Narrative block with a heading; content is newline-joined text."""

    heading: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"heading": self.heading, "content": self.content}


@dataclass
class ExtractedTable:
    """
    Canonical table.

    Rows are not guaranteed to match the header width. Ragged rows are
    valid state and renderers must index them through ``cell``.
    """

    headers: List[str]
    rows: List[List[str]]
    caption: Optional[str] = None

    @property
    def num_cols(self) -> int:
        """Widest of the header row and all data rows."""
        widths = [len(self.headers)] + [len(row) for row in self.rows]
        return max(widths)

    def cell(self, row_index: int, col_index: int, default: str = "") -> str:
        """Return a cell value, or ``default`` past the end of a short row."""
        row = self.rows[row_index]
        if col_index < len(row):
            value = row[col_index]
            return "" if value is None else str(value)
        return default

    def padded_rows(self, width: Optional[int] = None) -> List[List[str]]:
        """Rows padded with empty strings to ``width`` (default: header width)."""
        width = len(self.headers) if width is None else width
        return [
            [self.cell(r, c) for c in range(max(width, len(row)))]
            for r, row in enumerate(self.rows)
        ]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.caption:
            result["caption"] = self.caption
        result["headers"] = list(self.headers)
        result["rows"] = [list(row) for row in self.rows]
        return result


@dataclass
class StructuredExtraction:
    """
    Canonical output of the extraction parser.

    Attributes:
        title: Document title or heading, if detected
        document_type: Free-text classification tag ("register", "form", ...)
        key_value_pairs: Ordered labelled fields; duplicate keys are kept
        sections: Ordered narrative sections in document order
        tables: Ordered tables; rows may be ragged
        raw_text: Unstructured remainder from the markdown fallback
    """

    title: Optional[str] = None
    document_type: Optional[str] = None
    key_value_pairs: List[KeyValuePair] = field(default_factory=list)
    sections: List[DocumentSection] = field(default_factory=list)
    tables: List[ExtractedTable] = field(default_factory=list)
    raw_text: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        """True when no key-value pair, section or table was recognised."""
        return not (self.key_value_pairs or self.sections or self.tables)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase JSON shape."""
        result: Dict[str, Any] = {}
        if self.title:
            result["title"] = self.title
        if self.document_type:
            result["documentType"] = self.document_type
        result["keyValuePairs"] = [kv.to_dict() for kv in self.key_value_pairs]
        result["sections"] = [s.to_dict() for s in self.sections]
        result["tables"] = [t.to_dict() for t in self.tables]
        if self.raw_text is not None:
            result["rawText"] = self.raw_text
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StructuredExtraction":
        """Inverse of ``to_dict`` for the canonical headers/rows table shape."""
        return cls(
            title=data.get("title") or None,
            document_type=data.get("documentType") or None,
            key_value_pairs=[
                KeyValuePair(key=kv["key"], value=kv["value"])
                for kv in data.get("keyValuePairs", [])
            ],
            sections=[
                DocumentSection(heading=s["heading"], content=s["content"])
                for s in data.get("sections", [])
            ],
            tables=[
                ExtractedTable(
                    headers=list(t["headers"]),
                    rows=[list(row) for row in t["rows"]],
                    caption=t.get("caption") or None,
                )
                for t in data.get("tables", [])
            ],
            raw_text=data.get("rawText"),
        )


@dataclass
class ParseDiagnostics:
    """
    Optional observability channel for the parser.

    Parsing degrades silently; pass an instance to ``parse_extracted_text``
    to learn what happened without changing the result.
    """

    fence_stripped: bool = False
    json_parsed: bool = False
    repair_attempted: bool = False
    repair_succeeded: bool = False
    used_markdown_fallback: bool = False
    dropped_tables: int = 0
    dropped_rows: int = 0
    dropped_entries: int = 0


@dataclass
class ExtractionResult:
    """
    Result wrapper of the extraction service.

    ``text`` is the blob to persist: canonical JSON when the model answered
    with (repairable) JSON, otherwise the model's raw answer.
    """

    success: bool
    text: str
    document_type: Optional[str] = None
    error: Optional[str] = None
    finish_reason: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "MAX_TOKENS"

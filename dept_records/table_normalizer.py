"""
Table normalisation for model-produced table descriptors.

Two descriptor shapes are accepted:

* compact: ``{"caption": ..., "data": "H1|H2\\nv1|v2"}`` - first non-blank
  line is the header row, the rest are data rows. Used by current prompts
  to save output tokens.
* legacy: ``{"caption": ..., "headers": [...], "rows": [[...], ...]}`` -
  already split. Rows that are not lists are dropped and cells are
  coerced to text (``None`` becomes an empty cell).

Column counts are not enforced; ragged rows are kept as they are.
"""

import logging
from typing import Any, List, Optional

from dept_records.extraction_models import ExtractedTable, ParseDiagnostics

logger = logging.getLogger(__name__)


def split_compact_rows(data: str) -> List[List[str]]:
    """Split compact table text into trimmed cells, dropping blank lines."""
    lines = [line for line in data.split("\n") if line.strip()]
    return [[cell.strip() for cell in line.split("|")] for line in lines]


def _caption(descriptor: dict) -> Optional[str]:
    caption = descriptor.get("caption")
    if not caption:
        return None
    return caption if isinstance(caption, str) else str(caption)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize_table(
    descriptor: Any, diagnostics: Optional[ParseDiagnostics] = None
) -> Optional[ExtractedTable]:
    """
    Convert one table descriptor to the canonical table.

    Args:
        descriptor: Table object from the model's JSON answer
        diagnostics: Receives the count of legacy rows that were not lists

    Returns:
        ExtractedTable, or None when the descriptor matches neither shape
        (the caller drops it)
    """
    if not isinstance(descriptor, dict):
        return None

    data = descriptor.get("data")
    if data and isinstance(data, str):
        split = split_compact_rows(data)
        if not split:
            return None
        return ExtractedTable(headers=split[0], rows=split[1:], caption=_caption(descriptor))

    headers = descriptor.get("headers")
    rows = descriptor.get("rows")
    if isinstance(headers, list) and isinstance(rows, list):
        kept = [[_cell_text(cell) for cell in row] for row in rows if isinstance(row, list)]
        dropped = len(rows) - len(kept)
        if dropped:
            logger.debug(f"Dropped {dropped} non-list row(s) from legacy table")
            if diagnostics is not None:
                diagnostics.dropped_rows += dropped
        return ExtractedTable(
            headers=[_cell_text(cell) for cell in headers], rows=kept, caption=_caption(descriptor)
        )

    logger.debug(f"Unrecognised table descriptor with keys {sorted(descriptor.keys())}")
    return None

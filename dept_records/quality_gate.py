"""
Empty-table quality gate.

Vision models often return a register's table skeleton with the right
columns but blank cell values, especially for handwritten stock registers.
The gate measures the share of blank data cells per compact table, and
when a table is too empty sends the source document back to the model
once, quoting the partial result. A re-extracted table replaces the
original only when it is strictly less empty.

The gate works on the raw parsed JSON object (compact ``data`` tables),
before the result is persisted. It never raises: model or parsing failures
are logged and the input is returned unchanged.
"""

import logging
from typing import Any, Dict, List, Optional

from json_repair import repair_json

from dept_records.text_parser import load_json_candidate
from dept_records.utils.security import sanitize_error

logger = logging.getLogger(__name__)

DEFAULT_EMPTY_RATIO_THRESHOLD = 0.4
DEFAULT_REEXTRACT_MAX_OUTPUT_TOKENS = 32768

REEXTRACTION_PROMPT_TEMPLATE = """I previously extracted tables from this document but many cells came back EMPTY. Please re-read the document carefully and extract the COMPLETE table data.

Here is what was partially extracted (many cells are blank that should have values):
{table_descriptions}

TASK: Re-read the document and provide the COMPLETE table data with ALL cells filled in.

Return a JSON object with this structure:
{{
  "tables": [
    {{
      "caption": "Table title",
      "data": "Col1|Col2|Col3\\nVal1|Val2|Val3"
    }}
  ]
}}

RULES:
- Read EVERY cell in EVERY row carefully, especially handwritten text
- NEVER leave cells empty. Use "-" for genuinely blank cells, "[illegible]" for unreadable text
- The ITEM/NAME column in stock registers ALWAYS has a medication or supply name — read it carefully
- Common hospital items: Atropine, Adrenaline, Deriphylline, Aminophylline, Dopamine, Dobutamine, Amiodarone, Lignocaine, Sodium Bicarbonate, Calcium Gluconate, Dexamethasone, Hydrocortisone, Furosemide, Mannitol, Midazolam, Diazepam, etc.
- Every row must have the same number of pipe separators as the header
- Return ONLY the JSON object, no markdown code fences"""


def compute_empty_ratio(data: Any) -> Optional[float]:
    """
    Share of blank data cells in a compact table.

    Each data row counts ``max(row cells, header cells)`` cells; cells
    missing from a short row count as blank.

    Returns:
        Ratio in [0, 1], or None for header-only or non-string data
    """
    if not isinstance(data, str):
        return None

    lines = [line for line in data.split("\n") if line.strip()]
    if len(lines) <= 1:
        return None

    header_cols = len(lines[0].split("|"))
    total_cells = 0
    empty_cells = 0
    for line in lines[1:]:
        cells = line.split("|")
        for col in range(max(len(cells), header_cols)):
            total_cells += 1
            if col >= len(cells) or not cells[col].strip():
                empty_cells += 1

    return empty_cells / total_cells


def _table_data(table: Any) -> Optional[str]:
    if isinstance(table, dict) and table.get("data") and isinstance(table["data"], str):
        return table["data"]
    return None


def find_tables_to_reextract(
    tables: List[Any], threshold: float = DEFAULT_EMPTY_RATIO_THRESHOLD
) -> List[int]:
    """
    Indices of compact tables whose empty ratio is strictly above ``threshold``.

    Tables without a compact ``data`` string and header-only tables are
    never queued.
    """
    queued = []
    for index, table in enumerate(tables):
        ratio = compute_empty_ratio(_table_data(table))
        if ratio is None:
            continue
        logger.info(f"Table {index}: {ratio * 100:.1f}% of cells empty")
        if ratio > threshold:
            queued.append(index)
    return queued


def build_reextraction_prompt(tables: List[Dict[str, Any]], indices: List[int]) -> str:
    """Prompt quoting caption and partial data of each queued table."""
    descriptions = []
    for index in indices:
        table = tables[index]
        caption = table.get("caption") or "N/A"
        descriptions.append(
            f'Table {index + 1} (caption: "{caption}"):\nPartial data extracted:\n{table.get("data")}'
        )
    return REEXTRACTION_PROMPT_TEMPLATE.format(table_descriptions="\n\n".join(descriptions))


def parse_reextraction_response(raw_text: str) -> Optional[List[Any]]:
    """
    Candidate table list from the re-extraction answer.

    Tries the JSON candidate loader (direct parse, fenced unwrap, truncation
    repair) and then the json_repair library as last resort.

    Returns:
        The ``tables`` list, or None when no usable object was found
    """
    value = load_json_candidate(raw_text)
    if not isinstance(value, dict):
        try:
            value = repair_json(raw_text or "", return_objects=True)
            logger.info("Re-extraction answer recovered by json_repair library")
        except Exception as e:
            logger.debug(f"json_repair library failed: {e}")
            return None

    if isinstance(value, dict) and isinstance(value.get("tables"), list):
        return value["tables"]
    return None


def reextract_empty_tables(
    parsed: Any,
    file_bytes: bytes,
    mime_type: str,
    client: Any,
    threshold: float = DEFAULT_EMPTY_RATIO_THRESHOLD,
    max_output_tokens: int = DEFAULT_REEXTRACT_MAX_OUTPUT_TOKENS,
) -> Any:
    """
    Run the quality gate over a parsed extraction object.

    Args:
        parsed: Parsed JSON answer of the first extraction
        file_bytes: Original uploaded document
        mime_type: MIME type sent with the document
        client: Object with a ``generate(prompt, file_bytes, mime_type,
            max_output_tokens=...)`` method returning a response with ``text``
            (``GeminiVisionClient`` in production)
        threshold: Empty ratio above which a table is re-extracted
        max_output_tokens: Output token limit of the re-extraction call

    Returns:
        A new object with improved tables, or ``parsed`` itself when nothing
        was queued or the re-extraction failed. ``parsed`` is never mutated.
    """
    if not isinstance(parsed, dict):
        return parsed
    tables = parsed.get("tables")
    if not isinstance(tables, list) or not tables:
        return parsed

    queued = find_tables_to_reextract(tables, threshold)
    if not queued:
        logger.info("All tables have good data, no re-extraction needed")
        return parsed

    logger.info(f"{len(queued)} table(s) need re-extraction")
    prompt = build_reextraction_prompt(tables, queued)

    try:
        response = client.generate(
            prompt,
            file_bytes=file_bytes,
            mime_type=mime_type,
            max_output_tokens=max_output_tokens,
        )
        logger.info(f"Re-extraction response length: {len(response.text)}")
        candidates = parse_reextraction_response(response.text)
    except Exception as e:
        logger.error(f"Error during re-extraction, keeping original tables: {sanitize_error(e)}")
        return parsed

    if candidates is None:
        logger.warning("Re-extraction answer had no usable tables, keeping original tables")
        return parsed

    improved = list(tables)
    for position, index in enumerate(queued[: len(candidates)]):
        candidate = candidates[position]
        candidate_data = _table_data(candidate)
        if candidate_data is None:
            continue

        old_ratio = compute_empty_ratio(tables[index]["data"])
        new_ratio = compute_empty_ratio(candidate_data)
        if new_ratio is None:
            new_ratio = 1.0

        if new_ratio < old_ratio:
            logger.info(
                f"Table {index}: improved from {old_ratio * 100:.1f}% empty "
                f"to {new_ratio * 100:.1f}% empty"
            )
            improved[index] = candidate
        else:
            logger.info(f"Table {index}: re-extraction not better, keeping original")

    result = dict(parsed)
    result["tables"] = improved
    return result

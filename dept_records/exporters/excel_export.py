"""
Excel export of a structured extraction (openpyxl).

Layout of the single "Extracted Data" sheet, top to bottom:
title and a blank row, document fields under a Field/Value header, each
table (caption, header row, data rows, blank row), each section (heading,
content, blank row). When none of these produced a row, the raw text is
written to A1.
"""

import logging
from pathlib import Path
from typing import Any, List, Union

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from dept_records.exceptions import ExportError
from dept_records.exporters.naming import DEFAULT_MAX_NAME_LENGTH, clean_export_stem
from dept_records.extraction_models import StructuredExtraction

logger = logging.getLogger(__name__)

SHEET_NAME = "Extracted Data"
DEFAULT_COLUMN_WIDTH = 25
MIN_COLUMNS = 2
FIELDS_HEADER = ["Field", "Value"]


def build_sheet_rows(data: StructuredExtraction) -> List[List[Any]]:
    """Rows of the sheet in writing order; ``[]`` is a blank separator row."""
    rows: List[List[Any]] = []

    if data.title:
        rows.append([data.title])
        rows.append([])

    if data.key_value_pairs:
        rows.append(list(FIELDS_HEADER))
        for kv in data.key_value_pairs:
            rows.append([kv.key, kv.value])
        rows.append([])

    for table in data.tables:
        if table.caption:
            rows.append([table.caption])
        rows.append(list(table.headers))
        for row in table.rows:
            rows.append(list(row))
        rows.append([])

    for section in data.sections:
        rows.append([section.heading])
        rows.append([section.content])
        rows.append([])

    if not rows and data.raw_text:
        rows.append([data.raw_text])

    return rows


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    return ILLEGAL_CHARACTERS_RE.sub("", text)


def export_to_excel(
    data: StructuredExtraction,
    file_name: str,
    output_dir: Union[str, Path] = ".",
    column_width: int = DEFAULT_COLUMN_WIDTH,
    max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> Path:
    """
    Write ``<stem>_extracted.xlsx`` into ``output_dir``.

    Args:
        data: Parsed extraction
        file_name: Original document name (extension is dropped)
        output_dir: Target directory, created if missing
        column_width: Width applied to every used column
        max_name_length: Maximum length of the file stem

    Returns:
        Path of the written workbook

    Raises:
        ExportError: If the workbook cannot be written
    """
    rows = build_sheet_rows(data)

    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_NAME

    for row_index, row in enumerate(rows, start=1):
        for col_index, value in enumerate(row, start=1):
            cell = ws.cell(row=row_index, column=col_index, value=_cell_text(value))
            # OCR text starting with "=" must not become a formula
            if cell.data_type == "f":
                cell.data_type = "s"

    if data.title:
        ws.cell(row=1, column=1).font = Font(bold=True, size=14)

    max_cols = max([len(row) for row in rows] + [MIN_COLUMNS])
    for col_index in range(1, max_cols + 1):
        ws.column_dimensions[get_column_letter(col_index)].width = column_width

    output_path = Path(output_dir) / f"{clean_export_stem(file_name, max_name_length)}_extracted.xlsx"
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        wb.save(output_path)
    except OSError as e:
        raise ExportError(
            f"Failed to write Excel export to {output_path}",
            details={"path": str(output_path)},
            cause=e,
        ) from e

    logger.info(f"Excel export written: {output_path} ({len(rows)} rows, {max_cols} columns)")
    return output_path

"""
Export renderers for structured extractions.

- Excel workbook (openpyxl): one "Extracted Data" sheet
- PDF document (reportlab): title, document fields, sections, tables

Both renderers accept ragged table rows.
"""

from .excel_export import build_sheet_rows, export_to_excel
from .naming import clean_export_stem
from .pdf_export import build_story, export_to_pdf

__all__ = [
    "clean_export_stem",
    "build_sheet_rows",
    "export_to_excel",
    "build_story",
    "export_to_pdf",
]

"""
PDF export of a structured extraction (reportlab platypus).

Story order: title, ``Type:`` line, "Document Fields" two-column table,
sections, tables, and the raw text only when nothing structured was
recognised. Headings and table headers use the accent colour #1565C0.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Flowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from reportlab.platypus.doctemplate import LayoutError

from dept_records.exceptions import ExportError
from dept_records.exporters.naming import DEFAULT_MAX_NAME_LENGTH, clean_export_stem
from dept_records.extraction_models import ExtractedTable, StructuredExtraction

logger = logging.getLogger(__name__)

ACCENT = colors.HexColor("#1565C0")
ALTERNATE_ROW = colors.HexColor("#F5F5F5")
MUTED_TEXT = colors.HexColor("#646464")
BODY_TEXT = colors.HexColor("#323232")

PAGE_MARGIN = 14 * mm
CONTENT_WIDTH = A4[0] - 2 * PAGE_MARGIN


def _build_styles() -> Dict[str, ParagraphStyle]:
    sample = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            'ExtractionTitle',
            parent=sample['Title'],
            fontSize=16,
            leading=20,
            alignment=0,
            textColor=ACCENT,
            spaceAfter=4,
        ),
        "type": ParagraphStyle(
            'ExtractionType',
            parent=sample['Normal'],
            fontSize=10,
            textColor=MUTED_TEXT,
            spaceAfter=8,
        ),
        "heading": ParagraphStyle(
            'ExtractionHeading',
            parent=sample['Heading2'],
            fontSize=12,
            textColor=ACCENT,
            spaceBefore=6,
            spaceAfter=4,
        ),
        "subheading": ParagraphStyle(
            'ExtractionSubheading',
            parent=sample['Heading3'],
            fontSize=11,
            textColor=ACCENT,
            spaceBefore=6,
            spaceAfter=3,
        ),
        "body": ParagraphStyle(
            'ExtractionBody',
            parent=sample['Normal'],
            fontSize=9,
            leading=12,
            textColor=BODY_TEXT,
            spaceAfter=6,
        ),
        "cell": ParagraphStyle(
            'ExtractionCell',
            parent=sample['Normal'],
            fontSize=8,
            leading=10,
        ),
        "header_cell": ParagraphStyle(
            'ExtractionHeaderCell',
            parent=sample['Normal'],
            fontName='Helvetica-Bold',
            fontSize=9,
            leading=11,
            textColor=colors.white,
        ),
    }


def _markup(text: Any) -> str:
    """Escape text for a Paragraph and keep its line breaks."""
    value = "" if text is None else str(text)
    return escape(value).replace("\n", "<br/>")


def _grid(
    head: Sequence[Any],
    body: Sequence[Sequence[Any]],
    styles: Dict[str, ParagraphStyle],
) -> Table:
    """Striped table with an accent header row, repeated on page breaks."""
    width = len(head)
    data = [[Paragraph(_markup(value), styles["header_cell"]) for value in head]]
    for row in body:
        data.append([Paragraph(_markup(value), styles["cell"]) for value in row])

    table = Table(data, colWidths=[CONTENT_WIDTH / width] * width, repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), ACCENT),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, ALTERNATE_ROW]),
        ('GRID', (0, 0), (-1, -1), 0.25, colors.HexColor("#BDBDBD")),
        ('TOPPADDING', (0, 0), (-1, -1), 3),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
    ]))
    return table


def _table_flowable(table: ExtractedTable, styles: Dict[str, ParagraphStyle]) -> List[Flowable]:
    width = table.num_cols
    if width == 0:
        return []
    head = list(table.headers) + [""] * (width - len(table.headers))
    return [_grid(head, table.padded_rows(width), styles)]


def build_story(data: StructuredExtraction) -> List[Flowable]:
    """Flowables for the document, in rendering order."""
    styles = _build_styles()
    story: List[Flowable] = []

    if data.title:
        story.append(Paragraph(_markup(data.title), styles["title"]))

    if data.document_type:
        story.append(Paragraph(_markup(f"Type: {data.document_type}"), styles["type"]))

    if data.key_value_pairs:
        story.append(Paragraph("Document Fields", styles["heading"]))
        story.append(_grid(
            ["Field", "Value"],
            [[kv.key, kv.value] for kv in data.key_value_pairs],
            styles,
        ))
        story.append(Spacer(1, 8))

    for section in data.sections:
        story.append(Paragraph(_markup(section.heading), styles["subheading"]))
        story.append(Paragraph(_markup(section.content), styles["body"]))

    for table in data.tables:
        if table.caption:
            story.append(Paragraph(_markup(table.caption), styles["subheading"]))
        story.extend(_table_flowable(table, styles))
        story.append(Spacer(1, 8))

    if data.raw_text and data.is_empty:
        story.append(Paragraph(_markup(data.raw_text), styles["body"]))

    return story


def export_to_pdf(
    data: StructuredExtraction,
    file_name: str,
    output_dir: Union[str, Path] = ".",
    max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> Path:
    """
    Write ``<stem>_extracted.pdf`` into ``output_dir``.

    Args:
        data: Parsed extraction
        file_name: Original document name (extension is dropped)
        output_dir: Target directory, created if missing
        max_name_length: Maximum length of the file stem

    Returns:
        Path of the written PDF

    Raises:
        ExportError: If the document cannot be laid out or written
    """
    output_path = Path(output_dir) / f"{clean_export_stem(file_name, max_name_length)}_extracted.pdf"

    story = build_story(data)
    if not story:
        # An empty story produces no pages
        story = [Spacer(1, 1)]

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        doc = SimpleDocTemplate(
            str(output_path),
            pagesize=A4,
            leftMargin=PAGE_MARGIN,
            rightMargin=PAGE_MARGIN,
            topMargin=PAGE_MARGIN,
            bottomMargin=PAGE_MARGIN,
            title=data.title or clean_export_stem(file_name, max_name_length),
        )
        doc.build(story)
    except (OSError, LayoutError) as e:
        raise ExportError(
            f"Failed to write PDF export to {output_path}",
            details={"path": str(output_path)},
            cause=e,
        ) from e

    logger.info(f"PDF export written: {output_path} ({len(story)} flowables)")
    return output_path

"""
Document extraction service.

Sends an uploaded department document (register photo, scanned PDF, Word
file) to Gemini and returns the text blob to persist as ``extracted_text``:

1. One generateContent call with the image or multi-page document prompt.
2. Locate the JSON answer (fenced block or ``{...}`` span); repair it when
   the answer was truncated by the token limit.
3. Run the empty-table quality gate when the answer has tables.
4. Persist canonical JSON, or the raw answer when no JSON was recovered
   (the structured parser's markdown fallback handles it on display).

Model and network failures are returned as ``ExtractionResult(success=False)``;
the service never raises them.

Usage:
    from dept_records.config_schema import load_config
    from dept_records.document_extractor import DocumentExtractor

    extractor = DocumentExtractor.from_config(load_config())
    result = extractor.extract_from_path("stock_register.jpg")
    if result.success:
        save(result.text)
"""

import json
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlparse

import httpx

from dept_records.exceptions import ProviderError, UnsupportedFileTypeError
from dept_records.extraction_models import ExtractionResult
from dept_records.gemini_client import GeminiVisionClient
from dept_records.quality_gate import (
    DEFAULT_EMPTY_RATIO_THRESHOLD,
    DEFAULT_REEXTRACT_MAX_OUTPUT_TOKENS,
    reextract_empty_tables,
)
from dept_records.text_parser import load_json_candidate
from dept_records.utils.security import sanitize_error

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
WORD_MIME_TYPES = frozenset({
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})

_JSON_SCHEMA_BLOCK = """{
  "title": "Document title or heading",
  "documentType": "form|register|certificate|report|letter|sop|other",
  "keyValuePairs": [
    {"key": "Field Label", "value": "Field Value"}
  ],
  "sections": [
    {"heading": "Section Name", "content": "Section body text..."}
  ],
  "tables": [
    {
      "caption": "Table title if any",
      "data": "Col1|Col2|Col3\\nVal1|Val2|Val3\\nVal4|Val5|Val6"
    }
  ]
}"""

DEFAULT_IMAGE_PROMPT = f"""Extract ALL text content from this document image and return it as a JSON object.

Return a valid JSON object with this exact structure:
{_JSON_SCHEMA_BLOCK}

IMPORTANT TABLE FORMAT: The "data" field must be a SINGLE STRING with pipe-delimited (|) columns and newline-separated (\\n) rows. First line = headers, remaining lines = data rows.

CRITICAL TABLE EXTRACTION RULES (STRICTLY ENFORCED):
- EVERY cell in EVERY row MUST have a value. NEVER leave a cell empty between pipes.
  - If a cell is genuinely blank/empty in the document: output "-"
  - If a cell has text you cannot read clearly: output "[illegible]"
  - If a cell has handwritten text: read it carefully and output your best reading
- COUNT YOUR COLUMNS: Every data row must have EXACTLY the same number of pipe (|) separators as the header row.
- For stock registers, inventory logs, and equipment lists:
  - The ITEM/NAME column ALWAYS contains a value — it is NEVER blank
  - Read handwritten entries character by character if needed
  - DATE columns contain dates — read the numbers carefully
- For ALL table types: read EVERY cell value from the document. Do not skip or leave blank.

General Rules:
- CRITICAL: Extract ALL visible text. NEVER return empty keyValuePairs AND empty sections AND empty tables if there is ANY readable text. At minimum, put all readable text into a section.
- For training documents/certificates: extract Topic, Date, Trainer, Participants, Duration, Venue, Department into keyValuePairs. Attendance lists go in tables.
- For any document with visible text: extract every piece of readable text into appropriate fields.
- Put labeled fields into keyValuePairs, narrative text into sections, tabular data into tables
- Table headers MUST be descriptive column names from the document
- Fix OCR/spelling errors. Correct capitalization of names. Standardize prefixes (Mr., Mrs., Miss., Dr.).
- Watch for OCR confusions: "W" vs "U", "l" vs "I", "0" vs "O", "rn" vs "m".
- Read HANDWRITTEN text carefully. Mark illegible text as "[illegible]".
- Extract ALL content including handwritten entries, checkboxes, scores, comments.
- If no table, return empty tables array
- Return ONLY the JSON object, no markdown code fences
- Ensure valid JSON"""

DEFAULT_DOCUMENT_PROMPT = f"""Extract ALL text content from this PDF document and return it as a JSON object.

CRITICAL: This PDF may have MULTIPLE PAGES. You MUST extract content from ALL pages, not just the first page. Read every single page thoroughly.

Return a valid JSON object with this exact structure:
{_JSON_SCHEMA_BLOCK}

IMPORTANT TABLE FORMAT: The "data" field must be a SINGLE STRING with pipe-delimited (|) columns and newline-separated (\\n) rows. First line = column headers, remaining lines = data rows. This compact format is REQUIRED to fit all data. Example for a stock register:
"data": "Sl.No|Item|Standard Count|Expiry Date|Replaced Date|Remark\\n1|Atropine 1ml|5|03/25|01/25|Ok\\n2|Adrenaline 1ml|5|06/25|02/25|Ok\\n3|Deriphylline 2ml|10|12/25|08/25|-\\n4|Aminophylline|5|04/25|-|-"

CRITICAL TABLE EXTRACTION RULES (STRICTLY ENFORCED):
- EVERY cell in EVERY row MUST have a value. NEVER leave a cell empty between pipes.
  - If a cell is genuinely blank/empty in the document: output "-"
  - If a cell has text you cannot read clearly: output "[illegible]"
  - If a cell has handwritten text: read it carefully and output your best reading
- COUNT YOUR COLUMNS: Every data row must have EXACTLY the same number of pipe (|) separators as the header row. If a row has fewer pipes, you missed a column — go back and fix it.
- For stock registers, inventory logs, and equipment lists:
  - The ITEM/NAME column ALWAYS contains a medication name, supply name, or equipment name — it is NEVER blank. Read it carefully.
  - Read handwritten entries character by character if needed. Use context clues from surrounding items.
  - Common hospital items: Atropine, Adrenaline, Deriphylline, Aminophylline, Dopamine, Dobutamine, Amiodarone, Lignocaine, Sodium Bicarbonate, Calcium Gluconate, Dexamethasone, Hydrocortisone, Furosemide, Mannitol, Midazolam, Diazepam, Phenytoin, Magnesium Sulphate, Neostigmine, Glycopyrrolate, Succinylcholine, Atracurium, Vecuronium, Propofol, Ketamine, Thiopentone, Fentanyl, Morphine, Tramadol, Ondansetron, Metoclopramide, Ranitidine, Pantoprazole, Heparin, Protamine, etc.
  - DATE columns contain dates in DD/MM/YY or MM/YY format — read the numbers carefully
  - COUNT columns contain numeric values
- For ALL table types: read EVERY cell value from the document. Do not skip or leave blank.

General Rules:
- CRITICAL: Extract data from ALL PAGES. Do NOT stop at the first page.
- For registers/inventory/log documents: extract EVERY SINGLE ROW from ALL pages into the "data" string. Do NOT skip any rows.
- If a table spans multiple pages, combine ALL rows into ONE table "data" string.
- Put labeled fields (like "Document No:", "Date:", "Department:") into keyValuePairs
- Put narrative text into sections with headings
- Table headers MUST be descriptive column names from the document. Never use generic names.
- Fix OCR/spelling errors. Correct capitalization of names (proper case). Standardize prefixes (Mr., Mrs., Miss., Dr.).
- Watch for OCR confusions: "W" vs "U", "l" vs "I", "0" vs "O", "rn" vs "m". Use context to resolve.
- Read HANDWRITTEN text carefully. Mark illegible text as "[illegible]".
- Extract ALL content including handwritten entries, checkboxes, scores, and comments.
- If there is no table, return empty tables array
- Return ONLY the JSON object, no markdown code fences
- Ensure valid JSON"""


@dataclass
class ExtractorConfig:
    """
    Configuration for the extraction service.

    Attributes:
        image_max_output_tokens: Output token limit for single images (default: 8192)
        document_max_output_tokens: Output token limit for PDF/Word documents (default: 32768)
        reextract_max_output_tokens: Output token limit for table re-extraction (default: 32768)
        quality_gate_enabled: Run the empty-table quality gate (default: True)
        empty_ratio_threshold: Empty-cell ratio above which a table is re-extracted (default: 0.4)
    """

    image_max_output_tokens: int = 8192
    document_max_output_tokens: int = 32768
    reextract_max_output_tokens: int = DEFAULT_REEXTRACT_MAX_OUTPUT_TOKENS
    quality_gate_enabled: bool = True
    empty_ratio_threshold: float = DEFAULT_EMPTY_RATIO_THRESHOLD

    def __post_init__(self):
        """Validate configuration parameters."""
        for name in ("image_max_output_tokens", "document_max_output_tokens", "reextract_max_output_tokens"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if not 0.0 <= self.empty_ratio_threshold <= 1.0:
            raise ValueError(f"empty_ratio_threshold must be in [0.0, 1.0], got {self.empty_ratio_threshold}")

    @classmethod
    def from_config(cls, config: Any) -> "ExtractorConfig":
        """Build from a validated RootConfig."""
        return cls(
            image_max_output_tokens=config.gemini.image_max_output_tokens,
            document_max_output_tokens=config.gemini.document_max_output_tokens,
            reextract_max_output_tokens=config.gemini.reextract_max_output_tokens,
            quality_gate_enabled=config.quality_gate.enabled,
            empty_ratio_threshold=config.quality_gate.empty_ratio_threshold,
        )


def is_document_mime_type(mime_type: str) -> bool:
    """PDF and Word files take the multi-page document path."""
    return mime_type == PDF_MIME_TYPE or mime_type in WORD_MIME_TYPES


class DocumentExtractor:
    """
    Extract structured text from department documents with Gemini.

    The client only needs a ``generate`` method (see ``GeminiVisionClient``),
    so tests can pass a fake.
    """

    def __init__(self, client: Any, config: Optional[ExtractorConfig] = None):
        self.client = client
        self.config = config or ExtractorConfig()

    @classmethod
    def from_config(cls, config: Any, http_client: Optional[httpx.Client] = None) -> "DocumentExtractor":
        """
        Build the service from a RootConfig.

        Raises:
            APIKeyError: If no Gemini API key is configured
        """
        client = GeminiVisionClient.from_config(config, http_client=http_client)
        return cls(client, ExtractorConfig.from_config(config))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def extract_from_image(
        self, file_bytes: bytes, mime_type: str, prompt: Optional[str] = None
    ) -> ExtractionResult:
        """Extract a single-page image (register photo, scanned form)."""
        return self._run(
            prompt or DEFAULT_IMAGE_PROMPT,
            file_bytes,
            mime_type,
            self.config.image_max_output_tokens,
            document_type="image",
        )

    def extract_from_pdf(self, file_bytes: bytes, prompt: Optional[str] = None) -> ExtractionResult:
        """Extract a multi-page PDF (also used for Word documents)."""
        logger.info(f"Starting PDF extraction, file size: {len(file_bytes)}")
        return self._run(
            prompt or DEFAULT_DOCUMENT_PROMPT,
            file_bytes,
            PDF_MIME_TYPE,
            self.config.document_max_output_tokens,
            document_type="pdf",
        )

    def extract(self, file_bytes: bytes, mime_type: str, prompt: Optional[str] = None) -> ExtractionResult:
        """Dispatch on MIME type: images, then PDF/Word; anything else fails."""
        mime_type = (mime_type or "").lower()
        if mime_type.startswith("image/"):
            return self.extract_from_image(file_bytes, mime_type, prompt)
        if is_document_mime_type(mime_type):
            return self.extract_from_pdf(file_bytes, prompt)

        error = UnsupportedFileTypeError(
            "Unsupported file type", details={"mime_type": mime_type or None}
        )
        logger.warning(f"{error.message}: {mime_type or 'unknown'}")
        return ExtractionResult(success=False, text="", error=error.message)

    def extract_from_path(self, path: Union[str, Path], prompt: Optional[str] = None) -> ExtractionResult:
        """Read a local file and extract it; the MIME type is guessed from the name."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        try:
            file_bytes = path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            return ExtractionResult(success=False, text="", error=f"Failed to read file: {path.name}")
        return self.extract(file_bytes, mime_type or "", prompt)

    def extract_from_url(
        self,
        url: str,
        prompt: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> ExtractionResult:
        """
        Download a stored document and extract it.

        The MIME type comes from the response ``Content-Type`` header, or is
        guessed from the URL path when the header is missing or generic.
        """
        try:
            if http_client is not None:
                response = http_client.get(url, follow_redirects=True)
            else:
                with httpx.Client(timeout=60.0) as client:
                    response = client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            message = sanitize_error(e)
            logger.error(f"Failed to download document: {message}")
            return ExtractionResult(success=False, text="", error="Failed to download document")

        mime_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = mimetypes.guess_type(urlparse(url).path)[0] or ""
        return self.extract(response.content, mime_type, prompt)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(
        self,
        prompt: str,
        file_bytes: bytes,
        mime_type: str,
        max_output_tokens: int,
        document_type: str,
    ) -> ExtractionResult:
        try:
            response = self.client.generate(
                prompt,
                file_bytes=file_bytes,
                mime_type=mime_type,
                max_output_tokens=max_output_tokens,
            )
        except ProviderError as e:
            message = sanitize_error(e.message)
            logger.error(f"Gemini extraction failed ({document_type}): {sanitize_error(e)}")
            return ExtractionResult(success=False, text="", error=message, document_type=document_type)

        if not response.text:
            logger.warning(f"Gemini returned no text ({document_type})")
            return ExtractionResult(
                success=False,
                text="",
                error="No text extracted",
                document_type=document_type,
                finish_reason=response.finish_reason,
            )

        text = self.postprocess(response.text, file_bytes, mime_type)
        return ExtractionResult(
            success=True,
            text=text,
            document_type=document_type,
            finish_reason=response.finish_reason,
        )

    def postprocess(self, raw_text: str, file_bytes: bytes, mime_type: str) -> str:
        """
        Turn the model's raw answer into the blob to persist.

        Returns canonical JSON when a JSON object could be recovered (after
        the quality gate), otherwise ``raw_text`` unchanged.
        """
        value = load_json_candidate(raw_text)
        if not isinstance(value, dict):
            logger.info("Answer is not a JSON object, persisting raw text")
            return raw_text

        tables = value.get("tables")
        if self.config.quality_gate_enabled and isinstance(tables, list) and tables:
            value = reextract_empty_tables(
                value,
                file_bytes,
                mime_type,
                self.client,
                threshold=self.config.empty_ratio_threshold,
                max_output_tokens=self.config.reextract_max_output_tokens,
            )

        return json.dumps(value, ensure_ascii=False)

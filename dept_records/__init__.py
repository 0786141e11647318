"""
Department records extraction core.

Turns Gemini answers for uploaded hospital department documents (stock
registers, forms, certificates, SOPs) into structured records, and renders
them to Excel and PDF.
"""

__version__ = "0.1.0"

# Data model
from .extraction_models import (
    DocumentSection,
    ExtractedTable,
    ExtractionResult,
    KeyValuePair,
    ParseDiagnostics,
    StructuredExtraction,
)

# Parsing core
from .truncated_json import repair_truncated_json, try_repair_json
from .table_normalizer import normalize_table
from .text_parser import MarkdownFallbackParser, parse_extracted_text
from .quality_gate import compute_empty_ratio, reextract_empty_tables

# Extraction service
from .gemini_client import GeminiResponse, GeminiVisionClient
from .document_extractor import DocumentExtractor, ExtractorConfig

__all__ = [
    "__version__",
    # Data model
    "KeyValuePair",
    "DocumentSection",
    "ExtractedTable",
    "StructuredExtraction",
    "ParseDiagnostics",
    "ExtractionResult",
    # Parsing core
    "repair_truncated_json",
    "try_repair_json",
    "normalize_table",
    "parse_extracted_text",
    "MarkdownFallbackParser",
    "compute_empty_ratio",
    "reextract_empty_tables",
    # Extraction service
    "GeminiVisionClient",
    "GeminiResponse",
    "DocumentExtractor",
    "ExtractorConfig",
]

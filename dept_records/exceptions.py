"""
Custom exception hierarchy for dept_records.

Provides typed exceptions for the extraction service, the Gemini client
and the exporters. The parsing core (JSON repair, table normalisation,
structured text parsing, quality gate) absorbs these internally and never
raises them to its callers.

Exception Hierarchy:
    DeptRecordsError (base)
    ├── ExtractionError → JSONRepairError, UnsupportedFileTypeError
    ├── ValidationError → ConfigurationError
    ├── ProviderError → APIKeyError, RateLimitError, ProviderTimeoutError
    └── ExportError

Usage:
    from dept_records.exceptions import JSONRepairError, ProviderError

    try:
        value = repair_truncated_json(text)
    except JSONRepairError:
        # Treat the text as unstructured
        ...
"""

from typing import Any, Dict, Optional


class DeptRecordsError(Exception):
    """Base exception for all dept_records errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {type(self.cause).__name__}: {self.cause})"
        return self.message


# =============================================================================
# Extraction Errors
# =============================================================================

class ExtractionError(DeptRecordsError):
    """Error during document extraction or post-processing."""
    pass


class JSONRepairError(ExtractionError):
    """Truncated JSON could not be repaired into a valid value."""
    pass


class UnsupportedFileTypeError(ExtractionError):
    """Uploaded file has a MIME type the extractor does not handle."""
    pass


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(DeptRecordsError):
    """Error validating input data or configuration."""
    pass


class ConfigurationError(ValidationError):
    """Error in configuration (malformed file, invalid values)."""
    pass


# =============================================================================
# Provider Errors (Gemini API)
# =============================================================================

class ProviderError(DeptRecordsError):
    """Error from the vision/LLM provider (HTTP error, malformed envelope)."""
    pass


class APIKeyError(ProviderError):
    """Missing or invalid API key."""
    pass


class RateLimitError(ProviderError):
    """API rate limit exceeded."""
    pass


class ProviderTimeoutError(ProviderError):
    """Provider request timed out."""
    pass


# =============================================================================
# Export Errors
# =============================================================================

class ExportError(DeptRecordsError):
    """Error rendering an extraction to Excel or PDF."""
    pass

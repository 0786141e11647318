"""
Shared fixtures for dept_records tests.
"""

from typing import Any, Dict, List, Optional

import pytest

from dept_records.extraction_models import (
    DocumentSection,
    ExtractedTable,
    KeyValuePair,
    StructuredExtraction,
)
from dept_records.gemini_client import GeminiResponse

STOCK_REGISTER_BLOB = (
    '```json\n'
    '{"title":"Stock Register","keyValuePairs":[{"key":"Dept","value":"ICU"}],'
    '"tables":[{"caption":"Items","data":"Item|Qty\\nAtropine|5\\nAdrenaline|-"}]}\n'
    '```'
)


class FakeGeminiClient:
    """Stand-in for GeminiVisionClient: records calls, replays canned answers."""

    def __init__(self, responses: Optional[List[Any]] = None, error: Optional[Exception] = None):
        self.responses = list(responses or [])
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def generate(
        self,
        prompt: str,
        file_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GeminiResponse:
        self.calls.append({
            "prompt": prompt,
            "file_bytes": file_bytes,
            "mime_type": mime_type,
            "max_output_tokens": max_output_tokens,
        })
        if self.error is not None:
            raise self.error
        answer = self.responses.pop(0) if self.responses else ""
        if isinstance(answer, GeminiResponse):
            return answer
        return GeminiResponse(text=answer, finish_reason="STOP")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client():
    """Factory for FakeGeminiClient instances."""
    return FakeGeminiClient


@pytest.fixture
def stock_register_blob() -> str:
    return STOCK_REGISTER_BLOB


@pytest.fixture
def sample_extraction() -> StructuredExtraction:
    """Extraction with every field set and a ragged table."""
    return StructuredExtraction(
        title="ICU Emergency Drug Register",
        document_type="register",
        key_value_pairs=[
            KeyValuePair(key="Department", value="ICU"),
            KeyValuePair(key="Month", value="February 2025"),
        ],
        sections=[
            DocumentSection(heading="Remarks", content="Checked by nurse in charge.\nAll items in date."),
        ],
        tables=[
            ExtractedTable(
                headers=["Sl.No", "Item", "Qty", "Expiry"],
                rows=[
                    ["1", "Atropine 1ml", "5", "03/25"],
                    ["2", "Adrenaline 1ml"],
                    ["3", "Deriphylline 2ml", "10", "12/25", "extra"],
                ],
                caption="Emergency Drugs",
            ),
        ],
    )

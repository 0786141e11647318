"""
Tests for the canonical extraction record.
"""

from dept_records.extraction_models import (
    ExtractedTable,
    ExtractionResult,
    StructuredExtraction,
)


class TestExtractedTable:
    """Ragged rows are valid state."""

    def test_num_cols_is_widest_row(self, sample_extraction):
        assert sample_extraction.tables[0].num_cols == 5

    def test_cell_past_short_row(self):
        table = ExtractedTable(headers=["A", "B"], rows=[["1"]])
        assert table.cell(0, 0) == "1"
        assert table.cell(0, 1) == ""
        assert table.cell(0, 1, default="-") == "-"

    def test_padded_rows_keep_long_rows(self):
        table = ExtractedTable(headers=["A", "B"], rows=[["1"], ["2", "3", "4"]])
        assert table.padded_rows() == [["1", ""], ["2", "3", "4"]]
        assert table.padded_rows(4) == [["1", "", "", ""], ["2", "3", "4", ""]]


class TestStructuredExtraction:

    def test_is_empty_ignores_title_and_raw_text(self):
        assert StructuredExtraction(title="T", raw_text="text").is_empty

    def test_to_dict_shape(self, sample_extraction):
        data = sample_extraction.to_dict()
        assert data["documentType"] == "register"
        assert data["keyValuePairs"][0] == {"key": "Department", "value": "ICU"}
        assert data["tables"][0]["caption"] == "Emergency Drugs"
        assert "rawText" not in data

    def test_optional_fields_omitted(self):
        assert StructuredExtraction(raw_text="").to_dict() == {
            "keyValuePairs": [],
            "sections": [],
            "tables": [],
            "rawText": "",
        }

    def test_from_dict_inverts_to_dict(self, sample_extraction):
        assert StructuredExtraction.from_dict(sample_extraction.to_dict()) == sample_extraction


class TestExtractionResult:

    def test_truncated(self):
        assert ExtractionResult(success=True, text="{}", finish_reason="MAX_TOKENS").truncated
        assert not ExtractionResult(success=True, text="{}", finish_reason="STOP").truncated

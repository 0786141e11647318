"""
Tests for the markdown/plain-text fallback parser.
"""

import pytest

from dept_records.text_parser import (
    MarkdownFallbackParser,
    ParserState,
    is_table_separator,
    match_heading,
    match_key_value,
    parse_extracted_text,
    split_markdown_row,
)

LEGACY_ANSWER = """Here's the extracted content:

**1. Document Title and Headers:**
* **Hospital:** Hope Hospital
* **Department:** ICU

## Stock Register
| Sl | Item | Qty |
|----|------|-----|
| 1 | Atropine | 5 |
| 2 | Adrenaline |  |

Checked by nurse in charge.
Remarks: all ok
"""


@pytest.fixture
def parser():
    return MarkdownFallbackParser()


class TestHeadings:

    @pytest.mark.parametrize("line, heading", [
        ("**1. Document Title and Headers:**", "1. Document Title and Headers"),
        ("**2. Staff Details**:", "2. Staff Details"),
        ("## Stock Register", "Stock Register"),
        ("# Title", "Title"),
        ("### Remarks:", "Remarks"),
        ("**Attendance**", "Attendance"),
        ("**Date:**", "Date"),
    ])
    def test_heading_forms(self, line, heading):
        assert match_heading(line) == heading

    @pytest.mark.parametrize("line", [
        "#### Too deep",
        "**Name:** John",
        "Plain text",
        "* bullet",
    ])
    def test_not_headings(self, line):
        assert match_heading(line) is None


class TestKeyValues:

    @pytest.mark.parametrize("line, key, value", [
        ("* **Hospital:** Hope Hospital", "Hospital", "Hope Hospital"),
        ("- **Ward**: Male Medical", "Ward", "Male Medical"),
        ("• **Shift:** Night", "Shift", "Night"),
        ("**Name:** Dr. Murali", "Name", "Dr. Murali"),
        ("**Name**: Dr. Murali", "Name", "Dr. Murali"),
        ("Document No: HH/ICU/07", "Document No", "HH/ICU/07"),
        ("Time: 10:30", "Time", "10:30"),
    ])
    def test_key_value_forms(self, line, key, value):
        pair = match_key_value(line)
        assert (pair.key, pair.value) == (key, value)

    @pytest.mark.parametrize("line", [
        "Name: John | extra",
        "lowercase label: value",
        "Heading only:",
        "**Key:** **",
    ])
    def test_not_key_values(self, line):
        assert match_key_value(line) is None


class TestTableHelpers:

    @pytest.mark.parametrize("line", ["|---|---|", "| :--- | ---: |", "|-|"])
    def test_separators(self, line):
        assert is_table_separator(line)

    @pytest.mark.parametrize("line", ["| a | b |", "| |", "---", ""])
    def test_not_separators(self, line):
        assert not is_table_separator(line)

    def test_split_drops_empty_cells(self):
        assert split_markdown_row("| 2 | Adrenaline |  |") == ["2", "Adrenaline"]


class TestLegacyAnswer:
    """Full legacy markdown answer."""

    def test_key_values(self, parser):
        result = parser.parse(LEGACY_ANSWER)
        assert [(kv.key, kv.value) for kv in result.key_value_pairs] == [
            ("Hospital", "Hope Hospital"),
            ("Department", "ICU"),
            ("Remarks", "all ok"),
        ]

    def test_sections(self, parser):
        result = parser.parse(LEGACY_ANSWER)
        assert [(s.heading, s.content) for s in result.sections] == [
            ("1. Document Title and Headers", ""),
            ("Stock Register", "Checked by nurse in charge."),
        ]

    def test_table(self, parser):
        result = parser.parse(LEGACY_ANSWER)
        assert len(result.tables) == 1
        table = result.tables[0]
        assert table.headers == ["Sl", "Item", "Qty"]
        assert table.rows == [["1", "Atropine", "5"], ["2", "Adrenaline"]]
        assert table.caption is None

    def test_intro_line_discarded(self, parser):
        assert parser.parse(LEGACY_ANSWER).raw_text == ""

    def test_same_result_through_parse_extracted_text(self, parser):
        assert parse_extracted_text(LEGACY_ANSWER) == parser.parse(LEGACY_ANSWER)


class TestStateMachine:

    def test_initial_state(self, parser):
        assert parser.state == ParserState.NO_SECTION

    def test_new_table_header_flushes_open_table(self, parser):
        text = "| A | B |\n|---|---|\n| 1 | 2 |\n| C | D |\n|---|---|\n| 3 | 4 |"
        result = parser.parse(text)
        assert [t.headers for t in result.tables] == [["A", "B"], ["C", "D"]]
        assert [t.rows for t in result.tables] == [[["1", "2"]], [["3", "4"]]]

    def test_blank_lines_do_not_end_a_table(self, parser):
        result = parser.parse("| A | B |\n|---|---|\n| 1 | 2 |\n\n| 3 | 4 |")
        assert result.tables[0].rows == [["1", "2"], ["3", "4"]]

    def test_non_pipe_line_ends_table_and_is_classified(self, parser):
        result = parser.parse("| A | B |\n|---|---|\n| 1 | 2 |\nStatus: verified")
        assert result.tables[0].rows == [["1", "2"]]
        assert [(kv.key, kv.value) for kv in result.key_value_pairs] == [("Status", "verified")]

    def test_pipe_line_without_separator_is_text(self, parser):
        result = parser.parse("| just | pipes |\nsecond line")
        assert result.tables == []
        assert result.raw_text == "| just | pipes |\nsecond line"

    def test_pipe_line_is_never_a_key_value(self, parser):
        result = parser.parse("Name: John | extra")
        assert result.key_value_pairs == []
        assert result.raw_text == "Name: John | extra"

    def test_section_content_joined_and_cleaned(self, parser):
        result = parser.parse("## Remarks\n* first point\n- **second** point\n\nthird")
        assert result.sections[0].content == "first point\nsecond point\nthird"

    def test_text_before_first_section_goes_to_raw_text(self, parser):
        result = parser.parse("hope hospital, nagpur\n## Remarks\nall ok")
        assert result.raw_text == "hope hospital, nagpur"
        assert result.sections[0].content == "all ok"

    def test_table_inside_section_keeps_section_open(self, parser):
        result = parser.parse("## Stock\n| A |\n|---|\n| 1 |\nafter table")
        assert result.sections[0].content == "after table"
        assert result.tables[0].rows == [["1"]]

    @pytest.mark.parametrize("intro", [
        "Here's the extracted text:",
        "Heres what I found",
        "The following fields were read",
        "Extracted content below",
        "Below are the details",
    ])
    def test_intro_lines_dropped_outside_sections(self, parser, intro):
        assert parser.parse(f"{intro}\nfree text").raw_text == "free text"

    def test_parser_is_reusable(self, parser):
        parser.parse("## One\ntext")
        result = parser.parse("plain")
        assert result.sections == []
        assert result.raw_text == "plain"
        assert parser.state == ParserState.NO_SECTION

    def test_windows_line_endings(self, parser):
        result = parser.parse("Ward: ICU\r\nBeds: 12\r\n")
        assert [(kv.key, kv.value) for kv in result.key_value_pairs] == [("Ward", "ICU"), ("Beds", "12")]

"""Unit tests for the legacy tabular text formats."""

import pytest

from memory_db.text_formats import (
    is_key_value_format,
    is_sentence_format,
    parse_key_value_format,
    parse_sentence_format,
    parse_tabular_text,
    sniff_value,
)


@pytest.mark.parametrize("text, expected", [
    ("", None),
    ("null", None),
    ("N/A", None),
    ("true", True),
    ("FALSE", False),
    ("42", 42),
    ("-7", -7),
    ("2.5", 2.5),
    ("1e3", 1000.0),
    ("East US", "East US"),
    ("1_000", "1_000"),
    ("nan", "nan"),
])
def test_sniff_value_order(text, expected):
    """null markers, then bool, int, float, string."""
    value = sniff_value(text)
    assert value == expected
    assert type(value) is type(expected)


def test_sniff_keeps_integers_as_int():
    assert isinstance(sniff_value("8"), int)
    assert isinstance(sniff_value("8.0"), float)


class TestSentenceFormat:

    def test_parses_header_and_pairs(self):
        text = "Record from worksheet Servers, row 4: Name is web-01. CPU is 2.5. Active is true."
        data, source = parse_sentence_format(text)

        assert source == {"worksheet_name": "Servers", "row_number": "4"}
        assert data == {"Name": "web-01", "CPU": 2.5, "Active": True}

    def test_sniff(self):
        assert is_sentence_format("Record from worksheet A, row 1: X is 1.")
        assert not is_sentence_format("Worksheet: A, Row: 1\nX: 1")

    def test_lower_case_header_is_recognised(self):
        text = "record from worksheet Servers, row 7: Status is Stopped."

        assert is_sentence_format(text)
        data, source = parse_tabular_text(text)
        assert data == {"Status": "Stopped"}
        assert source == {"worksheet_name": "Servers", "row_number": "7"}

    def test_malformed_header_returns_none(self):
        assert parse_sentence_format("Record from worksheet without a row") is None


class TestKeyValueFormat:

    def test_parses_worksheet_line_and_pairs(self):
        text = "Worksheet: Servers, Row: 7\nName: db-02\nMemory GB: 64\nOwner: \n"
        data, source = parse_key_value_format(text)

        assert source == {"worksheet_name": "Servers", "row_number": "7"}
        assert data == {"Name": "db-02", "Memory GB": 64, "Owner": None}

    def test_value_may_contain_colons(self):
        data, _ = parse_key_value_format("Started: 10:30\nNote: a:b")
        assert data == {"Started": "10:30", "Note": "a:b"}

    def test_sniff(self):
        assert is_key_value_format("A: 1\nB: 2")
        assert not is_key_value_format("A: 1")


class TestParseTabularText:

    def test_sentence_wins_over_key_value(self):
        text = "Record from worksheet S, row 2: Status is Running.\nOther: x"
        data, source = parse_tabular_text(text)
        assert source["row_number"] == "2"
        assert data["Status"] == "Running"

    @pytest.mark.parametrize("text", [None, "", "just some prose", "Record from worksheet ???"])
    def test_unrecognised_text_yields_no_data(self, text):
        assert parse_tabular_text(text) is None

"""
Legacy text formats for tabular rows.

Older imports stored a spreadsheet row only as human-readable text. Two
layouts are recognised:

Sentence form:
    Record from worksheet Servers, row 4: Name is web-01. Environment is Production.

Key-value form:
    Worksheet: Servers, Row: 4
    Name: web-01
    Environment: Production

Values are type-sniffed in a fixed order: null markers, boolean, integer,
floating point, then plain string.
"""

import logging
import re
from typing import Dict, Optional, Tuple

from .records import ScalarValue

logger = logging.getLogger(__name__)

NULL_MARKERS = {"", "null", "none", "nil", "n/a"}

SENTENCE_PREFIX = "Record from worksheet"

WORKSHEET_NAME_KEY = "worksheet_name"
ROW_NUMBER_KEY = "row_number"

_SENTENCE_HEADER = re.compile(
    r"^Record from worksheet\s+(?P<worksheet>.+?),\s*row\s+(?P<row>\d+)\s*:\s*(?P<body>.*)$",
    re.IGNORECASE | re.DOTALL,
)
# "<Col> is <Val>." where the value ends at a period followed by whitespace or end of text
_SENTENCE_PAIR = re.compile(r"\s*(?P<column>[^:\n]+?)\s+is\s+(?P<value>.*?)(?:\.(?=\s|$)|$)", re.DOTALL)
_WORKSHEET_LINE = re.compile(r"^Worksheet:\s*(?P<worksheet>.*?),\s*Row:\s*(?P<row>\d+)\s*$", re.IGNORECASE)

ParsedRow = Tuple[Dict[str, ScalarValue], Dict[str, str]]


def sniff_value(text: Optional[str]) -> ScalarValue:
    """Convert a textual cell value to the first type that parses it."""
    if text is None:
        return None

    stripped = text.strip()
    if stripped.lower() in NULL_MARKERS:
        return None

    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False

    # int()/float() accept digit separators, cell text does not
    if "_" in stripped:
        return stripped

    try:
        return int(stripped)
    except ValueError:
        pass

    try:
        number = float(stripped)
    except ValueError:
        return stripped

    # nan/inf spellings are not numbers a spreadsheet would export
    if number != number or number in (float("inf"), float("-inf")):
        return stripped
    return number


def is_sentence_format(text: str) -> bool:
    return text.lstrip().lower().startswith(SENTENCE_PREFIX.lower())


def is_key_value_format(text: str) -> bool:
    return ":" in text and "\n" in text


def parse_sentence_format(text: str) -> Optional[ParsedRow]:
    """Parse 'Record from worksheet W, row N: Col is Val. ...'."""
    match = _SENTENCE_HEADER.match(text.strip())
    if not match:
        return None

    source = {
        WORKSHEET_NAME_KEY: match.group("worksheet").strip(),
        ROW_NUMBER_KEY: match.group("row"),
    }

    data: Dict[str, ScalarValue] = {}
    for pair in _SENTENCE_PAIR.finditer(match.group("body")):
        column = pair.group("column").strip()
        if not column:
            continue
        data[column] = sniff_value(pair.group("value"))

    return data, source


def parse_key_value_format(text: str) -> Optional[ParsedRow]:
    """Parse one '<Key>: <Value>' pair per line, plus the worksheet/row line."""
    data: Dict[str, ScalarValue] = {}
    source: Dict[str, str] = {}

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue

        header = _WORKSHEET_LINE.match(line)
        if header:
            source[WORKSHEET_NAME_KEY] = header.group("worksheet").strip()
            source[ROW_NUMBER_KEY] = header.group("row")
            continue

        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        data[key] = sniff_value(value)

    if not data and not source:
        return None
    return data, source


# Tried in order; the first strategy whose sniff accepts the text decides
_STRATEGIES = (
    (is_sentence_format, parse_sentence_format),
    (is_key_value_format, parse_key_value_format),
)


def parse_tabular_text(text: Optional[str]) -> Optional[ParsedRow]:
    """
    Extract structured row data from a legacy text blob.

    Returns:
        (data, source) when a known format matches, otherwise None. Text
        that looks partially structured but fits neither format yields None.
    """
    if not text or not isinstance(text, str):
        return None

    for sniff, parse in _STRATEGIES:
        if not sniff(text):
            continue
        parsed = parse(text)
        if parsed is not None:
            return parsed
        logger.debug(f"Text matched the {parse.__name__} sniff but could not be parsed")
        return None

    return None

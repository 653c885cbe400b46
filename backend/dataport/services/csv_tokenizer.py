"""Split decoded CSV text into rows of string fields."""

from __future__ import annotations

import csv
import io
import sys

from dataport.services.errors import CsvFormatError

# Product descriptions can be long; the csv default (128KB) is too tight
csv.field_size_limit(min(sys.maxsize, 2**31 - 1))


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _is_blank(row: list[str]) -> bool:
    return not any(field.strip() for field in row)


def tokenize(text: str) -> list[list[str]]:
    """Return every non-blank row; row 0 is the header.

    Quoting follows RFC 4180: a field that starts with ``"`` is quoted,
    ``""`` inside it is a literal quote and quoted fields may span lines.
    A quote in the middle of an unquoted field is kept as text. Rows made
    only of blank fields are dropped wherever they occur.
    """
    reader = csv.reader(io.StringIO(normalize_newlines(text), newline=""), strict=False)
    try:
        return [row for row in reader if not _is_blank(row)]
    except csv.Error as e:
        raise CsvFormatError(f"CSV parsing error at line {reader.line_num}: {e}") from e


def read_header(text: str, max_columns: int = 100) -> tuple[list[str], int]:
    """Return the first non-blank row (capped) and its full column count."""
    reader = csv.reader(io.StringIO(normalize_newlines(text), newline=""), strict=False)
    try:
        for row in reader:
            if not _is_blank(row):
                return row[:max_columns], len(row)
    except csv.Error as e:
        raise CsvFormatError(f"CSV parsing error: {e}") from e
    return [], 0

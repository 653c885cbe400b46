"""CSV tokenizing: quoting, newlines and blank rows."""

import pytest

from dataport.services.csv_tokenizer import read_header, tokenize


def test_mixed_newlines_and_blank_rows_are_dropped_in_order():
    text = "code,name\r\nA1,Bolt\r\n\r\n,,\nA2,Nut\rA3,Washer"
    assert tokenize(text) == [
        ["code", "name"],
        ["A1", "Bolt"],
        ["A2", "Nut"],
        ["A3", "Washer"],
    ]


def test_doubled_quotes_and_embedded_separators():
    text = 'code,name\nA1,"He said ""hi"", twice"\n'
    assert tokenize(text)[1] == ["A1", 'He said "hi", twice']


def test_quoted_field_spans_lines():
    text = 'code,memo\nA1,"line one\r\nline two"\nA2,x\n'
    rows = tokenize(text)
    assert rows[1] == ["A1", "line one\nline two"]
    assert rows[2] == ["A2", "x"]


def test_quote_inside_unquoted_field_is_literal():
    assert tokenize('code,size\nA1,3"5\n')[1] == ["A1", '3"5']


def test_whitespace_only_row_counts_as_blank():
    assert tokenize("a,b\n  ,\t\nc,d\n") == [["a", "b"], ["c", "d"]]


def test_empty_text():
    assert tokenize("") == []


def test_ragged_rows_are_kept_as_is():
    assert tokenize("a,b,c\n1\n1,2,3,4\n")[1:] == [["1"], ["1", "2", "3", "4"]]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("\n\nA,B,C\n1,2,3\n", (["A", "B", "C"], 3)),
        ("", ([], 0)),
    ],
)
def test_read_header(text, expected):
    assert read_header(text) == expected


def test_read_header_caps_columns():
    headers, total = read_header(",".join(f"c{i}" for i in range(150)), max_columns=100)
    assert len(headers) == 100
    assert headers[-1] == "c99"
    assert total == 150

"""Tests for the CSV, spreadsheet and JSON parsers."""

import json

import pytest

from taxingest.exceptions import FileTooLargeError, MalformedFileError, UnsupportedFileTypeError
from taxingest.parsers import (
    FileKind,
    check_size,
    parse_csv,
    parse_json,
    parse_spreadsheet,
    parse_tabular,
    parse_upload,
    resolve_file_kind,
)


def csv_bytes(lines: list[str]) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


class TestResolveFileKind:
    """Test suite for file-kind resolution."""

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("data.csv", FileKind.CSV),
            ("book.XLSX", FileKind.SPREADSHEET),
            ("legacy.xls", FileKind.SPREADSHEET),
            ("rows.json", FileKind.JSON),
            ("scan.pdf", FileKind.DOCUMENT),
            ("photo.jpeg", FileKind.DOCUMENT),
            ("page.tif", FileKind.DOCUMENT),
            ("notes.txt", FileKind.DOCUMENT),
        ],
    )
    def test_by_extension(self, filename, expected):
        assert resolve_file_kind(filename) == expected

    def test_unsupported_extension(self):
        with pytest.raises(UnsupportedFileTypeError):
            resolve_file_kind("archive.zip", b"PK\x03\x04")

    @pytest.mark.parametrize(
        "content,expected",
        [
            (b"%PDF-1.7 ...", FileKind.DOCUMENT),
            (b"PK\x03\x04rest", FileKind.SPREADSHEET),
            (b"\x89PNG\r\n", FileKind.DOCUMENT),
            (b'  [{"a": 1}]', FileKind.JSON),
            (b"a,b\n1,2\n", FileKind.CSV),
        ],
    )
    def test_sniffed_without_extension(self, content, expected):
        """Without an extension the kind comes from the leading bytes."""
        assert resolve_file_kind("upload", content) == expected

    def test_nothing_to_go_on(self):
        with pytest.raises(UnsupportedFileTypeError):
            resolve_file_kind()


class TestCheckSize:
    """Test suite for the size ceiling."""

    def test_at_limit_accepted(self):
        check_size(b"x" * 10, max_bytes=10)

    def test_over_limit_rejected(self):
        with pytest.raises(FileTooLargeError) as exc_info:
            check_size(b"x" * 11, max_bytes=10, filename="big.csv")

        assert exc_info.value.size == 11
        assert exc_info.value.limit == 10


class TestParseCsv:
    """Test suite for delimited text."""

    def test_rows_and_columns(self):
        result = parse_csv(csv_bytes([
            "Employee Name,Wages,Federal Tax",
            "Jane Doe,\"50,000.00\",6000",
            "John Roe,42000,",
        ]))

        assert result.success is True
        assert result.columns == ["Employee Name", "Wages", "Federal Tax"]
        assert result.total_row_count == 2
        assert result.rows[0] == {"Employee Name": "Jane Doe", "Wages": "50,000.00", "Federal Tax": "6000"}
        assert result.rows[1]["Federal Tax"] is None

    @pytest.mark.parametrize("count", [0, 1, 5, 7])
    def test_preview_is_prefix(self, count):
        """Preview holds min(N, 5) leading rows."""
        lines = ["a,b"] + [f"{i},{i * 2}" for i in range(count)]
        result = parse_csv(csv_bytes(lines))

        assert result.total_row_count == count
        assert len(result.preview) == min(count, 5)
        assert result.preview == result.rows[: min(count, 5)]

    def test_bom_and_header_whitespace(self):
        content = "\ufeff Name , Amount \nA,1\n".encode("utf-8")
        result = parse_csv(content)

        assert result.columns == ["Name", "Amount"]

    def test_trailing_blank_headers_dropped(self):
        result = parse_csv(csv_bytes(["a,b,,", "1,2,,"]))

        assert result.columns == ["a", "b"]
        assert result.rows == [{"a": "1", "b": "2"}]

    def test_short_rows_padded(self):
        result = parse_csv(csv_bytes(["a,b,c", "1"]))

        assert result.rows == [{"a": "1", "b": None, "c": None}]

    def test_extra_cells_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_csv(csv_bytes(["a,b", "1,2,3"]))

    def test_blank_header_in_middle_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_csv(csv_bytes(["a,,c", "1,2,3"]))

    def test_duplicate_header_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_csv(csv_bytes(["a,a", "1,2"]))

    def test_blank_lines_skipped(self):
        result = parse_csv(csv_bytes(["a,b", "", "1,2", "", "3,4"]))

        assert result.total_row_count == 2

    def test_empty_file_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_csv(b"")

    def test_invalid_encoding_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_csv(b"a,b\n\xff\xfe,1\n")


class TestParseSpreadsheet:
    """Test suite for Excel workbooks."""

    def test_rows_and_columns(self, make_workbook):
        content = make_workbook([
            ["Employee Name", "Wages", "Retirement Plan"],
            ["Jane Doe", 50000.5, True],
            [None, None, None],
            ["John Roe", 42000, None],
        ])
        result = parse_spreadsheet(content)

        assert result.columns == ["Employee Name", "Wages", "Retirement Plan"]
        assert result.total_row_count == 2
        assert result.rows[0] == {"Employee Name": "Jane Doe", "Wages": 50000.5, "Retirement Plan": True}
        assert result.rows[1]["Retirement Plan"] is None

    def test_preview_limit(self, make_workbook):
        content = make_workbook([["n"]] + [[i] for i in range(8)])
        result = parse_spreadsheet(content)

        assert result.total_row_count == 8
        assert len(result.preview) == 5

    def test_duplicate_header_rejected(self, make_workbook):
        with pytest.raises(MalformedFileError):
            parse_spreadsheet(make_workbook([["a", "a"], [1, 2]]))

    def test_not_a_workbook(self):
        with pytest.raises(MalformedFileError):
            parse_spreadsheet(b"definitely not a workbook")

    def test_legacy_xls_rejected(self):
        """Binary .xls content that openpyxl cannot open fails descriptively."""
        with pytest.raises(MalformedFileError) as exc_info:
            parse_spreadsheet(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64)

        assert "Excel parsing error" in str(exc_info.value)


class TestParseJson:
    """Test suite for JSON arrays."""

    def test_array_of_objects(self):
        content = json.dumps([
            {"payer": "Bank", "interest": "12.50"},
            {"payer": "Credit Union", "interest": 3, "extra": True},
        ]).encode()
        result = parse_json(content)

        assert result.columns == ["payer", "interest"]
        assert result.total_row_count == 2
        assert result.rows[1]["extra"] is True

    def test_single_object_is_one_row(self):
        result = parse_json(b'{"a": 1}')

        assert result.rows == [{"a": 1}]

    def test_empty_array_rejected(self):
        with pytest.raises(MalformedFileError, match="no data"):
            parse_json(b"[]")

    def test_non_object_element_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_json(b'[{"a": 1}, 2]')

    def test_scalar_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_json(b'"hello"')

    def test_invalid_json_rejected(self):
        with pytest.raises(MalformedFileError):
            parse_json(b'[{"a": 1}')


class TestParseUpload:
    """Test suite for the upload facades."""

    def test_dispatch_by_extension(self, make_workbook):
        result = parse_upload(make_workbook([["a"], [1]]), "book.xlsx")

        assert result.success is True
        assert result.rows == [{"a": 1}]

    def test_failure_reported_in_result(self):
        result = parse_upload(b"a,b\n1,2,3\n", "bad.csv")

        assert result.success is False
        assert result.error
        assert result.rows == []

    def test_oversize_rejected_before_parsing(self):
        result = parse_upload(b"not,even,parsed\n", "big.csv", max_bytes=4)

        assert result.success is False
        assert "limit" in result.error

    def test_unsupported_type(self):
        result = parse_upload(b"whatever", "archive.zip")

        assert result.success is False

    def test_documents_not_tabular(self):
        with pytest.raises(UnsupportedFileTypeError):
            parse_tabular(b"%PDF-1.4", "scan.pdf")

    def test_error_records_filename(self):
        with pytest.raises(MalformedFileError) as exc_info:
            parse_tabular(b"[]", "rows.json")

        assert exc_info.value.filename == "rows.json"
        assert exc_info.value.details["filename"] == "rows.json"

"""Format parsers for uploaded tax data files.

Decodes delimited text, spreadsheets and JSON into raw rows plus the
discovered column list. Every parser either returns all rows of a file or
fails the file as a whole; there is no partial success.
"""

import csv
import io
import json
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, Iterable, Optional

import structlog
from openpyxl import load_workbook

from .config import DEFAULT_MAX_FILE_SIZE
from .exceptions import (
    FileTooLargeError,
    InputError,
    MalformedFileError,
    UnsupportedFileTypeError,
)
from .models.records import ParseResult, RawRow

logger = structlog.get_logger()


class FileKind(str, Enum):
    """Broad kinds of accepted input."""

    CSV = "csv"
    SPREADSHEET = "spreadsheet"
    JSON = "json"
    DOCUMENT = "document"


EXTENSION_KINDS: dict[str, FileKind] = {
    "csv": FileKind.CSV,
    "xlsx": FileKind.SPREADSHEET,
    "xls": FileKind.SPREADSHEET,
    "json": FileKind.JSON,
    "pdf": FileKind.DOCUMENT,
    "png": FileKind.DOCUMENT,
    "jpg": FileKind.DOCUMENT,
    "jpeg": FileKind.DOCUMENT,
    "tiff": FileKind.DOCUMENT,
    "tif": FileKind.DOCUMENT,
    "bmp": FileKind.DOCUMENT,
    "txt": FileKind.DOCUMENT,
}

# Leading bytes of binary formats, checked in order
MAGIC_NUMBERS: list[tuple[bytes, FileKind]] = [
    (b"%PDF", FileKind.DOCUMENT),
    (b"PK\x03\x04", FileKind.SPREADSHEET),
    (b"\xd0\xcf\x11\xe0", FileKind.SPREADSHEET),  # legacy OLE2 .xls
    (b"\x89PNG", FileKind.DOCUMENT),
    (b"\xff\xd8\xff", FileKind.DOCUMENT),
    (b"II*\x00", FileKind.DOCUMENT),
    (b"MM\x00*", FileKind.DOCUMENT),
    (b"BM", FileKind.DOCUMENT),
]


def file_extension(filename: Optional[str]) -> str:
    """Lower-cased extension without the dot, or an empty string."""
    if not filename:
        return ""
    return PurePath(filename).suffix.lower().lstrip(".")


def resolve_file_kind(filename: Optional[str] = None, content: Optional[bytes] = None) -> FileKind:
    """Determine the input kind from the declared extension or the content.

    Raises:
        UnsupportedFileTypeError: If the declared extension is not supported
            or nothing can be determined.
    """
    extension = file_extension(filename)
    if extension:
        try:
            return EXTENSION_KINDS[extension]
        except KeyError:
            raise UnsupportedFileTypeError(
                "Unsupported file type. Please upload CSV, Excel, JSON, PDF, or image files.",
                filename=filename,
                details={"extension": extension},
            ) from None

    if content:
        for magic, kind in MAGIC_NUMBERS:
            if content.startswith(magic):
                return kind
        if content.lstrip(b"\xef\xbb\xbf \t\r\n")[:1] in (b"[", b"{"):
            return FileKind.JSON
        return FileKind.CSV

    raise UnsupportedFileTypeError(
        "Cannot determine file type without an extension or content",
        filename=filename,
    )


def check_size(content: bytes, max_bytes: int = DEFAULT_MAX_FILE_SIZE, filename: Optional[str] = None) -> None:
    """Reject files above the size ceiling before any parsing happens."""
    if len(content) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise FileTooLargeError(
            f"File size exceeds {limit_mb:g}MB limit",
            size=len(content),
            limit=max_bytes,
            filename=filename,
        )


# =============================================================================
# SHARED HELPERS
# =============================================================================

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _header_columns(cells: Iterable[Any], kind: FileKind) -> list[str]:
    """Turn a header row into column names.

    Trailing blank header cells are dropped; blank or duplicate names before
    the last named column fail the file.
    """
    names = ["" if _is_blank(c) else str(c).strip() for c in cells]
    while names and not names[-1]:
        names.pop()

    if not names:
        raise MalformedFileError("Header row is empty", file_kind=kind.value)

    seen: set[str] = set()
    for position, name in enumerate(names, start=1):
        if not name:
            raise MalformedFileError(
                f"Header column {position} is blank", file_kind=kind.value
            )
        if name in seen:
            raise MalformedFileError(
                f"Duplicate column name '{name}' in header", file_kind=kind.value
            )
        seen.add(name)
    return names


def _fit_row(cells: list[Any], columns: list[str], line: int, kind: FileKind) -> RawRow:
    """Pad or truncate a data row to the header width.

    Missing cells become None. Surplus cells are tolerated only when blank.
    """
    surplus = cells[len(columns):]
    if any(not _is_blank(c) for c in surplus):
        raise MalformedFileError(
            f"Row {line} has {len(cells)} fields but the header has {len(columns)}",
            file_kind=kind.value,
            details={"line": line},
        )

    row: RawRow = {}
    for index, column in enumerate(columns):
        value = cells[index] if index < len(cells) else None
        if isinstance(value, str) and value == "":
            value = None
        row[column] = value
    return row


def _decode_text(content: bytes, kind: FileKind) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedFileError(
            f"File is not valid UTF-8 text: {e}", file_kind=kind.value
        ) from e


# =============================================================================
# PARSERS
# =============================================================================

def parse_csv(content: bytes, preview_rows: int = 5) -> ParseResult:
    """Parse delimited text with a header line.

    The first non-empty line defines the columns; empty lines are skipped.
    """
    text = _decode_text(content, FileKind.CSV)

    columns: Optional[list[str]] = None
    rows: list[RawRow] = []
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        for cells in reader:
            if all(_is_blank(c) for c in cells):
                continue
            if columns is None:
                columns = _header_columns(cells, FileKind.CSV)
                continue
            rows.append(_fit_row(cells, columns, reader.line_num, FileKind.CSV))
    except csv.Error as e:
        raise MalformedFileError(
            f"CSV parsing error at line {reader.line_num}: {e}",
            file_kind=FileKind.CSV.value,
        ) from e

    if columns is None:
        raise MalformedFileError("CSV file appears to be empty", file_kind=FileKind.CSV.value)

    return ParseResult.from_rows(rows, columns, preview_rows)


def _cell_value(value: Any) -> Any:
    """Normalize spreadsheet cell values to raw-row scalars."""
    if isinstance(value, datetime) and value.time() == datetime.min.time():
        return value.date()
    if isinstance(value, (str, int, float, bool, date)) or value is None:
        return value
    return str(value)


def parse_spreadsheet(content: bytes, preview_rows: int = 5) -> ParseResult:
    """Parse the first worksheet of an Excel workbook.

    The first row defines the columns. Entirely blank rows are dropped and
    missing cells become None.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise MalformedFileError(
            f"Excel parsing error: {e}", file_kind=FileKind.SPREADSHEET.value
        ) from e

    try:
        if not workbook.worksheets:
            raise MalformedFileError(
                "Excel file has no worksheets", file_kind=FileKind.SPREADSHEET.value
            )
        sheet = workbook.worksheets[0]

        columns: Optional[list[str]] = None
        rows: list[RawRow] = []
        for line, cells in enumerate(sheet.iter_rows(values_only=True), start=1):
            values = [_cell_value(c) for c in cells]
            if columns is None:
                if all(_is_blank(v) for v in values):
                    raise MalformedFileError(
                        "Excel file appears to be empty",
                        file_kind=FileKind.SPREADSHEET.value,
                    )
                columns = _header_columns(values, FileKind.SPREADSHEET)
                continue
            if all(_is_blank(v) for v in values):
                continue
            rows.append(_fit_row(values, columns, line, FileKind.SPREADSHEET))
    finally:
        workbook.close()

    if columns is None:
        raise MalformedFileError(
            "Excel file appears to be empty", file_kind=FileKind.SPREADSHEET.value
        )

    return ParseResult.from_rows(rows, columns, preview_rows)


def parse_json(content: bytes, preview_rows: int = 5) -> ParseResult:
    """Parse a JSON array of objects, or a single object as one row.

    Columns come from the first element's keys; later elements keep their
    own keys.
    """
    text = _decode_text(content, FileKind.JSON)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFileError(
            f"JSON parsing error: {e}", file_kind=FileKind.JSON.value
        ) from e

    if isinstance(data, dict):
        data = [data]
    elif not isinstance(data, list):
        raise MalformedFileError(
            "JSON file must contain an array of objects or a single object",
            file_kind=FileKind.JSON.value,
        )

    if not data:
        raise MalformedFileError("JSON file contains no data", file_kind=FileKind.JSON.value)

    for position, element in enumerate(data, start=1):
        if not isinstance(element, dict):
            raise MalformedFileError(
                f"JSON element {position} is not an object",
                file_kind=FileKind.JSON.value,
                details={"element": position},
            )

    rows: list[RawRow] = [dict(element) for element in data]
    return ParseResult.from_rows(rows, list(rows[0].keys()), preview_rows)


TABULAR_PARSERS = {
    FileKind.CSV: parse_csv,
    FileKind.SPREADSHEET: parse_spreadsheet,
    FileKind.JSON: parse_json,
}


def parse_tabular(
    content: bytes,
    filename: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_FILE_SIZE,
    preview_rows: int = 5,
) -> ParseResult:
    """Parse a tabular file, raising on any failure.

    Raises:
        InputError: For oversize, unsupported or malformed files.
    """
    check_size(content, max_bytes, filename)
    kind = resolve_file_kind(filename, content)
    parser = TABULAR_PARSERS.get(kind)
    if parser is None:
        raise UnsupportedFileTypeError(
            "OCR documents require document extraction, not tabular parsing",
            filename=filename,
            file_kind=kind.value,
        )

    try:
        result = parser(content, preview_rows)
    except InputError as e:
        e.filename = filename
        if filename:
            e.details["filename"] = filename
        raise

    logger.info(
        "upload_parsed",
        filename=filename,
        kind=kind.value,
        rows=result.total_row_count,
        columns=len(result.columns),
    )
    return result


def parse_upload(
    content: bytes,
    filename: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_FILE_SIZE,
    preview_rows: int = 5,
) -> ParseResult:
    """Parse a tabular file, reporting failures in the result."""
    try:
        return parse_tabular(content, filename, max_bytes, preview_rows)
    except InputError as e:
        logger.warning("upload_rejected", filename=filename, error=e.message)
        return ParseResult.failure(e.message)


__all__ = [
    "FileKind",
    "EXTENSION_KINDS",
    "file_extension",
    "resolve_file_kind",
    "check_size",
    "parse_csv",
    "parse_spreadsheet",
    "parse_json",
    "parse_tabular",
    "parse_upload",
]

"""Spreadsheet parsing: first worksheet → list of row dicts keyed by header.

Mirrors the usual "sheet to JSON" behavior: the first row holds the headers,
empty cells are left out of the row dict, fully empty rows are skipped,
blank headers become ``__EMPTY`` and repeated headers get ``_1``, ``_2``...
suffixes.
"""

import csv
import io
import logging
import zipfile
from pathlib import Path
from typing import Any, Iterable, Optional

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from conciliador.errors import UnparsableFileError, UnreadableFileError

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xltx", ".xltm"}
CSV_SUFFIXES = {".csv", ".txt"}


def _unique_headers(raw_headers: Iterable[Any]) -> list[str]:
    headers = []
    seen: dict[str, int] = {}
    for raw in raw_headers:
        name = "__EMPTY" if raw is None or str(raw).strip() == "" else str(raw)
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def _rows_to_dicts(rows: Iterable[Iterable[Any]]) -> list[dict[str, Any]]:
    iterator = iter(rows)
    header_row = next(iterator, None)
    if header_row is None:
        return []
    headers = _unique_headers(header_row)

    records = []
    for row in iterator:
        record = {}
        for header, value in zip(headers, row):
            if value is None or (isinstance(value, str) and value == ""):
                continue
            record[header] = value
        if record:
            records.append(record)
    return records


def parse_excel(file_bytes: bytes, filename: str = "") -> list[dict[str, Any]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise UnparsableFileError(filename, str(e))

    try:
        if not wb.worksheets:
            return []
        ws = wb.worksheets[0]
        return _rows_to_dicts(ws.iter_rows(values_only=True))
    finally:
        wb.close()


def _decode(file_bytes: bytes) -> str:
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Spreadsheets exported on Windows in Brazil are usually cp1252/latin-1
        return file_bytes.decode("latin-1")


def parse_csv(file_bytes: bytes, filename: str = "") -> list[dict[str, Any]]:
    text = _decode(file_bytes)
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    try:
        return _rows_to_dicts(csv.reader(io.StringIO(text), dialect))
    except csv.Error as e:
        raise UnparsableFileError(filename, str(e))


def parse_spreadsheet(file_bytes: Optional[bytes], filename: str) -> list[dict[str, Any]]:
    """Parse an uploaded .xlsx or .csv file into row dicts.

    Raises:
        UnreadableFileError: no bytes were received.
        UnparsableFileError: the content is not a readable spreadsheet.
    """
    if not file_bytes:
        raise UnreadableFileError(filename, "The file is empty.")

    suffix = Path(filename or "").suffix.lower()
    if suffix in CSV_SUFFIXES:
        rows = parse_csv(file_bytes, filename)
    elif suffix in EXCEL_SUFFIXES or zipfile.is_zipfile(io.BytesIO(file_bytes)):
        rows = parse_excel(file_bytes, filename)
    else:
        raise UnparsableFileError(filename, f"Unsupported file type '{suffix or '?'}'.")

    logger.info(f"Parsed {len(rows)} rows from '{filename}'")
    return rows

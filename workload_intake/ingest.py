"""
Raw ingestion: uploaded CSV or XLSX bytes -> loosely-typed rows (column -> cell).

Responsibilities:
- CSV encoding detection + decoding
- XLSX first-sheet reading via openpyxl
- newline normalization
- delimiter detection
- row length enforcement
- blank row skipping
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from charset_normalizer import from_bytes
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import UnsupportedFileError
from .models import EntityKind, NormalizationNote
from .rules import CSV_SUFFIXES, SNIFF_DELIMITERS, WORKBOOK_SUFFIXES

logger = logging.getLogger(__name__)


@dataclass
class RawTable:
    entity_kind: EntityKind
    header: List[str]
    rows: List[Dict[str, Any]]
    notes: List[NormalizationNote] = field(default_factory=list)
    report: Dict[str, Any] = field(default_factory=dict)


def decode_upload(raw: bytes) -> Tuple[str, Dict[str, Any]]:
    """
    Decode upload bytes to text.

    Rules:
    - Detect encoding best-effort via charset-normalizer.
    - A UTF-8 BOM is stripped rather than surfacing as part of the first header.
    - If decode fails, fall back to UTF-8, then to replacement characters.
    - CRLF/CR newlines become LF.
    """
    detected = None
    match = from_bytes(raw).best()
    if match is not None:
        detected = match.encoding

    decode_used = detected or "utf-8"
    if raw.startswith(b"\xef\xbb\xbf") and decode_used.lower().replace("-", "_") in ("utf_8", "utf8"):
        decode_used = "utf-8-sig"

    decode_fallback = False
    try:
        text = raw.decode(decode_used)
    except (UnicodeDecodeError, LookupError):
        try:
            text = raw.decode("utf-8-sig")
            decode_used = "utf-8-sig"
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="replace")
            decode_used = "utf-8"
        decode_fallback = True

    newlines_changed = "\r" in text
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    return text, {
        "detected": detected,
        "decode_used": decode_used,
        "decode_fallback": decode_fallback,
        "newlines_changed": newlines_changed,
    }


def sniff_delimiter(text: str) -> Tuple[str, bool]:
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=SNIFF_DELIMITERS)
    except csv.Error:
        return ",", False
    return dialect.delimiter, True


def _is_empty(cell: Any) -> bool:
    return cell is None or (isinstance(cell, str) and not cell.strip())


def read_csv_records(raw: bytes) -> Tuple[List[List[Any]], Dict[str, Any]]:
    text, encoding_report = decode_upload(raw)
    delimiter, sniffed = sniff_delimiter(text)

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    records = [row for row in reader if not all(_is_empty(cell) for cell in row)]
    return records, {
        "encoding": encoding_report,
        "delimiter": {"detected": delimiter, "sniffed": sniffed},
    }


def read_workbook_records(raw: bytes) -> Tuple[List[List[Any]], Dict[str, Any]]:
    """
    Rows of the first worksheet, cell values as stored (formulas evaluated).

    Numbers stay numbers; the field grammars accept them directly.
    """
    try:
        workbook = load_workbook(io.BytesIO(raw), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise UnsupportedFileError(f"Could not read workbook: {e}") from e

    try:
        sheet = workbook.worksheets[0]
        records = [
            list(row) for row in sheet.iter_rows(values_only=True)
            if not all(_is_empty(cell) for cell in row)
        ]
        title = sheet.title
    finally:
        workbook.close()

    # trailing empty cells are often not stored at all
    width = len(records[0]) if records else 0
    records = [row + [None] * (width - len(row)) for row in records]
    return records, {"sheet": title}


def read_table(filename: str, raw: bytes, entity_kind: EntityKind) -> RawTable:
    """Decode one uploaded CSV or XLSX file into a header plus one dict per non-blank row."""
    suffix = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    if suffix in CSV_SUFFIXES:
        records, report = read_csv_records(raw)
    elif suffix in WORKBOOK_SUFFIXES:
        records, report = read_workbook_records(raw)
    else:
        raise UnsupportedFileError(f"Only CSV and XLSX files are supported, got {filename!r}")

    notes: List[NormalizationNote] = []
    if not records:
        return RawTable(entity_kind, [], [], notes, report)

    header = ["" if cell is None else str(cell).strip() for cell in records[0]]
    while header and not header[-1]:
        header.pop()
    width = len(header)
    rows: List[Dict[str, Any]] = []
    short_rows = 0
    long_rows = 0

    for i, row in enumerate(records[1:]):
        if len(row) > width and all(_is_empty(cell) for cell in row[width:]):
            row = row[:width]
        if len(row) < width:
            short_rows += 1
            notes.append(NormalizationNote(
                entity_kind=entity_kind,
                row=i,
                issue="row_too_short",
                value=str(len(row)),
                action=f"padded_to_{width}",
            ))
            row = list(row) + [""] * (width - len(row))
        elif len(row) > width:
            long_rows += 1
            notes.append(NormalizationNote(
                entity_kind=entity_kind,
                row=i,
                issue="row_too_long",
                value=str(len(row)),
                action=f"truncated_to_{width}",
            ))
            row = row[:width]
        rows.append(dict(zip(header, row)))

    logger.info("read %d %s rows from %s", len(rows), entity_kind.value, filename)

    report["row_width"] = {
        "expected_columns": width,
        "short_rows_padded": short_rows,
        "long_rows_truncated": long_rows,
        "total_rows": len(rows),
    }
    return RawTable(entity_kind, header, rows, notes, report)

# smart_intake/services/file_reader.py
"""
Default file reader for Ingest: bytes -> text (+ page count, + tables).

PDF via pdfplumber, XLSX via openpyxl, CSV via the csv module, anything else
decoded as UTF-8. Synchronous; the pipeline calls it through asyncio.to_thread.
"""
from __future__ import annotations

import csv
import mimetypes
import os
from dataclasses import dataclass
from io import BytesIO, StringIO
from typing import Any, Optional

import pdfplumber
from openpyxl import load_workbook

from ..config import settings
from ..domain.errors import FileParseFailure
from ..domain.pipeline_types import UploadedFile

_GENERIC_MEDIA_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_EXT_MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xlsm": "application/vnd.ms-excel.sheet.macroEnabled.12",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
    ".txt": "text/plain",
}


@dataclass(frozen=True)
class FileContent:
    text: str
    media_type: str
    page_count: Optional[int] = None
    tables: Optional[dict[str, list[list[Any]]]] = None


def _ext(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def resolve_media_type(filename: str, declared: Optional[str]) -> str:
    d = (declared or "").split(";")[0].strip().lower()
    if d not in _GENERIC_MEDIA_TYPES:
        return d
    ext = _ext(filename)
    if ext in _EXT_MEDIA_TYPES:
        return _EXT_MEDIA_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def _truncate(text: str) -> str:
    limit = int(settings.max_raw_text_chars)
    return text[:limit] if limit > 0 else text


def _read_pdf(data: bytes) -> tuple[str, int]:
    with pdfplumber.open(BytesIO(data)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
        return "\n".join(pages), len(pdf.pages)


def _cell(v: Any) -> Any:
    if v is None:
        return ""
    if isinstance(v, (int, float, str, bool)):
        return v
    return str(v)


def _rows_to_csv(rows: list[list[Any]]) -> str:
    buf = StringIO()
    writer = csv.writer(buf)
    for row in rows:
        writer.writerow(row)
    return buf.getvalue()


def _read_xlsx(data: bytes) -> tuple[str, int, dict[str, list[list[Any]]]]:
    wb = load_workbook(BytesIO(data), read_only=True, data_only=True)
    try:
        tables: dict[str, list[list[Any]]] = {}
        parts: list[str] = []
        for ws in wb.worksheets:
            rows = [[_cell(v) for v in row] for row in ws.iter_rows(values_only=True)]
            rows = [r for r in rows if any(c != "" for c in r)]
            tables[ws.title] = rows
            parts.append(f"\n--- Sheet: {ws.title} ---\n")
            parts.append(_rows_to_csv(rows))
        return "".join(parts), len(wb.worksheets), tables
    finally:
        wb.close()


def _read_csv(data: bytes) -> tuple[str, dict[str, list[list[Any]]]]:
    text = data.decode("utf-8-sig", errors="replace")
    reader = csv.reader(StringIO(text))
    rows = [[(c or "").strip() for c in row] for row in reader if any((c or "").strip() for c in row)]
    return text, ({"Sheet1": rows} if rows else {})


def read_file(upload: UploadedFile) -> FileContent:
    media_type = resolve_media_type(upload.filename, upload.media_type)
    ext = _ext(upload.filename)

    if len(upload.content) > int(settings.max_upload_bytes):
        raise FileParseFailure(upload.filename, f"file exceeds {settings.max_upload_bytes} bytes")

    try:
        if ext == ".pdf" or media_type == "application/pdf":
            text, pages = _read_pdf(upload.content)
            return FileContent(text=_truncate(text), media_type=media_type, page_count=pages)

        if ext in (".xlsx", ".xlsm"):
            text, sheets, tables = _read_xlsx(upload.content)
            return FileContent(text=_truncate(text), media_type=media_type, page_count=sheets, tables=tables)

        if ext == ".xls":
            raise FileParseFailure(upload.filename, "legacy .xls workbooks are not supported; save as .xlsx")

        if ext == ".csv" or media_type == "text/csv":
            text, tables = _read_csv(upload.content)
            return FileContent(text=_truncate(text), media_type=media_type, tables=tables or None)

        text = upload.content.decode("utf-8", errors="replace")
        return FileContent(text=_truncate(text), media_type=media_type)
    except FileParseFailure:
        raise
    except Exception as e:
        raise FileParseFailure(upload.filename, str(e) or type(e).__name__, e) from e

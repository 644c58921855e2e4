"""Pull raw text out of uploaded documents."""

from __future__ import annotations

import base64
import binascii
import csv
import io
import logging
import mimetypes
from pathlib import Path
from typing import Iterable, Sequence

from docx import Document as DocxDocument
from openpyxl import load_workbook
from pypdf import PdfReader

from .errors import CorruptInput, UnsupportedFormat
from .normalizer import normalize

logger = logging.getLogger(__name__)

_TEXT_SUFFIXES = {".txt", ".md", ".markdown", ".rst", ".log", ".json"}
_SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm"}
_DELIMITED_SUFFIXES = {".csv": ",", ".tsv": "\t"}
_HTML_SUFFIXES = {".html", ".htm"}

_PDF_TYPES = {"application/pdf"}
_SPREADSHEET_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel.sheet.macroenabled.12",
}
_DOCX_TYPES = {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}


def extract_text(data: bytes, filename: str, content_type: str | None = None) -> str:
    """Return the text content of *data*, dispatching on suffix and MIME type.

    Raises ``UnsupportedFormat`` for binary formats without a parser and
    ``CorruptInput`` (carrying the parser's own message) when parsing fails.
    """

    suffix = Path(filename).suffix.lower()
    mime = _clean_mime(content_type) or mimetypes.guess_type(filename)[0]

    if suffix == ".pdf" or (not suffix and mime in _PDF_TYPES):
        return extract_pdf(data)
    if suffix in _SPREADSHEET_SUFFIXES or (not suffix and mime in _SPREADSHEET_TYPES):
        return extract_spreadsheet(data)
    if suffix in _DELIMITED_SUFFIXES:
        return extract_delimited(data, label=Path(filename).name, delimiter=_DELIMITED_SUFFIXES[suffix])
    if suffix == ".docx" or (not suffix and mime in _DOCX_TYPES):
        return extract_docx(data)
    if suffix in _HTML_SUFFIXES or (mime and "html" in mime):
        return normalize(_decode(data))
    if suffix in _TEXT_SUFFIXES or (mime and mime.startswith("text/")):
        return _decode(data)
    if suffix in {".xls", ".doc", ".ppt", ".pptx"}:
        raise UnsupportedFormat(f"Unsupported document format: {suffix}")
    if _looks_binary(data):
        label = suffix or mime or "unknown"
        raise UnsupportedFormat(f"Unsupported document format: {label}")
    return _decode(data)


def extract_pdf(data: bytes) -> str:
    """Extract page text from a PDF. Image-only pages contribute nothing."""

    try:
        reader = PdfReader(io.BytesIO(data))
        texts = [page.extract_text() or "" for page in reader.pages]
    except Exception as exc:
        logger.warning("extract.pdf.failed error=%s", exc)
        raise CorruptInput(str(exc) or exc.__class__.__name__) from exc
    return "\n\n".join(text.strip() for text in texts if text and text.strip())


def extract_spreadsheet(data: bytes) -> str:
    """Render every worksheet as delimited rows labelled by sheet name."""

    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        logger.warning("extract.spreadsheet.failed error=%s", exc)
        raise CorruptInput(str(exc) or exc.__class__.__name__) from exc

    sections: list[str] = []
    try:
        for sheet in workbook.worksheets:
            rows = _delimit_rows(sheet.iter_rows(values_only=True), delimiter=",")
            if rows:
                sections.append(f"Sheet: {sheet.title}\n{rows}")
    finally:
        workbook.close()
    return "\n\n".join(sections)


def extract_delimited(data: bytes, *, label: str, delimiter: str = ",") -> str:
    text = _decode(data)
    try:
        reader = csv.reader(io.StringIO(text), delimiter=delimiter)
        rows = _delimit_rows(reader, delimiter=",")
    except csv.Error as exc:
        raise CorruptInput(str(exc)) from exc
    return f"Sheet: {label}\n{rows}" if rows else ""


def extract_docx(data: bytes) -> str:
    try:
        document = DocxDocument(io.BytesIO(data))
    except Exception as exc:
        logger.warning("extract.docx.failed error=%s", exc)
        raise CorruptInput(str(exc) or exc.__class__.__name__) from exc

    blocks = [paragraph.text.strip() for paragraph in document.paragraphs if paragraph.text.strip()]
    for table in document.tables:
        rows = _delimit_rows(
            ([cell.text.strip() for cell in row.cells] for row in table.rows),
            delimiter=",",
        )
        if rows:
            blocks.append(rows)
    return "\n\n".join(blocks)


def decode_data_url(value: str) -> tuple[bytes, str | None]:
    """Decode a ``data:<mime>;base64,<payload>`` URL into bytes and its MIME type."""

    header, sep, payload = value.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("Value is not a data URL")
    meta = header[len("data:"):]
    parts = meta.split(";")
    mime = parts[0].strip() or None
    if "base64" in parts[1:]:
        try:
            return base64.b64decode(payload, validate=False), mime
        except (binascii.Error, ValueError) as exc:
            raise CorruptInput(f"Invalid base64 payload: {exc}") from exc
    return payload.encode("utf-8"), mime


def _delimit_rows(rows: Iterable[Sequence[object]], *, delimiter: str) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    for row in rows:
        values = ["" if value is None else str(value).strip() for value in row]
        while values and not values[-1]:
            values.pop()
        if any(values):
            writer.writerow(values)
    return buffer.getvalue().strip()


def _decode(data: bytes) -> str:
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    return data.decode("utf-8", errors="replace")


def _looks_binary(data: bytes) -> bool:
    sample = data[:1024]
    return b"\x00" in sample


def _clean_mime(content_type: str | None) -> str | None:
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None


__all__ = [
    "extract_text",
    "extract_pdf",
    "extract_spreadsheet",
    "extract_delimited",
    "extract_docx",
    "decode_data_url",
]

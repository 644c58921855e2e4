from __future__ import annotations

import base64
import io
from types import SimpleNamespace

import pytest
from docx import Document
from openpyxl import Workbook
from pypdf import PdfReader, PdfWriter

from lodestone.errors import CorruptInput, UnsupportedFormat
from lodestone.extractors import decode_data_url, extract_text


def _encrypted_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    writer.encrypt("secret")
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def test_pdf_pages_are_joined(monkeypatch: pytest.MonkeyPatch) -> None:
    pages = [
        SimpleNamespace(extract_text=lambda: "Refund policy\n"),
        SimpleNamespace(extract_text=lambda: ""),
        SimpleNamespace(extract_text=lambda: "Shipping terms"),
    ]
    monkeypatch.setattr("lodestone.extractors.PdfReader", lambda stream: SimpleNamespace(pages=pages))

    assert extract_text(b"%PDF-1.7", "manual.pdf") == "Refund policy\n\nShipping terms"


def test_encrypted_pdf_surfaces_parser_message() -> None:
    data = _encrypted_pdf()
    with pytest.raises(Exception) as raw:
        [page.extract_text() for page in PdfReader(io.BytesIO(data)).pages]

    with pytest.raises(CorruptInput) as excinfo:
        extract_text(data, "locked.pdf")

    assert str(excinfo.value) == str(raw.value)


def test_image_only_pdf_yields_no_text() -> None:
    assert extract_text(_blank_pdf(), "scan.pdf") == ""


def test_corrupt_pdf_raises() -> None:
    with pytest.raises(CorruptInput):
        extract_text(b"this is not a pdf", "broken.pdf")


def test_pdf_detected_from_content_type_without_suffix(monkeypatch: pytest.MonkeyPatch) -> None:
    pages = [SimpleNamespace(extract_text=lambda: "Warranty")]
    monkeypatch.setattr("lodestone.extractors.PdfReader", lambda stream: SimpleNamespace(pages=pages))

    assert extract_text(b"%PDF", "download", "application/pdf; charset=binary") == "Warranty"


def test_spreadsheet_renders_each_sheet() -> None:
    workbook = Workbook()
    plans = workbook.active
    plans.title = "Plans"
    plans.append(["Plan", "Days"])
    plans.append(["Annual", 30])
    workbook.create_sheet("Empty")
    contacts = workbook.create_sheet("Contacts")
    contacts.append(["Email"])
    contacts.append(["support@example.com"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    text = extract_text(buffer.getvalue(), "plans.xlsx")

    assert text == (
        "Sheet: Plans\nPlan,Days\nAnnual,30\n\n"
        "Sheet: Contacts\nEmail\nsupport@example.com"
    )


def test_csv_and_tsv_are_labelled_by_filename() -> None:
    assert extract_text(b"name,days\nAnnual,30\n", "plans.csv") == "Sheet: plans.csv\nname,days\nAnnual,30"
    assert extract_text(b"a\tb\n1\t2\n", "grid.tsv") == "Sheet: grid.tsv\na,b\n1,2"


def test_docx_paragraphs_and_tables() -> None:
    document = Document()
    document.add_paragraph("Refund policy")
    document.add_paragraph("Refunds take five days.")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Plan"
    table.cell(0, 1).text = "Days"
    table.cell(1, 0).text = "Annual"
    table.cell(1, 1).text = "30"
    buffer = io.BytesIO()
    document.save(buffer)

    text = extract_text(buffer.getvalue(), "policy.docx")

    assert text == "Refund policy\n\nRefunds take five days.\n\nPlan,Days\nAnnual,30"


def test_html_documents_are_normalised() -> None:
    html = b"<html><body><main><h2>Invoices</h2><p>Sent monthly.</p></main></body></html>"

    assert extract_text(html, "invoices.html") == "## Invoices\n\nSent monthly."


def test_plain_text_is_decoded_without_bom() -> None:
    assert extract_text(b"\xef\xbb\xbf" + "café notes".encode("utf-8"), "notes.txt") == "café notes"


def test_unknown_text_like_input_is_decoded() -> None:
    assert extract_text(b"plain words", "README") == "plain words"


@pytest.mark.parametrize(
    ("data", "filename"),
    [
        (b"\xd0\xcf\x11\xe0legacy", "budget.xls"),
        (b"\xd0\xcf\x11\xe0legacy", "letter.doc"),
        (b"PK\x03\x04\x00\x00slides", "deck.pptx"),
        (b"\x00\x01\x02binary", "archive.zip"),
    ],
)
def test_unsupported_formats_raise(data: bytes, filename: str) -> None:
    with pytest.raises(UnsupportedFormat) as excinfo:
        extract_text(data, filename)

    assert "Unsupported document format" in str(excinfo.value)


def test_decode_data_url() -> None:
    payload = base64.b64encode(b"hello").decode("ascii")

    assert decode_data_url(f"data:text/plain;base64,{payload}") == (b"hello", "text/plain")
    assert decode_data_url("data:,plain%20text") == (b"plain%20text", None)
    with pytest.raises(ValueError):
        decode_data_url("https://example.com/file.pdf")

import io
import os

import pytest
from docx import Document

from promptform import text_extraction
from promptform.errors import CorruptDocument, EmptyDocument, UnsupportedDocument
from promptform.text_extraction import DOCX_MIME, PDF_MIME, buffered_upload, extract_text


def _docx_bytes():
    doc = Document()
    doc.add_paragraph("Event registration")
    doc.add_paragraph("")
    doc.add_paragraph("Full name: ________")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Meal"
    table.rows[0].cells[1].text = "Veg / Meat"
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def test_plain_text_decoded(tmp_path):
    assert extract_text(b"  Name:\nEmail:\n ", "text/plain", "a.txt", str(tmp_path)) == "Name:\nEmail:"


def test_plain_text_invalid_utf8_is_replaced(tmp_path):
    out = extract_text(b"caf\xe9 menu", "text/plain; charset=latin-1", None, str(tmp_path))
    assert out == "caf\ufffd menu"


def test_extension_is_enough(tmp_path):
    assert extract_text(b"hello", "application/octet-stream", "notes.TXT", str(tmp_path)) == "hello"


def test_docx_paragraphs_and_tables(tmp_path):
    out = extract_text(_docx_bytes(), DOCX_MIME, "form.docx", str(tmp_path))
    assert out == "Event registration\nFull name: ________\nMeal | Veg / Meat"
    assert os.listdir(tmp_path) == []


def test_pdf_uses_pdf_reader(tmp_path, monkeypatch):
    seen = {}

    def fake_pdf_text(path):
        seen["suffix"] = os.path.splitext(path)[1]
        seen["exists"] = os.path.exists(path)
        return "Page one\nPage two"

    monkeypatch.setattr(text_extraction, "_pdf_text", fake_pdf_text)
    assert extract_text(b"%PDF-1.4 fake", PDF_MIME, "scan.pdf", str(tmp_path)) == "Page one\nPage two"
    assert seen == {"suffix": ".pdf", "exists": True}
    assert os.listdir(tmp_path) == []


def test_unsupported_type_checked_first(tmp_path):
    with pytest.raises(UnsupportedDocument) as exc:
        extract_text(b"", "image/png", "photo.png", str(tmp_path))
    assert exc.value.status_code == 400


def test_empty_upload(tmp_path):
    with pytest.raises(EmptyDocument):
        extract_text(b"", "text/plain", "a.txt", str(tmp_path))


def test_whitespace_only_text(tmp_path):
    with pytest.raises(EmptyDocument):
        extract_text(b" \n\t ", "text/plain", "a.txt", str(tmp_path))


def test_corrupt_docx_cleans_up(tmp_path):
    with pytest.raises(CorruptDocument) as exc:
        extract_text(b"definitely not a zip archive", DOCX_MIME, "broken.docx", str(tmp_path))
    body = exc.value.to_dict()
    assert body["type"] == "corrupt_document"
    assert "re-save it as .docx" in body["message"]
    assert body["details"]
    assert os.listdir(tmp_path) == []


def test_buffered_upload_removes_file_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with buffered_upload(b"abc", ".bin", str(tmp_path)) as path:
            with open(path, "rb") as fh:
                assert fh.read() == b"abc"
            raise RuntimeError("boom")
    assert os.listdir(tmp_path) == []

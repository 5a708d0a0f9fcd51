import os
import tempfile
import uuid
from contextlib import contextmanager
from typing import Iterator, List

import pdfplumber
from docx import Document

from promptform.errors import CorruptDocument, EmptyDocument, UnsupportedDocument
from promptform.google_helpers import TEMP_DIR, logger

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@contextmanager
def buffered_upload(data: bytes, suffix: str = "", temp_dir: str | None = None) -> Iterator[str]:
    """
    Write the upload to a temp file and yield its path.
    The file is removed on every exit path, parse failures included.
    """
    directory = temp_dir or TEMP_DIR
    os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix=f"upload-{uuid.uuid4().hex[:8]}-", suffix=suffix, dir=directory)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[UPLOAD] Could not remove temp file {path}: {e}")


def _kind_of(mime_type: str | None, filename: str | None) -> str | None:
    mime = (mime_type or "").split(";")[0].strip().lower()
    ext = os.path.splitext(filename or "")[1].lower()

    if mime.startswith("text/") or ext == ".txt":
        return "text"
    if mime == PDF_MIME or ext == ".pdf":
        return "pdf"
    if mime == DOCX_MIME or ext == ".docx":
        return "docx"
    return None


def _pdf_text(path: str) -> str:
    pages: List[str] = []
    with pdfplumber.open(path) as pdf:
        for page in pdf.pages:
            text = page.extract_text()
            if text:
                pages.append(text)
    return "\n".join(pages)


def _docx_text(path: str) -> str:
    doc = Document(path)
    content = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                content.append(" | ".join(cells))
    return "\n".join(content)


def extract_text(data: bytes, mime_type: str | None = None, filename: str | None = None, temp_dir: str | None = None) -> str:
    """
    bytes + declared MIME type / filename -> plain text.

    text/* or .txt        -> UTF-8 decode (invalid bytes replaced)
    application/pdf, .pdf -> pdfplumber, page texts joined by newlines
    DOCX MIME, .docx      -> python-docx paragraphs + table cells

    Raises UnsupportedDocument, EmptyDocument or CorruptDocument.
    """
    kind = _kind_of(mime_type, filename)
    if kind is None:
        raise UnsupportedDocument(
            f"Unsupported file type '{mime_type or filename or 'unknown'}'. Upload a .txt, .pdf or .docx file."
        )

    if not data:
        raise EmptyDocument("The uploaded file is empty.")

    if kind == "text":
        text = data.decode("utf-8", errors="replace")
    else:
        suffix = ".pdf" if kind == "pdf" else ".docx"
        with buffered_upload(data, suffix=suffix, temp_dir=temp_dir) as path:
            try:
                text = _pdf_text(path) if kind == "pdf" else _docx_text(path)
            except Exception as e:
                logger.warning(f"[EXTRACT] {kind} parsing failed for {filename or 'upload'}: {e}")
                if kind == "docx":
                    remedy = "The file may be corrupted or not a real .docx. Open it in Word and re-save it as .docx."
                else:
                    remedy = "The file may be corrupted or password protected. Re-export it as PDF and try again."
                raise CorruptDocument(
                    f"Could not read the {kind.upper()} document.",
                    extra={"details": str(e), "message": remedy},
                ) from e

    text = text.strip()
    if not text:
        raise EmptyDocument(
            "No text could be extracted from the document.",
            extra={"message": "If the document is scanned, upload it as an image instead."},
        )
    return text

"""Document-to-text conversion for the extraction prompt."""

import io
import logging

import pdfplumber

from docbatch.models.status import DocumentType

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Raised when a document cannot be converted to text."""


def _page_text(page: pdfplumber.page.Page) -> str:  # type: ignore[name-defined]
    """Extract text from a pdfplumber page using word-level joining to preserve spaces."""
    words = page.extract_words(x_tolerance=3, y_tolerance=3, keep_blank_chars=False)
    if not words:
        return ""
    lines: list[str] = []
    current_line: list[str] = []
    prev_bottom: float = words[0]["bottom"]
    for word in words:
        if abs(word["bottom"] - prev_bottom) > 5:
            lines.append(" ".join(current_line))
            current_line = []
        current_line.append(word["text"])
        prev_bottom = word["bottom"]
    if current_line:
        lines.append(" ".join(current_line))
    return "\n".join(lines)


def _pdf_text(document_bytes: bytes) -> str:
    with pdfplumber.open(io.BytesIO(document_bytes)) as pdf:
        return "\n\n".join(_page_text(p) for p in pdf.pages)


class DocumentConverter:
    """Turns raw document bytes into normalized text."""

    def convert(self, document_bytes: bytes, document_name: str) -> str:
        """Return the text content of *document_bytes*.

        Raises ConversionError for unsupported types, unreadable files and
        documents with no extractable text.
        """
        doc_type = DocumentType.from_filename(document_name)
        logger.info("converting %s (%s, %d bytes)", document_name, doc_type, len(document_bytes))
        if not document_bytes:
            raise ConversionError(f"{document_name} is empty")

        if doc_type == DocumentType.PDF:
            try:
                text = _pdf_text(document_bytes)
            except Exception as exc:
                raise ConversionError(f"could not read PDF {document_name}: {exc}") from exc
        elif doc_type in (DocumentType.TEXT, DocumentType.HTML):
            try:
                text = document_bytes.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ConversionError(f"{document_name} is not valid UTF-8 text") from exc
        else:
            raise ConversionError(f"unsupported document type {doc_type} for {document_name}")

        text = text.replace("\r\n", "\n").strip()
        if not text:
            raise ConversionError(f"no text could be extracted from {document_name}")
        return text

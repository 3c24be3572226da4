"""Turn uploaded files into :class:`~docrag.models.Document` instances."""
from __future__ import annotations

import logging
import math
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Optional

from docx import Document as DocxDocument
from pdfminer.high_level import extract_text as pdf_extract_text

from docrag.errors import ExtractionError
from docrag.models import Document, DocumentType

LOGGER = logging.getLogger(__name__)

CHARS_PER_PAGE_ESTIMATE = 3500
SUPPORTED_SUFFIXES = (".txt", ".md", ".docx", ".pdf")
_WORD_NAMESPACE = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"


def estimate_pages(text: str, chars_per_page: int = CHARS_PER_PAGE_ESTIMATE) -> int:
    return max(1, math.ceil(len(text) / chars_per_page))


def extract_document(
    path: Path,
    name: Optional[str] = None,
    doc_type: Optional[DocumentType] = DocumentType.GENERAL,
) -> Document:
    """Extract text and page count from a plain text, Word or PDF file.

    Raises :class:`ExtractionError` when the format is unsupported or no text
    could be recovered.
    """

    display_name = name or path.name
    suffix = path.suffix.lower()
    if suffix in {".txt", ".md"}:
        text = _read_text_file(path)
        pages = estimate_pages(text)
    elif suffix == ".docx":
        text = _extract_docx(path)
        pages = estimate_pages(text)
    elif suffix == ".pdf":
        text, pages = _extract_pdf(path)
    else:
        raise ExtractionError(f"Unsupported file type for {display_name}; expected one of {SUPPORTED_SUFFIXES}")

    if not text.strip():
        raise ExtractionError(f"No text could be extracted from {display_name}")

    LOGGER.info("Extracted %s chars (%s pages) from %s", len(text), pages, display_name)
    return Document(text=text, total_pages=pages, name=display_name, doc_type=doc_type)


def _read_text_file(path: Path) -> str:
    for encoding in ("utf-8", "utf-16", "latin-1"):
        try:
            return path.read_text(encoding=encoding)
        except UnicodeDecodeError:
            continue
        except OSError as error:
            raise ExtractionError(f"Failed to read text file {path.name}") from error
    raise ExtractionError(f"Unable to decode text file {path.name}")


def _extract_docx(path: Path) -> str:
    try:
        document = DocxDocument(str(path))
    except Exception:
        LOGGER.warning("python-docx failed to process %s; attempting fallback", path)
        return _fallback_docx(path)
    paragraphs = [paragraph.text for paragraph in document.paragraphs if paragraph.text]
    return "\n\n".join(paragraphs)


def _fallback_docx(path: Path) -> str:
    try:
        with zipfile.ZipFile(path) as archive:
            xml_bytes = archive.read("word/document.xml")
        root = ET.fromstring(xml_bytes)
    except (OSError, KeyError, zipfile.BadZipFile, ET.ParseError) as error:
        raise ExtractionError(f"Failed to read Word document {path.name}") from error

    paragraphs = []
    for paragraph in root.iter(f"{_WORD_NAMESPACE}p"):
        text = "".join(node.text or "" for node in paragraph.iter(f"{_WORD_NAMESPACE}t"))
        if text:
            paragraphs.append(text)
    return "\n\n".join(paragraphs)


def _extract_pdf(path: Path) -> tuple[str, int]:
    try:
        text = pdf_extract_text(str(path)) or ""
    except Exception as error:
        LOGGER.exception("pdfminer failed to extract text from %s", path)
        raise ExtractionError(f"Failed to extract text from PDF {path.name}") from error

    # pdfminer terminates every page with a form feed.
    pages = text.count("\f")
    return text.replace("\f", "\n"), max(pages, 1)


__all__ = ["SUPPORTED_SUFFIXES", "estimate_pages", "extract_document"]

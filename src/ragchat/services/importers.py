"""PDF import helpers that turn uploaded documents into indexable text."""

from __future__ import annotations

import io
import logging
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from pypdf import PdfReader

__all__ = [
    "ImporterError",
    "ImportResult",
    "PDFImportHandler",
    "clean_pdf_text",
]

LOGGER = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_SPACE = re.compile(r"[ \t]+")
_HYPHENATED_BREAK = re.compile(r"([a-zA-Z])-\s*\n\s*([a-zA-Z])")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


class ImporterError(RuntimeError):
    """Raised when a file import operation fails."""


@dataclass(slots=True)
class ImportResult:
    """Outcome returned by a file import handler."""

    text: str
    title: str | None = None
    page_count: int = 0


def clean_pdf_text(raw_text: str) -> str:
    """Normalize text extracted from a PDF before chunking."""

    text = unicodedata.normalize("NFKC", raw_text)
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _HYPHENATED_BREAK.sub(r"\1\2", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


class PDFImportHandler:
    """Convert PDF documents into cleaned plain text using pypdf."""

    name: str = "pdf"
    extensions: tuple[str, ...] = (".pdf",)
    content_type: str = "application/pdf"

    def __init__(self, *, reader_cls: type | None = None) -> None:
        self._reader_cls = reader_cls or PdfReader

    def supports(self, path: Path | str) -> bool:
        return Path(path).suffix.lower() in self.extensions

    def import_file(self, path: Path | str) -> ImportResult:
        target = Path(path)
        if not target.exists():
            raise FileNotFoundError(target)
        with target.open("rb") as handle:
            return self._extract(handle, title=target.name)

    def import_bytes(self, data: bytes, title: str | None = None) -> ImportResult:
        if not data:
            raise ImporterError("PDF payload is empty.")
        return self._extract(io.BytesIO(data), title=title)

    def _extract(self, stream: BinaryIO, *, title: str | None) -> ImportResult:
        try:
            reader: Any = self._reader_cls(stream)
        except Exception as exc:
            raise ImporterError(f"Unable to open PDF: {exc}") from exc

        page_texts: list[str] = []
        pages = getattr(reader, "pages", [])
        for index, page in enumerate(pages):
            try:
                chunk = str(page.extract_text() or "")
            except Exception as exc:
                LOGGER.debug("Failed to extract page %s: %s", index, exc)
                continue
            if chunk.strip():
                page_texts.append(chunk)

        LOGGER.info("Extracted %d page(s) from %s", len(pages), title or "PDF")
        text = clean_pdf_text("\n".join(page_texts))
        LOGGER.debug("Cleaned PDF text length: %d", len(text))
        return ImportResult(text=text, title=title, page_count=len(pages))

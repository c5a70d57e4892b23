"""Text extraction from downloaded drive files.

Turns a file's raw bytes into plain text for chunking.  Dispatch order:

1. **Plain text** -- a ``text/*`` MIME type, a textual ``application/*``
   type (json, xml, csv, yaml, javascript, typescript) or a plain-text
   extension is decoded as UTF-8.
2. **Structured formats** -- chosen by the lowercased file extension:

   ========  ==========================================
   ``.pdf``   PyMuPDF (``fitz``), page text
   ``.docx``  python-docx, paragraphs and table rows
   ``.pptx``  python-pptx, shape text per slide
   ``.xlsx``  openpyxl, cell values per row per sheet
   ``.odt``   OpenDocument ``content.xml`` via BeautifulSoup
   ``.odp``   (same)
   ``.ods``   (same)
   ========  ==========================================

3. Anything else raises :class:`UnsupportedFileTypeError`.

Parsers are synchronous and CPU bound; :meth:`TextExtractor.extract_async`
runs them in a worker thread so the event loop keeps serving other files.
"""

from __future__ import annotations

import asyncio
import io
import re
import zipfile
from collections.abc import Callable
from pathlib import PurePosixPath

import fitz
import structlog
from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from openpyxl import load_workbook
from pptx import Presentation

from drive_knowledge.utils.errors import ExtractionError, UnsupportedFileTypeError

logger = structlog.get_logger(logger_name=__name__)

_PLAIN_TEXT_MIME = re.compile(
    r"^text/|^application/(json|xml|csv|yaml|x-yaml|javascript|typescript)$",
    re.IGNORECASE,
)

PLAIN_TEXT_EXTENSIONS = frozenset(
    {".txt", ".json", ".xml", ".csv", ".yaml", ".yml", ".js", ".ts", ".md"}
)

_ODF_EXTENSIONS = frozenset({".odt", ".odp", ".ods"})


def is_plain_text(filename: str, mime_type: str | None = None) -> bool:
    """Return ``True`` when the file should be decoded directly as UTF-8."""
    if mime_type and _PLAIN_TEXT_MIME.search(mime_type.strip()):
        return True
    return file_extension(filename) in PLAIN_TEXT_EXTENSIONS


def file_extension(filename: str) -> str:
    """Lowercased extension including the dot, or ``""``."""
    return PurePosixPath(filename).suffix.lower()


class TextExtractor:
    """Dispatches a file buffer to the matching text parser."""

    def __init__(self) -> None:
        self._extractors: dict[str, Callable[[bytes], str]] = {
            ".pdf": self._extract_pdf,
            ".docx": self._extract_docx,
            ".pptx": self._extract_pptx,
            ".xlsx": self._extract_xlsx,
        }
        for ext in _ODF_EXTENSIONS:
            self._extractors[ext] = self._extract_odf

    def supported_extensions(self) -> frozenset[str]:
        return PLAIN_TEXT_EXTENSIONS | frozenset(self._extractors)

    def extract(self, buffer: bytes, filename: str, mime_type: str | None = None) -> str:
        """Extract plain text from *buffer*.

        Raises
        ------
        UnsupportedFileTypeError
            If the extension has no registered parser.
        ExtractionError
            If the parser fails on the content.
        """
        if is_plain_text(filename, mime_type):
            return buffer.decode("utf-8", errors="replace")

        ext = file_extension(filename)
        extractor = self._extractors.get(ext)
        if extractor is None:
            raise UnsupportedFileTypeError(f"Unsupported file type: {ext or filename}")

        try:
            text = extractor(buffer)
        except Exception as exc:
            logger.warning("text_extraction_failed", file=filename, extension=ext, error=str(exc))
            raise ExtractionError(f"Failed to extract text from {filename}: {exc}") from exc

        logger.debug("text_extracted", file=filename, extension=ext, characters=len(text))
        return text

    async def extract_async(self, buffer: bytes, filename: str, mime_type: str | None = None) -> str:
        """Run :meth:`extract` in a worker thread."""
        return await asyncio.to_thread(self.extract, buffer, filename, mime_type)

    # ------------------------------------------------------------------
    # Format parsers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(buffer: bytes) -> str:
        doc = fitz.open(stream=buffer, filetype="pdf")
        pages: list[str] = []
        try:
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
        finally:
            doc.close()
        return "\n\n".join(pages)

    @staticmethod
    def _extract_docx(buffer: bytes) -> str:
        doc = DocxDocument(io.BytesIO(buffer))
        paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                row_text = " | ".join(cell.text.strip() for cell in row.cells if cell.text.strip())
                if row_text:
                    paragraphs.append(row_text)
        return "\n\n".join(paragraphs)

    @staticmethod
    def _extract_pptx(buffer: bytes) -> str:
        prs = Presentation(io.BytesIO(buffer))
        slides_text: list[str] = []
        for slide in prs.slides:
            parts = [
                shape.text_frame.text
                for shape in slide.shapes
                if shape.has_text_frame and shape.text_frame.text.strip()
            ]
            if parts:
                slides_text.append("\n".join(parts))
        return "\n\n".join(slides_text)

    @staticmethod
    def _extract_xlsx(buffer: bytes) -> str:
        wb = load_workbook(io.BytesIO(buffer), read_only=True, data_only=True)
        sheets: list[str] = []
        try:
            for sheet in wb.worksheets:
                rows: list[str] = []
                for row in sheet.iter_rows(values_only=True):
                    values = ["" if cell is None else str(cell) for cell in row]
                    if any(v.strip() for v in values):
                        rows.append("\t".join(values))
                if rows:
                    sheets.append(f"{sheet.title}\n" + "\n".join(rows))
        finally:
            wb.close()
        return "\n\n".join(sheets)

    @staticmethod
    def _extract_odf(buffer: bytes) -> str:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            content = archive.read("content.xml")
        # html.parser keeps namespace prefixes in tag names ("text:p").
        soup = BeautifulSoup(content.decode("utf-8", errors="replace"), "html.parser")
        body = soup.find("office:body") or soup
        # Paragraphs, headings and spreadsheet cells all end in text:p / text:h.
        blocks = [el.get_text() for el in body.find_all(["text:p", "text:h"])]
        return "\n".join(block for block in blocks if block.strip())

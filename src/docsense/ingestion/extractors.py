"""Format-specific text extraction keyed by declared media type."""

from __future__ import annotations

import csv
import io
import json
import os
import tempfile
import zipfile
from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping, Protocol, Sequence

from bs4 import BeautifulSoup
from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader
from openpyxl import load_workbook

from docsense.ingestion.chunking import split_sections
from docsense.ingestion.fetch import FetchedFile
from docsense.metrics.observability import get_logger
from docsense.models import ChunkMetadata, ExtractedChunk, ProcessingStatus

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
HTML = "text/html"
CSV = "text/csv"
NOTEBOOK = "application/x-ipynb+json"
JPEG = "image/jpeg"
PNG = "image/png"

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_JPEG_MAGIC = b"\xff\xd8\xff"


class ExtractionError(RuntimeError):
    """Raised only when even the diagnostic fallback chunk cannot be produced."""


class Extractor(Protocol):
    """Turns one fetched file into raw content chunks."""

    kind: str

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        """Return the chunks for ``file``; may raise on unreadable content."""


def _decode(file: FetchedFile) -> str:
    return file.data.decode("utf-8-sig")


@contextmanager
def _spooled(file: FetchedFile, suffix: str) -> Iterator[str]:
    """Expose the fetched bytes as a temporary path for path-based loaders."""

    handle = tempfile.NamedTemporaryFile(suffix=suffix, delete=False)
    try:
        with handle:
            handle.write(file.data)
        yield handle.name
    finally:
        os.unlink(handle.name)


def _sections(kind: str, label: str, file: FetchedFile, text: str) -> List[ExtractedChunk]:
    return [
        ExtractedChunk(
            content=section,
            metadata=ChunkMetadata(
                type=kind,
                section=f"{label} {index}",
                filename=file.name,
                chunk_index=index - 1,
            ),
        )
        for index, section in enumerate(split_sections(text), start=1)
    ]


class PdfExtractor:
    kind = "pdf"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        with _spooled(file, ".pdf") as path:
            pages = PyPDFLoader(path).load()
        chunks: List[ExtractedChunk] = []
        for page in pages:
            page_number = int(page.metadata.get("page", 0)) + 1
            for section in split_sections(page.page_content):
                chunks.append(
                    ExtractedChunk(
                        content=section,
                        metadata=ChunkMetadata(
                            type=self.kind,
                            section=f"Section {len(chunks) + 1}",
                            filename=file.name,
                            chunk_index=len(chunks),
                            page=page_number,
                        ),
                    ),
                )
        if not chunks:
            raise ValueError("No text content found - might be image-based PDF or scanned document")
        return chunks


class DocxExtractor:
    kind = "docx"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        with _spooled(file, ".docx") as path:
            documents = Docx2txtLoader(path).load()
        text = "\n\n".join(document.page_content for document in documents)
        return _sections(self.kind, "Paragraph", file, text)


class SpreadsheetExtractor:
    """One chunk per data row; the first non-empty row of each sheet is the header."""

    kind = "xlsx"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        workbook = load_workbook(io.BytesIO(file.data), read_only=True, data_only=True)
        chunks: List[ExtractedChunk] = []
        try:
            for sheet in workbook.worksheets:
                header: List[str] | None = None
                for index, row in enumerate(sheet.iter_rows(values_only=True), start=1):
                    cells = [_cell_text(value) for value in row]
                    if not any(cells):
                        continue
                    if header is None:
                        header = [cell or f"Column {position}" for position, cell in enumerate(cells, start=1)]
                        continue
                    pairs = _row_pairs(header, cells)
                    chunks.append(
                        ExtractedChunk(
                            content=", ".join(pairs),
                            metadata=ChunkMetadata(
                                type=self.kind,
                                section=f"{sheet.title} Row {index}",
                                filename=file.name,
                                row=index,
                                sheet=sheet.title,
                            ),
                        ),
                    )
        finally:
            workbook.close()
        return chunks


def _cell_text(value: object) -> str:
    return "" if value is None else str(value).strip()


def _row_pairs(header: Sequence[str], cells: Sequence[str]) -> List[str]:
    pairs: List[str] = []
    for position, cell in enumerate(cells):
        if not cell:
            continue
        key = header[position] if position < len(header) else f"Column {position + 1}"
        pairs.append(f"{key}: {cell}")
    return pairs


class PresentationExtractor:
    """Slides are not parsed; a valid archive yields a placeholder chunk."""

    kind = "pptx"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        if not zipfile.is_zipfile(io.BytesIO(file.data)):
            raise ValueError("File is not a valid presentation archive")
        return [
            ExtractedChunk(
                content=f"PowerPoint presentation: {file.name}",
                metadata=ChunkMetadata(
                    type=self.kind,
                    section="Presentation",
                    filename=file.name,
                    processing_status=ProcessingStatus.PLACEHOLDER,
                ),
            ),
        ]


class HtmlExtractor:
    kind = "html"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        soup = BeautifulSoup(_decode(file), "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        blocks = [" ".join(block.split()) for block in split_sections(soup.get_text("\n"))]
        return _sections(self.kind, "Section", file, "\n\n".join(blocks))


class CsvExtractor:
    kind = "csv"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        reader = csv.DictReader(io.StringIO(_decode(file)), restkey="_extra", restval="", strict=True)
        chunks: List[ExtractedChunk] = []
        for index, record in enumerate(reader, start=1):
            content = ", ".join(f"{key}: {value}" for key, value in record.items())
            chunks.append(
                ExtractedChunk(
                    content=content,
                    metadata=ChunkMetadata(
                        type=self.kind,
                        section=f"Row {index}",
                        filename=file.name,
                        row=index,
                    ),
                ),
            )
        return chunks


class NotebookExtractor:
    """One chunk per non-empty cell, tagged with the cell type."""

    kind = "notebook"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        notebook = json.loads(_decode(file))
        cells = notebook.get("cells") if isinstance(notebook, dict) else None
        if not isinstance(cells, list):
            raise ValueError("Notebook JSON has no cells list")
        chunks: List[ExtractedChunk] = []
        for index, cell in enumerate(cells, start=1):
            source = cell.get("source") if isinstance(cell, dict) else None
            if not source:
                continue
            content = "".join(source) if isinstance(source, list) else str(source)
            if not content.strip():
                continue
            chunks.append(
                ExtractedChunk(
                    content=content,
                    metadata=ChunkMetadata(
                        type=self.kind,
                        section=f"Cell {index}",
                        filename=file.name,
                        cell=index,
                        cell_type=cell.get("cell_type"),
                    ),
                ),
            )
        return chunks


class ImageExtractor:
    """No OCR; a recognisable PNG or JPEG yields a placeholder chunk."""

    kind = "image"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        if not (file.data.startswith(_PNG_MAGIC) or file.data.startswith(_JPEG_MAGIC)):
            raise ValueError("Unrecognised image data")
        return [
            ExtractedChunk(
                content=f"Image file: {file.name}",
                metadata=ChunkMetadata(
                    type=self.kind,
                    section="Image Content",
                    filename=file.name,
                    processing_status=ProcessingStatus.PLACEHOLDER,
                ),
            ),
        ]


class PlainTextExtractor:
    kind = "text"

    def extract(self, file: FetchedFile) -> List[ExtractedChunk]:
        return _sections(self.kind, "Paragraph", file, _decode(file))


def default_extractors() -> Dict[str, Extractor]:
    image = ImageExtractor()
    return {
        PDF: PdfExtractor(),
        DOCX: DocxExtractor(),
        XLSX: SpreadsheetExtractor(),
        PPTX: PresentationExtractor(),
        HTML: HtmlExtractor(),
        CSV: CsvExtractor(),
        NOTEBOOK: NotebookExtractor(),
        JPEG: image,
        PNG: image,
    }


class ExtractionDispatcher:
    """Route a fetched file to its extractor; unknown types are read as plain text.

    ``extract`` never raises for unreadable content. A failing extractor, or
    one that yields nothing, is replaced by a single chunk describing the
    failure with ``processingStatus: failed``.
    """

    _logger = get_logger("extraction")

    def __init__(
        self,
        extractors: Mapping[str, Extractor] | None = None,
        fallback: Extractor | None = None,
    ) -> None:
        self._extractors: Dict[str, Extractor] = dict(default_extractors() if extractors is None else extractors)
        self._fallback = fallback or PlainTextExtractor()

    def register(self, media_type: str, extractor: Extractor) -> None:
        self._extractors[_normalize_media_type(media_type)] = extractor

    def extractor_for(self, media_type: str | None) -> Extractor:
        return self._extractors.get(_normalize_media_type(media_type or ""), self._fallback)

    def extract(self, file: FetchedFile, media_type: str | None = None) -> List[ExtractedChunk]:
        declared = media_type or file.media_type
        extractor = self.extractor_for(declared)
        try:
            chunks = extractor.extract(file)
            if not chunks:
                raise ValueError("No extractable text")
        except Exception as exc:
            self._logger.warning(
                "extraction.failed",
                filename=file.name,
                media_type=declared,
                extractor=extractor.kind,
                error=str(exc),
            )
            return self._failure(file, extractor.kind, exc)
        self._logger.info(
            "extraction.complete",
            filename=file.name,
            media_type=declared,
            extractor=extractor.kind,
            chunk_count=len(chunks),
        )
        return chunks

    @staticmethod
    def _failure(file: FetchedFile, kind: str, exc: Exception) -> List[ExtractedChunk]:
        try:
            message = str(exc) or exc.__class__.__name__
            return [
                ExtractedChunk(
                    content=f"{kind.upper()} file: {file.name} - Content extraction failed. Error: {message}",
                    metadata=ChunkMetadata(
                        type=kind,
                        section="Document",
                        filename=file.name,
                        error=message,
                        processing_status=ProcessingStatus.FAILED,
                    ),
                ),
            ]
        except Exception as fallback_exc:
            raise ExtractionError(f"Failed to extract text from {file.name}: {fallback_exc}") from exc


def _normalize_media_type(media_type: str) -> str:
    return media_type.split(";")[0].strip().lower()

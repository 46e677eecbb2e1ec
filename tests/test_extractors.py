"""Tests for the extraction dispatcher and the per-format extractors."""

from __future__ import annotations

import io
import json
import zipfile

import pytest
from openpyxl import Workbook

from docsense.ingestion.extractors import (
    CSV,
    DOCX,
    HTML,
    JPEG,
    NOTEBOOK,
    PDF,
    PNG,
    PPTX,
    XLSX,
    ExtractionDispatcher,
)
from docsense.ingestion.fetch import FetchedFile
from docsense.models import ChunkMetadata, ExtractedChunk, ProcessingStatus


def _pdf_bytes(text: str) -> bytes:
    stream = f"BT /F1 24 Tf 72 700 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(out.tell())
        out.write(f"{number} 0 obj\n".encode() + body + b"\nendobj\n")
    xref_at = out.tell()
    out.write(f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode())
    for offset in offsets:
        out.write(f"{offset:010d} 00000 n \n".encode())
    out.write(f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode())
    return out.getvalue()


def _docx_bytes(*paragraphs: str) -> bytes:
    body = "".join(f"<w:p><w:r><w:t>{text}</w:t></w:r></w:p>" for text in paragraphs)
    document = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{body}</w:body></w:document>"
    )
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as archive:
        archive.writestr("word/document.xml", document)
    return out.getvalue()


def _xlsx_bytes() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Sales"
    sheet.append(["region", "revenue"])
    sheet.append(["", None])
    sheet.append(["north", 120])
    out = io.BytesIO()
    workbook.save(out)
    return out.getvalue()


def _pptx_bytes() -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as archive:
        archive.writestr("ppt/presentation.xml", "<p:presentation/>")
    return out.getvalue()


NOTEBOOK_JSON = json.dumps(
    {
        "cells": [
            {"cell_type": "markdown", "source": ["# Title\n", "Intro text"]},
            {"cell_type": "code", "source": []},
            {"cell_type": "code", "source": "print('hi')"},
        ],
    },
).encode()

VALID_SAMPLES = {
    PDF: _pdf_bytes("Hello PDF world"),
    DOCX: _docx_bytes("First paragraph", "Second paragraph"),
    XLSX: _xlsx_bytes(),
    PPTX: _pptx_bytes(),
    HTML: b"<html><head><style>p {}</style></head><body><p>Hello page</p><script>var x;</script></body></html>",
    CSV: b"name,role\nAda,engineer\nGrace,admiral\n",
    NOTEBOOK: NOTEBOOK_JSON,
    PNG: b"\x89PNG\r\n\x1a\n" + b"\x00" * 16,
    JPEG: b"\xff\xd8\xff\xe0" + b"\x00" * 16,
    "text/plain": b"Alpha paragraph.\n\nBeta paragraph.",
}

CORRUPT_SAMPLES = {
    PDF: b"this is not a pdf",
    DOCX: b"not a zip archive",
    XLSX: b"not a workbook",
    PPTX: b"not a presentation",
    HTML: b"\xff\xfe\xfa\xfb",
    CSV: b"\xff\xfe\xfa\xfb",
    NOTEBOOK: b"{not json",
    PNG: b"GIF89a",
    JPEG: b"plain bytes",
    "text/plain": b"\xff\xfe\xfa\xfb",
}


def _file(media_type: str, data: bytes, name: str = "sample") -> FetchedFile:
    return FetchedFile(name=name, media_type=media_type, data=data)


@pytest.mark.parametrize("media_type", sorted(VALID_SAMPLES))
def test_valid_samples_never_yield_zero_chunks(media_type: str) -> None:
    chunks = ExtractionDispatcher().extract(_file(media_type, VALID_SAMPLES[media_type]))

    assert chunks
    assert all(chunk.metadata.processing_status is not ProcessingStatus.FAILED for chunk in chunks)
    assert all(chunk.metadata.filename == "sample" for chunk in chunks)


@pytest.mark.parametrize("media_type", sorted(CORRUPT_SAMPLES))
def test_corrupt_samples_yield_single_failed_chunk(media_type: str) -> None:
    chunks = ExtractionDispatcher().extract(_file(media_type, CORRUPT_SAMPLES[media_type]))

    assert len(chunks) == 1
    metadata = chunks[0].metadata
    assert metadata.processing_status is ProcessingStatus.FAILED
    assert metadata.section == "Document"
    assert metadata.error
    assert metadata.to_dict()["processingStatus"] == "failed"


def test_plain_text_sections_are_labelled_paragraphs() -> None:
    chunks = ExtractionDispatcher().extract(_file("text/plain", VALID_SAMPLES["text/plain"]))

    assert [chunk.content for chunk in chunks] == ["Alpha paragraph.", "Beta paragraph."]
    assert [chunk.metadata.section for chunk in chunks] == ["Paragraph 1", "Paragraph 2"]


def test_unknown_media_type_falls_through_to_plain_text() -> None:
    chunks = ExtractionDispatcher().extract(_file("application/x-unknown", b"one\n\ntwo"))

    assert [chunk.metadata.type for chunk in chunks] == ["text", "text"]


def test_pdf_sections_carry_page_numbers() -> None:
    chunks = ExtractionDispatcher().extract(_file(PDF, VALID_SAMPLES[PDF]))

    assert "Hello PDF world" in chunks[0].content
    assert chunks[0].metadata.section == "Section 1"
    assert chunks[0].metadata.page == 1


def test_docx_paragraphs() -> None:
    chunks = ExtractionDispatcher().extract(_file(DOCX, VALID_SAMPLES[DOCX]))

    assert [chunk.content for chunk in chunks] == ["First paragraph", "Second paragraph"]
    assert chunks[1].metadata.section == "Paragraph 2"


def test_csv_rows_become_key_value_chunks() -> None:
    chunks = ExtractionDispatcher().extract(_file(CSV, VALID_SAMPLES[CSV]))

    assert [chunk.content for chunk in chunks] == ["name: Ada, role: engineer", "name: Grace, role: admiral"]
    assert [chunk.metadata.row for chunk in chunks] == [1, 2]
    assert chunks[1].metadata.section == "Row 2"


def test_xlsx_rows_become_key_value_chunks() -> None:
    chunks = ExtractionDispatcher().extract(_file(XLSX, VALID_SAMPLES[XLSX]))

    assert [chunk.content for chunk in chunks] == ["region: north, revenue: 120"]
    assert [chunk.metadata.section for chunk in chunks] == ["Sales Row 3"]
    assert chunks[0].metadata.row == 3
    assert chunks[0].metadata.sheet == "Sales"


def test_notebook_cells_keep_cell_type() -> None:
    chunks = ExtractionDispatcher().extract(_file(NOTEBOOK, NOTEBOOK_JSON))

    assert [chunk.content for chunk in chunks] == ["# Title\nIntro text", "print('hi')"]
    assert [chunk.metadata.section for chunk in chunks] == ["Cell 1", "Cell 3"]
    assert chunks[0].metadata.to_dict()["cellType"] == "markdown"


def test_html_strips_script_and_style() -> None:
    chunks = ExtractionDispatcher().extract(_file(HTML, VALID_SAMPLES[HTML]))

    assert [chunk.content for chunk in chunks] == ["Hello page"]


def test_placeholder_formats_are_marked() -> None:
    dispatcher = ExtractionDispatcher()
    [slide] = dispatcher.extract(_file(PPTX, VALID_SAMPLES[PPTX], name="deck.pptx"))
    [image] = dispatcher.extract(_file(PNG, VALID_SAMPLES[PNG], name="chart.png"))

    assert slide.content == "PowerPoint presentation: deck.pptx"
    assert image.content == "Image file: chart.png"
    assert slide.metadata.processing_status is ProcessingStatus.PLACEHOLDER
    assert image.metadata.processing_status is ProcessingStatus.PLACEHOLDER


def test_empty_extraction_becomes_failed_chunk() -> None:
    [chunk] = ExtractionDispatcher().extract(_file("text/plain", b"   \n\n  "))

    assert chunk.metadata.processing_status is ProcessingStatus.FAILED


def test_registered_extractor_overrides_dispatch() -> None:
    class UpperExtractor:
        kind = "upper"

        def extract(self, file: FetchedFile) -> list[ExtractedChunk]:
            return [ExtractedChunk(file.data.decode().upper(), ChunkMetadata(type=self.kind, section="All"))]

    dispatcher = ExtractionDispatcher()
    dispatcher.register("Text/X-Shout; charset=utf-8", UpperExtractor())

    [chunk] = dispatcher.extract(_file("text/x-shout", b"hey"))
    assert chunk.content == "HEY"


def test_xlsx_header_per_sheet_and_unnamed_columns() -> None:
    workbook = Workbook()
    first = workbook.active
    first.title = "Q1"
    first.append(["city", None])
    first.append(["Oslo", 7, "extra"])
    second = workbook.create_sheet("Q2")
    second.append([None, None])
    second.append(["team", "score"])
    second.append(["blue", None])
    out = io.BytesIO()
    workbook.save(out)

    chunks = ExtractionDispatcher().extract(_file(XLSX, out.getvalue()))

    assert [chunk.content for chunk in chunks] == ["city: Oslo, Column 2: 7, Column 3: extra", "team: blue"]
    assert [(chunk.metadata.sheet, chunk.metadata.row) for chunk in chunks] == [("Q1", 2), ("Q2", 3)]

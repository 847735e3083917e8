"""
Stage 1: Document Normalisation

Fetches the uploaded drawing set from the bucket and turns it into one PNG
per page under ``analyses/<id>/pages/``:

  PDF        every page rendered at 300 DPI (scale 300/72), document order
  PNG / JPG  re-encoded to PNG if needed, emitted as page 1
  TIFF       split frame-by-frame, one PNG per frame

Any failure here is fatal to the run: every later stage needs the full page set.
"""
from __future__ import annotations

import io
import logging
from typing import Optional

import fitz          # PyMuPDF
from PIL import Image, ImageSequence

from app.agents.config import PAGE_CONTENT_TYPE, PAGE_KEY_FORMAT, PDF_RENDER_SCALE
from app.models.pipeline_models import DocumentType, NormalisedPage, parse_document_type
from app.services.storage import extract_file_key

logger = logging.getLogger("compliance-normalisation")

_RENDER_MATRIX = fitz.Matrix(PDF_RENDER_SCALE, PDF_RENDER_SCALE)

# Modes Pillow can write straight to PNG
_PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}


class UnsupportedDocumentType(ValueError):
    """Document type cannot be rasterised into pages (e.g. DXF, IFC)."""


class EmptyDocumentError(ValueError):
    """Document decoded to zero pages."""


def page_key(analysis_id: str, page_number: int) -> str:
    return PAGE_KEY_FORMAT.format(analysis_id=analysis_id, page_number=page_number)


def _encode_png(image: Image.Image) -> bytes:
    if image.mode not in _PNG_MODES:
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def render_pdf_page(page) -> tuple:
    """Return (png_bytes, width, height) for one PDF page at the target DPI."""
    pix = page.get_pixmap(matrix=_RENDER_MATRIX)
    return pix.tobytes("png"), pix.width, pix.height


def image_to_png(image_bytes: bytes) -> tuple:
    """Return (png_bytes, width, height); PNG input is passed through untouched."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        width, height = img.size
        if img.format == "PNG":
            return image_bytes, width, height
        return _encode_png(img), width, height


def split_tiff_frames(tiff_bytes: bytes) -> list:
    """Return [(png_bytes, width, height), ...], one entry per TIFF frame."""
    frames = []
    with Image.open(io.BytesIO(tiff_bytes)) as img:
        for frame in ImageSequence.Iterator(img):
            frame_copy = frame.copy()
            frames.append((_encode_png(frame_copy), frame_copy.width, frame_copy.height))
    return frames


class DocumentNormaliser:
    """Converts a stored document into NormalisedPage records."""

    def __init__(self, storage):
        self.storage = storage

    async def normalise(
        self,
        run,
        document_url: str,
        document_type,
        page_count: Optional[int] = None,
    ) -> list:
        analysis_id = run.analysis_id
        logger.info(
            f"[{analysis_id}] Normalising {document_type} document, "
            f"expected pages: {page_count}"
        )

        try:
            doc_type = parse_document_type(document_type)
        except ValueError as e:
            raise UnsupportedDocumentType(f"Unsupported document type: {document_type}") from e
        if doc_type not in (DocumentType.PDF, DocumentType.PNG, DocumentType.JPG, DocumentType.TIFF):
            raise UnsupportedDocumentType(f"Unsupported document type: {doc_type.value}")

        await run.set_stage("Fetching document...")
        file_key = extract_file_key(document_url)
        document_bytes = await self.storage.fetch(file_key)
        logger.info(f"[{analysis_id}] Fetched {len(document_bytes)} bytes from {file_key}")

        await run.set_stage("Normalising document...")
        if doc_type == DocumentType.PDF:
            pages = await self._normalise_pdf(run, document_bytes)
        elif doc_type == DocumentType.TIFF:
            pages = await self._normalise_tiff(run, document_bytes)
        else:
            pages = await self._normalise_image(run, document_bytes, doc_type)

        if not pages:
            raise EmptyDocumentError(f"Document {file_key} produced no pages")

        if page_count and page_count != len(pages):
            logger.warning(
                f"[{analysis_id}] Expected {page_count} pages, normalised {len(pages)}"
            )
        logger.info(f"[{analysis_id}] Normalisation complete: {len(pages)} pages")
        return pages

    async def _upload_page(self, analysis_id: str, page_number: int, png: bytes,
                           width: int, height: int) -> NormalisedPage:
        key = page_key(analysis_id, page_number)
        await self.storage.store(key, png, PAGE_CONTENT_TYPE)
        logger.debug(f"[{analysis_id}] Page {page_number} stored: {width}x{height}")
        return NormalisedPage(page_number=page_number, image_key=key, width=width, height=height)

    async def _normalise_pdf(self, run, pdf_bytes: bytes) -> list:
        pages = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            total = doc.page_count
            logger.info(f"[{run.analysis_id}] PDF has {total} page(s)")
            for index, page in enumerate(doc, start=1):
                await run.set_stage(f"Normalising page {index} of {total}...")
                png, width, height = render_pdf_page(page)
                pages.append(await self._upload_page(run.analysis_id, index, png, width, height))
        return pages

    async def _normalise_image(self, run, image_bytes: bytes, doc_type: DocumentType) -> list:
        await run.set_stage("Normalising image...")
        png, width, height = image_to_png(image_bytes)
        logger.info(f"[{run.analysis_id}] {doc_type.value} image processed: {width}x{height}")
        return [await self._upload_page(run.analysis_id, 1, png, width, height)]

    async def _normalise_tiff(self, run, tiff_bytes: bytes) -> list:
        frames = split_tiff_frames(tiff_bytes)
        total = len(frames)
        logger.info(f"[{run.analysis_id}] TIFF has {total} frame(s)")
        pages = []
        for index, (png, width, height) in enumerate(frames, start=1):
            await run.set_stage(f"Normalising TIFF page {index} of {total}...")
            pages.append(await self._upload_page(run.analysis_id, index, png, width, height))
        return pages

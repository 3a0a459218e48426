"""
PDF Decoder
===========
Opens PDF byte buffers with PyMuPDF (fitz) and exposes page geometry
and per-page rendering.

The page count is known as soon as the document is open; nothing is
rendered until ``render_page`` is called.
"""

from __future__ import annotations

import logging
from typing import Optional

import fitz  # PyMuPDF

from .errors import DecodeError, RenderError
from .models import PageSize
from .raster import RasterSurface, RenderedPage

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-"

# Readers tolerate leading junk before the header, up to 1 KB.
HEADER_SEARCH_WINDOW = 1024

# MuPDF warnings that mean a page's objects are broken, not merely unusual.
DAMAGE_MARKERS = (
    "format error",
    "syntax error",
    "not a stream",
    "non-page object",
    "cannot load",
)


class SourceDocument:
    """
    Read-only handle over an opened PDF.
    Use as a context manager so the underlying document is always closed.
    """

    def __init__(self, doc: fitz.Document, source_size_bytes: int = 0):
        self._doc = doc
        self.source_size_bytes = source_size_bytes
        # MuPDF warnings seen while loading or drawing each page
        self._warnings: dict[int, list[str]] = {}

    def __enter__(self) -> SourceDocument:
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    @property
    def metadata(self) -> dict:
        return {k: v for k, v in (self._doc.metadata or {}).items() if v}

    @property
    def is_closed(self) -> bool:
        return self._doc.is_closed

    def close(self):
        if not self._doc.is_closed:
            self._doc.close()

    def _check_index(self, index: int):
        if not 0 <= index < self.page_count:
            raise RenderError(
                f"Page index {index} out of range (0..{self.page_count - 1})",
                page_index=index,
            )

    def _load_page(self, index: int) -> fitz.Page:
        self._check_index(index)
        fitz.TOOLS.reset_mupdf_warnings()
        try:
            page = self._doc[index]
        except Exception as e:
            raise RenderError(
                f"Could not load page {index + 1}: {e}", page_index=index
            ) from e
        self._collect_warnings(index)
        return page

    def _collect_warnings(self, index: int):
        text = fitz.TOOLS.mupdf_warnings(reset=True)
        if text:
            self._warnings.setdefault(index, []).extend(text.splitlines())

    def _check_page_damage(self, page: fitz.Page, index: int):
        """
        MuPDF repairs broken files and renders what it can, so a page with
        a missing or corrupt content stream comes back blank with only a
        warning. Treat that as a render failure.
        """
        damage = [
            w for w in self._warnings.get(index, [])
            if any(marker in w.lower() for marker in DAMAGE_MARKERS)
        ]
        if damage:
            raise RenderError(
                f"Page {index + 1} is damaged: {damage[0]}", page_index=index
            )

        kind, value = self._doc.xref_get_key(page.xref, "Type")
        if kind == "name" and value != "/Page":
            raise RenderError(
                f"Page {index + 1} is not a page object ({value})", page_index=index
            )

        for xref in page.get_contents():
            if not self._doc.xref_is_stream(xref):
                raise RenderError(
                    f"Page {index + 1} content object {xref} is not a stream",
                    page_index=index,
                )

    def page_size(self, index: int) -> PageSize:
        """Displayed page size in points."""
        rect = self._load_page(index).rect
        return PageSize(width_pt=rect.width, height_pt=rect.height)

    def page_sizes(self) -> list[PageSize]:
        return [self.page_size(i) for i in range(self.page_count)]

    def render_page(self, index: int, scale: float) -> RenderedPage:
        """
        Rasterize one page at ``scale`` pixels per point.

        Raises:
            RenderError: If the index is out of range or MuPDF fails on
                the page's content stream.
        """
        self._check_index(index)
        if scale <= 0:
            raise RenderError(f"Scale must be positive, got {scale}", page_index=index)

        try:
            page = self._load_page(index)
            rect = page.rect
            surface = RasterSurface.for_page(
                PageSize(width_pt=rect.width, height_pt=rect.height), scale
            )
            rendered = surface.draw(page, index, scale)
            self._collect_warnings(index)
            self._check_page_damage(page, index)
            return rendered
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(
                f"Could not render page {index + 1}: {e}", page_index=index
            ) from e


class PdfDecoder:
    """Turns byte buffers into ``SourceDocument`` handles."""

    def open(self, buffer: bytes, password: Optional[str] = None) -> SourceDocument:
        """
        Open a PDF buffer.

        Args:
            buffer: Raw PDF bytes.
            password: User password for encrypted documents.

        Returns:
            An open SourceDocument; the caller must close it.

        Raises:
            DecodeError: If the buffer is empty, lacks a PDF header, cannot
                be parsed, or is encrypted without a valid password.
        """
        if not buffer:
            raise DecodeError("Empty buffer is not a PDF")

        if PDF_HEADER not in bytes(buffer[:HEADER_SEARCH_WINDOW]):
            raise DecodeError("Missing %PDF- header; the file is not a PDF or is truncated")

        try:
            doc = fitz.open(stream=bytes(buffer), filetype="pdf")
        except (RuntimeError, ValueError) as e:
            raise DecodeError(f"Unreadable PDF: {e}") from e

        if not doc.is_pdf:
            doc.close()
            raise DecodeError("Buffer did not decode as a PDF document")

        if doc.needs_pass:
            if not password or not doc.authenticate(password):
                doc.close()
                if password:
                    raise DecodeError("Incorrect password for encrypted PDF")
                raise DecodeError("PDF is encrypted and no password was supplied")

        logger.debug(f"Opened PDF: {doc.page_count} pages, {len(buffer)} bytes")
        return SourceDocument(doc, source_size_bytes=len(buffer))

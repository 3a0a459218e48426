"""
PDF Page Assembler
==================
Builds new PDFs whose pages each hold one full-bleed JPEG.

Pages are created with PyMuPDF at the exact requested point size and the
image is stretched over the whole page rect from (0, 0). Nothing else
(text, annotations, forms) is written.
"""

from __future__ import annotations

import io
import logging
from typing import Iterable, Optional

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from .errors import AssemblyError
from .models import OutputPdf

logger = logging.getLogger(__name__)

# Quality used when non-JPEG images are re-encoded for embedding.
REENCODE_QUALITY = 92


def _empty_pdf() -> bytes:
    """
    A minimal valid PDF with zero pages.
    MuPDF refuses to save page-less documents, so this is written by hand.
    """
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [] /Count 0 >>",
    ]
    out = bytearray(b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n")
    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n%s\nendobj\n" % (num, body)

    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\n" % (len(objects) + 1)
    out += b"startxref\n%d\n%%%%EOF\n" % xref_offset
    return bytes(out)


def _probe_image(image_bytes: bytes) -> tuple[str, int, int]:
    """Return (format, width, height) of an encoded image."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            return img.format, img.width, img.height
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise AssemblyError(f"Not a decodable image: {e}") from e


class PdfBuilder:
    """
    Accumulates pages for one output document.
    Obtain one from ``PdfPageAssembler.create_document``.
    """

    def __init__(self):
        self._doc: Optional[fitz.Document] = fitz.open()
        self._finalized = False

    @property
    def page_count(self) -> int:
        return self._doc.page_count if self._doc is not None else 0

    def _ensure_open(self):
        if self._finalized or self._doc is None:
            raise AssemblyError("Document already finalized or discarded")

    def add_page(self, width_pt: float, height_pt: float, image_bytes: bytes):
        """
        Append a ``width_pt`` x ``height_pt`` page filled by ``image_bytes``.

        Raises:
            AssemblyError: If a dimension is not positive or the bytes are
                not a JPEG.
        """
        self._ensure_open()

        if width_pt <= 0 or height_pt <= 0:
            raise AssemblyError(
                f"Page dimensions must be positive, got {width_pt}x{height_pt}"
            )
        if not image_bytes:
            raise AssemblyError("Image data is empty")

        fmt, _, _ = _probe_image(image_bytes)
        if fmt != "JPEG":
            raise AssemblyError(f"Expected a JPEG image, got {fmt}")

        page = self._doc.new_page(width=width_pt, height=height_pt)
        try:
            page.insert_image(page.rect, stream=image_bytes, keep_proportion=False)
        except (RuntimeError, ValueError) as e:
            raise AssemblyError(f"Could not embed image: {e}") from e

    def discard(self):
        """Drop everything without producing output."""
        if self._doc is not None:
            self._doc.close()
            self._doc = None

    def finalize(self) -> OutputPdf:
        """Serialize the document. May be called once."""
        self._ensure_open()
        self._finalized = True

        count = self._doc.page_count
        if count == 0:
            data = _empty_pdf()
        else:
            data = self._doc.tobytes(garbage=3, deflate=True)
        self._doc.close()
        self._doc = None

        logger.debug(f"Finalized PDF: {count} pages, {len(data)} bytes")
        return OutputPdf(data=data, page_count=count)


class PdfPageAssembler:
    """Factory for ``PdfBuilder`` instances."""

    def create_document(self) -> PdfBuilder:
        return PdfBuilder()


def images_to_pdf(images: Iterable[bytes]) -> OutputPdf:
    """
    Build a PDF with one page per image, each page sized to the image's
    pixel dimensions (one pixel per point).
    Non-JPEG input (e.g. PNG) is re-encoded as JPEG first.

    Raises:
        AssemblyError: If any input is not a decodable image.
    """
    builder = PdfPageAssembler().create_document()
    try:
        for image_bytes in images:
            fmt, width, height = _probe_image(image_bytes)
            if fmt != "JPEG":
                image_bytes = _to_jpeg(image_bytes)
            builder.add_page(width, height, image_bytes)
        return builder.finalize()
    except AssemblyError:
        builder.discard()
        raise


def _to_jpeg(image_bytes: bytes) -> bytes:
    with Image.open(io.BytesIO(image_bytes)) as img:
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.split()[-1])
            img = flattened
        elif img.mode != "RGB":
            img = img.convert("RGB")
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=REENCODE_QUALITY)
    return buf.getvalue()

"""
Raster Surface
==============
Pixel buffers that PDF pages are rendered into.

A surface is sized by rounding the page's point size times the scale
factor. Pages are drawn through PyMuPDF pixmaps without an alpha
channel, so the background is always opaque white.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import fitz  # PyMuPDF
from PIL import Image

from .models import PageSize

logger = logging.getLogger(__name__)


@dataclass
class RenderedPage:
    """Packed RGB pixels for one page."""
    page_index: int
    pixel_width: int
    pixel_height: int
    samples: bytes
    scale: float

    def to_image(self) -> Image.Image:
        return Image.frombytes(
            "RGB", (self.pixel_width, self.pixel_height), self.samples
        )


class RasterSurface:
    """
    A ``pixel_width`` x ``pixel_height`` RGB target for one page.
    """

    def __init__(self, pixel_width: int, pixel_height: int):
        if pixel_width < 1 or pixel_height < 1:
            raise ValueError(
                f"Surface must be at least 1x1, got {pixel_width}x{pixel_height}"
            )
        self.pixel_width = pixel_width
        self.pixel_height = pixel_height

    @classmethod
    def for_page(cls, page_size: PageSize, scale: float) -> RasterSurface:
        """Size a surface for a page rendered at ``scale``."""
        width = max(1, round(page_size.width_pt * scale))
        height = max(1, round(page_size.height_pt * scale))
        return cls(width, height)

    @property
    def size(self) -> tuple[int, int]:
        return (self.pixel_width, self.pixel_height)

    def draw(self, page: fitz.Page, page_index: int, scale: float) -> RenderedPage:
        """Render ``page`` so it fills the surface exactly."""
        rect = page.rect
        # Per-axis factors hit the rounded pixel size exactly.
        sx = self.pixel_width / rect.width if rect.width else scale
        sy = self.pixel_height / rect.height if rect.height else scale

        pix = page.get_pixmap(
            matrix=fitz.Matrix(sx, sy),
            colorspace=fitz.csRGB,
            alpha=False,
        )

        samples = pix.samples
        if (pix.width, pix.height) != self.size:
            # MuPDF rounds the pixmap bbox outward; snap back to the surface.
            logger.debug(
                f"Page {page_index + 1}: pixmap {pix.width}x{pix.height} "
                f"resampled to {self.pixel_width}x{self.pixel_height}"
            )
            img = Image.frombytes("RGB", (pix.width, pix.height), samples)
            samples = img.resize(self.size, Image.Resampling.LANCZOS).tobytes()

        return RenderedPage(
            page_index=page_index,
            pixel_width=self.pixel_width,
            pixel_height=self.pixel_height,
            samples=samples,
            scale=scale,
        )

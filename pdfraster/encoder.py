"""
Image Encoder
=============
JPEG encoding of rendered pages with Pillow.

Quality factors live in [0, 1] and map linearly onto Pillow's JPEG
quality scale (1-100). Values outside [0, 1] are rejected rather than
clamped.
"""

from __future__ import annotations

import io
import logging

from .errors import EncodeError
from .models import EncodedImage
from .raster import RenderedPage

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"


def jpeg_quality(quality: float) -> int:
    """Map a 0-1 quality factor onto Pillow's 1-100 scale."""
    if not 0.0 <= quality <= 1.0:
        raise ValueError(f"Quality must be within [0, 1], got {quality}")
    return max(1, round(quality * 100))


class ImageEncoder:
    """Stateless page-to-JPEG encoder."""

    def __init__(self, optimize: bool = False, progressive: bool = False):
        self.optimize = optimize
        self.progressive = progressive

    def encode(self, page: RenderedPage, quality: float) -> EncodedImage:
        """
        Encode a rendered page as JPEG.

        Raises:
            ValueError: If ``quality`` is outside [0, 1].
            EncodeError: If Pillow cannot encode the pixels.
        """
        q = jpeg_quality(quality)

        try:
            img = page.to_image()
            buf = io.BytesIO()
            img.save(
                buf,
                format="JPEG",
                quality=q,
                optimize=self.optimize,
                progressive=self.progressive,
            )
        except (OSError, ValueError) as e:
            raise EncodeError(
                f"Could not encode page {page.page_index + 1} as JPEG: {e}",
                page_index=page.page_index,
            ) from e

        data = buf.getvalue()
        logger.debug(
            f"Page {page.page_index + 1}: {page.pixel_width}x{page.pixel_height} "
            f"-> {len(data)} bytes at quality {q}"
        )

        return EncodedImage(
            page_index=page.page_index,
            data=data,
            quality=quality,
            pixel_width=page.pixel_width,
            pixel_height=page.pixel_height,
            mime_type=JPEG_MIME,
        )

"""
Archive Builder
===============
Packs named page images into a single in-memory ZIP for bulk download.
Entries are stored flat; JPEG data is already compressed so entries are
written with ZIP_STORED.
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import Sequence

from .errors import ArchiveError
from .models import EncodedImage
from .storage import page_image_name

logger = logging.getLogger(__name__)


class ArchiveBuilder:
    """Builds flat ZIP archives from (name, bytes) pairs."""

    def __init__(self, compression: int = zipfile.ZIP_STORED):
        self.compression = compression

    def build(self, named_buffers: Sequence[tuple[str, bytes]]) -> bytes:
        """
        Build a ZIP archive.

        Args:
            named_buffers: Ordered (name, data) pairs. Names must be unique
                and must not contain directory separators.

        Returns:
            The archive bytes.

        Raises:
            ValueError: On duplicate or nested entry names.
            ArchiveError: If the archive cannot be written.
        """
        seen: set[str] = set()
        for name, _ in named_buffers:
            if not name or "/" in name or "\\" in name:
                raise ValueError(f"Archive entry names must be flat, got {name!r}")
            if name in seen:
                raise ValueError(f"Duplicate archive entry name: {name}")
            seen.add(name)

        buf = io.BytesIO()
        try:
            with zipfile.ZipFile(buf, "w", compression=self.compression) as zf:
                for name, data in named_buffers:
                    zf.writestr(name, data)
        except (MemoryError, OSError, zipfile.LargeZipFile) as e:
            raise ArchiveError(f"Could not build archive: {e}") from e

        archive = buf.getvalue()
        logger.debug(f"Built archive: {len(seen)} entries, {len(archive)} bytes")
        return archive


def build_page_archive(images: Sequence[EncodedImage], base: str) -> bytes:
    """Archive page images as ``{base}_{page}.jpg`` entries."""
    return ArchiveBuilder().build(
        [(page_image_name(base, img.page_index), img.data) for img in images]
    )

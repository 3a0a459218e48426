"""
Output Storage
==============
Naming and on-disk persistence of conversion outputs.

Naming:
    extract mode  → {base}_{page}.jpg, bundled as {base}_images.zip
    compress mode → {base}-compressed.pdf
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ConversionResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_NAME = "document"

_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def base_name(filename: str) -> str:
    """
    Strip directories and a trailing ``.pdf`` from an upload name.
    E.g., 'scans/Invoice.PDF' -> 'Invoice'
    """
    name = Path(filename.replace("\\", "/")).name if filename else ""
    name = _PDF_SUFFIX.sub("", name).strip()
    return name or DEFAULT_BASE_NAME


def page_image_name(base: str, page_index: int) -> str:
    """Zero-based page index to a 1-based image file name."""
    return f"{base}_{page_index + 1}.jpg"


def archive_name(base: str) -> str:
    return f"{base}_images.zip"


def compressed_pdf_name(base: str) -> str:
    return f"{base}-compressed.pdf"


def write_bytes(data: bytes, dest: Path) -> Path:
    """Write a buffer to ``dest``, creating parent directories."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    logger.info(f"Saved: {dest} ({len(data)} bytes)")
    return dest


def save_result(
    result: ConversionResult,
    base: str,
    output_dir: str,
    archive: bool = False,
) -> list[Path]:
    """
    Write a conversion result to ``output_dir``.

    Args:
        result: Output of a successful pipeline run.
        base: Base file name (see ``base_name``).
        output_dir: Destination directory, created if missing.
        archive: In extract mode, write a single ZIP instead of loose JPEGs.

    Returns:
        Paths of the files written.
    """
    from .archive import build_page_archive
    from .models import ConversionMode

    out = Path(output_dir)
    written: list[Path] = []

    if result.mode == ConversionMode.COMPRESS:
        if result.pdf is not None:
            written.append(write_bytes(result.pdf.data, out / compressed_pdf_name(base)))
        return written

    if archive:
        data = build_page_archive(result.images, base)
        written.append(write_bytes(data, out / archive_name(base)))
        return written

    for img in result.images:
        written.append(write_bytes(img.data, out / page_image_name(base, img.page_index)))
    return written

"""Shared fixtures: PDFs and images generated on the fly."""

from __future__ import annotations

import io

import fitz  # PyMuPDF
import pytest
from PIL import Image

LETTER = (612, 792)
A4 = (595, 842)


def make_pdf(sizes=(LETTER,), **save_kwargs) -> bytes:
    """Build a PDF with one page per (width, height), each with some content."""
    doc = fitz.open()
    for number, (width, height) in enumerate(sizes, start=1):
        page = doc.new_page(width=width, height=height)
        page.insert_text((72, 72), f"Page {number}", fontsize=28)
        for line in range(12):
            page.insert_text(
                (72, 120 + line * 18),
                f"Line {line}: attendance sheet row {number}-{line} " * 2,
                fontsize=10,
            )
        page.draw_rect(
            fitz.Rect(72, 400, width - 72, 520),
            color=(0.1, 0.3, 0.8),
            fill=(0.9, 0.6, 0.2),
        )
        page.draw_circle((width / 2, height - 150), 60, color=(0, 0, 0), fill=(0.2, 0.7, 0.3))
    data = doc.tobytes(**save_kwargs)
    doc.close()
    return data


def make_image(fmt: str = "JPEG", size=(200, 100), color=(200, 30, 30)) -> bytes:
    img = Image.new("RGB", size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def letter_pdf() -> bytes:
    """3-page US Letter PDF."""
    return make_pdf([LETTER] * 3)


@pytest.fixture
def mixed_pdf() -> bytes:
    """Pages of different sizes, in a known order."""
    return make_pdf([LETTER, A4, (300, 200)])


@pytest.fixture
def empty_pdf() -> bytes:
    from pdfraster.assembler import _empty_pdf
    return _empty_pdf()


@pytest.fixture
def encrypted_pdf() -> bytes:
    return make_pdf(
        [LETTER],
        encryption=fitz.PDF_ENCRYPT_AES_256,
        owner_pw="owner",
        user_pw="secret",
    )


@pytest.fixture
def truncated_pdf() -> bytes:
    """3-page PDF cut in half; MuPDF repairs it but some page objects are gone."""
    data = make_pdf([LETTER] * 3)
    return data[: len(data) // 2]

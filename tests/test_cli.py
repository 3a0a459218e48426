"""
Test Suite for the CLI
======================
Runs the click commands in-process with CliRunner.
"""

from __future__ import annotations

import zipfile

import fitz  # PyMuPDF
import pytest
from click.testing import CliRunner

from conftest import make_image
from pdfraster.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def pdf_path(tmp_path, letter_pdf):
    path = tmp_path / "Timesheet.pdf"
    path.write_bytes(letter_pdf)
    return path


class TestToJpg:

    def test_writes_page_images(self, runner, pdf_path, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(cli, [
            "to-jpg", str(pdf_path), "-o", str(out), "--scale", "0.5",
        ])
        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in out.iterdir()) == [
            "Timesheet_1.jpg", "Timesheet_2.jpg", "Timesheet_3.jpg",
        ]

    def test_zip_output(self, runner, pdf_path, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(cli, [
            "to-jpg", str(pdf_path), "-o", str(out), "--scale", "0.5", "--zip",
        ])
        assert result.exit_code == 0, result.output
        with zipfile.ZipFile(out / "Timesheet_images.zip") as zf:
            assert len(zf.namelist()) == 3

    def test_bad_quality(self, runner, pdf_path):
        result = runner.invoke(cli, ["to-jpg", str(pdf_path), "--quality", "2"])
        assert result.exit_code == 2

    def test_corrupt_pdf(self, runner, tmp_path):
        bad = tmp_path / "bad.pdf"
        bad.write_bytes(b"%PD")
        result = runner.invoke(cli, ["to-jpg", str(bad), "-o", str(tmp_path)])
        assert result.exit_code == 1
        assert "DecodeError" in result.output


class TestCompress:

    def test_writes_compressed_pdf(self, runner, pdf_path, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(cli, [
            "compress", str(pdf_path), "-o", str(out), "-q", "low", "-s", "1.0",
        ])
        assert result.exit_code == 0, result.output
        doc = fitz.open(out / "Timesheet-compressed.pdf")
        assert doc.page_count == 3
        doc.close()
        assert "Reduction" in result.output


class TestFromImages:

    def test_builds_pdf(self, runner, tmp_path):
        jpg = tmp_path / "a.jpg"
        png = tmp_path / "b.png"
        jpg.write_bytes(make_image("JPEG", size=(120, 80)))
        png.write_bytes(make_image("PNG", size=(60, 60)))
        out = tmp_path / "combined.pdf"

        result = runner.invoke(cli, ["from-images", str(jpg), str(png), "-o", str(out)])
        assert result.exit_code == 0, result.output
        doc = fitz.open(out)
        assert [(p.rect.width, p.rect.height) for p in doc] == [(120, 80), (60, 60)]
        doc.close()


class TestInfo:

    def test_shows_pages(self, runner, pdf_path):
        result = runner.invoke(cli, ["info", str(pdf_path)])
        assert result.exit_code == 0, result.output
        assert "Pages" in result.output
        assert "612" in result.output

"""
CLI Interface
=============
Command-line interface for the conversion pipeline.

Usage:
    python -m pdfraster to-jpg <pdf_path> [options]
    python -m pdfraster compress <pdf_path> [options]
    python -m pdfraster from-images <image>... [options]
    python -m pdfraster info <pdf_path>
    python -m pdfraster serve [options]
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .assembler import images_to_pdf
from .decoder import PdfDecoder
from .engine import ConversionPipeline, ConverterConfig
from .errors import ConversionError
from .models import (
    MAX_SCALE,
    MIN_SCALE,
    QUALITY_PRESETS,
    ConversionMode,
    ErrorPolicy,
    resolve_quality,
)
from .storage import base_name, save_result, write_bytes

console = Console()


class QualityParam(click.ParamType):
    """Accepts a preset name or a number in [0, 1]."""
    name = "quality"

    def convert(self, value, param, ctx):
        if isinstance(value, float):
            return value
        try:
            return resolve_quality(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


QUALITY = QualityParam()


def _common_options(func):
    """Options shared by the to-jpg and compress commands."""
    options = [
        click.option(
            "--output", "-o",
            default="output",
            help="Output directory",
        ),
        click.option(
            "--quality", "-q",
            default="medium",
            type=QUALITY,
            help=f"JPEG quality: {', '.join(QUALITY_PRESETS)} or a number in [0, 1]",
        ),
        click.option(
            "--scale", "-s",
            default=1.5,
            type=click.FloatRange(MIN_SCALE, MAX_SCALE),
            help="Render resolution multiplier over 72 dpi",
        ),
        click.option(
            "--skip-bad-pages",
            is_flag=True,
            default=False,
            help="Skip pages that fail to render instead of aborting",
        ),
        click.option(
            "--password",
            default=None,
            help="Password for encrypted PDFs",
        ),
        click.option(
            "--log-level",
            default="WARNING",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
            help="Logging level",
        ),
        click.option(
            "--log-file",
            default=None,
            help="Path to log file",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="pdfraster")
def cli():
    """pdfraster — render PDF pages to JPEG and rebuild image-only PDFs."""
    pass


@cli.command("to-jpg")
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@_common_options
@click.option(
    "--zip/--no-zip", "as_zip",
    default=False,
    help="Bundle page images into {name}_images.zip",
)
def to_jpg(
    pdf_path: str,
    output: str,
    quality: float,
    scale: float,
    skip_bad_pages: bool,
    password: str,
    log_level: str,
    log_file: str,
    as_zip: bool,
):
    """Convert every page of a PDF to a JPEG image."""
    _convert(
        pdf_path, ConversionMode.EXTRACT_IMAGES, output, quality, scale,
        skip_bad_pages, password, log_level, log_file, as_zip,
    )


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@_common_options
def compress(
    pdf_path: str,
    output: str,
    quality: float,
    scale: float,
    skip_bad_pages: bool,
    password: str,
    log_level: str,
    log_file: str,
):
    """Rebuild a PDF from re-encoded page images to shrink it."""
    _convert(
        pdf_path, ConversionMode.COMPRESS, output, quality, scale,
        skip_bad_pages, password, log_level, log_file, False,
    )


def _convert(
    pdf_path: str,
    mode: ConversionMode,
    output: str,
    quality: float,
    scale: float,
    skip_bad_pages: bool,
    password: str,
    log_level: str,
    log_file: str,
    as_zip: bool,
):
    config = ConverterConfig(
        scale=scale,
        quality=quality,
        error_policy=ErrorPolicy.SKIP if skip_bad_pages else ErrorPolicy.FAIL_FAST,
        output_dir=output,
        log_level=log_level,
        log_file=log_file,
    )
    base = base_name(pdf_path)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]pdfraster v{__version__}[/]\n"
            f"[dim]{mode.value}: {Path(pdf_path).name} "
            f"(quality {quality}, scale {scale})[/]",
            border_style="cyan",
        )
    )
    console.print()

    try:
        pipeline = ConversionPipeline(config)
        options = pipeline.default_options(mode=mode, password=password)
        buffer = Path(pdf_path).read_bytes()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Rendering pages...", total=100)

            def on_progress(fraction: float):
                progress.update(task, completed=fraction * 100)

            result = pipeline.run(buffer, options, progress_callback=on_progress)

        written = save_result(result, base, output, archive=as_zip)
    except ConversionError as e:
        console.print(f"[red]Error ({e.kind}):[/] {e.message}")
        sys.exit(1)
    except OSError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _display_result(result, written)


@cli.command("from-images")
@click.argument(
    "images",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False),
)
@click.option(
    "--output", "-o",
    default="converted.pdf",
    help="Output PDF path",
)
def from_images(images: tuple[str, ...], output: str):
    """Combine JPG/PNG images into a PDF, one page per image."""
    try:
        pdf = images_to_pdf(Path(p).read_bytes() for p in images)
        write_bytes(pdf.data, Path(output))
    except ConversionError as e:
        console.print(f"[red]Error ({e.kind}):[/] {e.message}")
        sys.exit(1)

    console.print(
        f"[green]✓[/] Wrote {output}: {pdf.page_count} pages, "
        f"{_format_size(pdf.size_bytes)}"
    )


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--password", default=None, help="Password for encrypted PDFs")
def info(pdf_path: str, password: str):
    """Display PDF page count, page sizes and metadata."""
    buffer = Path(pdf_path).read_bytes()
    try:
        document = PdfDecoder().open(buffer, password=password)
    except ConversionError as e:
        console.print(f"[red]Error ({e.kind}):[/] {e.message}")
        sys.exit(1)

    with document:
        console.print()
        table = Table(title="PDF Information", border_style="cyan")
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("File", Path(pdf_path).name)
        table.add_row("Pages", str(document.page_count))
        table.add_row("File Size", _format_size(len(buffer)))
        for key in ["title", "author", "subject", "creator", "producer"]:
            val = document.metadata.get(key, "")
            if val:
                table.add_row(key.title(), val)
        console.print(table)

        if document.page_count:
            pages = Table(title="Page Sizes (pt)", border_style="green")
            pages.add_column("Page", justify="right")
            pages.add_column("Width", justify="right")
            pages.add_column("Height", justify="right")
            for i, size in enumerate(document.page_sizes(), start=1):
                pages.add_row(str(i), f"{size.width_pt:g}", f"{size.height_pt:g}")
            console.print(pages)
        console.print()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP conversion service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]pdfraster service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / 1024 / 1024:.2f} MB"


def _display_result(result, written):
    """Display conversion results in a formatted table."""
    console.print()

    table = Table(title="Conversion Result", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Pages", str(result.page_count))
    table.add_row("Original Size", _format_size(result.source_size_bytes))
    table.add_row("New Size", _format_size(result.output_size_bytes))
    if result.mode == ConversionMode.COMPRESS:
        rate = result.reduction_percent
        color = "green" if rate > 0 else "yellow"
        table.add_row("Reduction", f"[{color}]{rate:.2f}%[/]")
    if result.skipped_pages:
        skipped = ", ".join(str(i + 1) for i in result.skipped_pages)
        table.add_row("Skipped Pages", f"[yellow]{skipped}[/]")
    console.print(table)
    console.print()

    for path in written:
        console.print(f"[green]✓[/] {path}")
    console.print()


# ─── Entry point (for python -m pdfraster.cli) ────────────────────────────────


if __name__ == "__main__":
    cli()

"""
Conversion Engine
=================
Main orchestrator that turns a PDF buffer into page JPEGs or a
recompressed, image-only PDF.

Usage:
    pipeline = ConversionPipeline(config)
    result = pipeline.run(pdf_bytes, ConversionOptions(mode="compress"))
    # result.pdf.data holds the new PDF

Architecture:
    PDF bytes → PdfDecoder → SourceDocument → RasterSurface (per page) →
    ImageEncoder → [PdfPageAssembler] → ConversionResult
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Optional

from .assembler import PdfBuilder, PdfPageAssembler
from .decoder import PdfDecoder
from .encoder import ImageEncoder
from .errors import ConversionCancelled, PipelineBusy, RenderError
from .models import (
    DEFAULT_QUALITY,
    DEFAULT_SCALE,
    ConversionJob,
    ConversionMode,
    ConversionOptions,
    ConversionResult,
    EncodedImage,
    ErrorPolicy,
    PageOutcome,
)
from .state_machine import PipelineStateMachine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ProgressCallback = Callable[[float], None]
ResultCallback = Callable[[ConversionResult], None]


@dataclass
class ConverterConfig:
    """Configuration for the conversion pipeline."""

    # Rendering defaults
    scale: float = DEFAULT_SCALE
    quality: float = DEFAULT_QUALITY
    error_policy: ErrorPolicy = ErrorPolicy.FAIL_FAST

    # Encoder
    optimize_jpeg: bool = False

    # Output settings
    output_dir: str = "output"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ConversionPipeline:
    """
    Runs one conversion job at a time.

    Each page is rendered and encoded in turn; ``pages()`` yields after
    every page so callers can report progress or interleave other work.
    A second ``run`` while one is in flight raises PipelineBusy.
    """

    def __init__(
        self,
        config: Optional[ConverterConfig] = None,
        decoder: Optional[PdfDecoder] = None,
        encoder: Optional[ImageEncoder] = None,
        assembler: Optional[PdfPageAssembler] = None,
    ):
        self.config = config or ConverterConfig()
        self.decoder = decoder or PdfDecoder()
        self.encoder = encoder or ImageEncoder(optimize=self.config.optimize_jpeg)
        self.assembler = assembler or PdfPageAssembler()
        self._busy = threading.Lock()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        pkg_logger = logging.getLogger("pdfraster")
        pkg_logger.setLevel(log_level)

        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        if not any(type(h) is logging.StreamHandler for h in pkg_logger.handlers):
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(formatter)
            pkg_logger.addHandler(console)

        if self.config.log_file:
            log_path = Path(self.config.log_file).absolute()
            already = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_path
                for h in pkg_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(formatter)
                pkg_logger.addHandler(file_handler)

    def default_options(self, **overrides) -> ConversionOptions:
        """Options seeded from the config, with per-call overrides."""
        values = {
            "scale": self.config.scale,
            "quality": self.config.quality,
            "error_policy": self.config.error_policy,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ConversionOptions(**values)

    # ─── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        buffer: bytes,
        options: Optional[ConversionOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        job: Optional[ConversionJob] = None,
        result_callback: Optional[ResultCallback] = None,
    ) -> ConversionResult:
        """
        Convert a PDF buffer in one call.

        Args:
            buffer: Source PDF bytes.
            options: Mode, quality, scale and error policy.
            progress_callback: Called with the completed fraction (0-1)
                after each page; receives exactly 1.0 on success.
            cancel_event: Checked at every page boundary.
            job: Pre-created job record to update (e.g. one the HTTP
                service is polling); a fresh one is created otherwise.
            result_callback: Receives the result while the job is still
                finalizing, before it is marked done.

        Returns:
            ConversionResult with images (extract) or pdf (compress).

        Raises:
            DecodeError: If the buffer cannot be opened.
            RenderError: If a page fails under the fail-fast policy.
            AssemblyError: If the output PDF cannot be built.
            ConversionCancelled: If ``cancel_event`` was set.
            PipelineBusy: If this pipeline is already running a job.
        """
        steps = self.pages(
            buffer, options, progress_callback, cancel_event, job, result_callback,
        )
        while True:
            try:
                next(steps)
            except StopIteration as done:
                return done.value

    def pages(
        self,
        buffer: bytes,
        options: Optional[ConversionOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        job: Optional[ConversionJob] = None,
        result_callback: Optional[ResultCallback] = None,
    ) -> Generator[PageOutcome, None, ConversionResult]:
        """
        Step through a conversion one page at a time.

        Yields a PageOutcome after each page; the generator's return value
        (``StopIteration.value``) is the ConversionResult. Closing the
        generator early counts as cancellation.
        """
        options = options or self.default_options()
        job = job or ConversionJob.from_options(options)

        if not self._busy.acquire(blocking=False):
            raise PipelineBusy("Pipeline is already running a job")

        machine = PipelineStateMachine(job)
        images: list[EncodedImage] = []
        builder: Optional[PdfBuilder] = None
        start_time = time.time()

        try:
            machine.open()
            logger.info(
                f"Job {job.job_id}: {options.mode.value} "
                f"(quality={options.quality}, scale={options.scale})"
            )

            with self.decoder.open(buffer, password=options.password) as document:
                total = document.page_count
                job.page_count = total
                logger.info(f"Job {job.job_id}: {total} pages")

                if options.mode == ConversionMode.COMPRESS:
                    builder = self.assembler.create_document()

                for index in range(total):
                    self._check_cancelled(cancel_event, machine)
                    machine.start_page(index)

                    outcome = PageOutcome(page_index=index)

                    try:
                        size = document.page_size(index)
                        outcome.page_size = size
                        rendered = document.render_page(index, options.scale)
                        image = self.encoder.encode(rendered, options.quality)
                        del rendered
                    except RenderError as e:
                        if options.error_policy != ErrorPolicy.SKIP:
                            raise
                        logger.warning(f"Job {job.job_id}: skipping page {index + 1}: {e}")
                        job.skipped_pages.append(index)
                        outcome.skipped = True
                        outcome.error_message = str(e)
                    else:
                        if builder is not None:
                            builder.add_page(size.width_pt, size.height_pt, image.data)
                        else:
                            images.append(image)
                        outcome.image = image
                        logger.debug(
                            f"Job {job.job_id}: page {index + 1}/{total} "
                            f"-> {image.size_bytes} bytes"
                        )

                    # 1.0 is reserved for after finalization.
                    if index + 1 < total:
                        self._report(job, (index + 1) / total, progress_callback)
                    yield outcome

                self._check_cancelled(cancel_event, machine)
                machine.finalize()

                pdf = builder.finalize() if builder is not None else None
                result = ConversionResult(
                    job_id=job.job_id,
                    mode=options.mode,
                    page_count=total,
                    images=images,
                    pdf=pdf,
                    skipped_pages=list(job.skipped_pages),
                    source_size_bytes=document.source_size_bytes,
                )

            if result_callback:
                result_callback(result)

            machine.complete()
            self._report(job, 1.0, progress_callback)

            elapsed = time.time() - start_time
            logger.info(
                f"Job {job.job_id} complete in {elapsed:.2f}s — "
                f"{result.output_size_bytes} bytes out"
            )
            return result

        except GeneratorExit:
            images.clear()
            machine.cancel()
            raise
        except ConversionCancelled:
            images.clear()
            logger.info(f"Job {job.job_id} cancelled at page boundary")
            raise
        except Exception as e:
            images.clear()
            machine.fail(e)
            logger.error(f"Job {job.job_id} failed: {getattr(e, 'kind', type(e).__name__)}: {e}")
            raise
        finally:
            if builder is not None:
                builder.discard()
            self._busy.release()

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _check_cancelled(
        self,
        cancel_event: Optional[threading.Event],
        machine: PipelineStateMachine,
    ):
        if cancel_event is not None and cancel_event.is_set():
            machine.cancel()
            raise ConversionCancelled(f"Job {machine.job.job_id} was cancelled")

    def _report(
        self,
        job: ConversionJob,
        fraction: float,
        progress_callback: Optional[ProgressCallback],
    ):
        """Record and publish progress; never moves backwards."""
        fraction = max(job.progress, min(1.0, fraction))
        job.progress = fraction
        if progress_callback:
            progress_callback(fraction)

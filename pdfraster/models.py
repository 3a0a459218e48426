"""
Data Models
===========
Pydantic models for conversion jobs and their outputs.
Byte payloads are excluded from JSON dumps via ``summary()`` helpers so
job state can be returned over HTTP without shipping image data.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, computed_field, field_validator


# ─── Enums ────────────────────────────────────────────────────────────────────


class ConversionMode(str, Enum):
    """What the pipeline produces."""
    EXTRACT_IMAGES = "extract_images"
    COMPRESS = "compress"


class ErrorPolicy(str, Enum):
    """How a single page failure affects the job."""
    FAIL_FAST = "fail_fast"
    SKIP = "skip"


class PipelineState(str, Enum):
    """Lifecycle of one conversion run."""
    IDLE = "idle"
    OPENING = "opening"
    PROCESSING_PAGE = "processing_page"
    FINALIZING = "finalizing"
    DONE = "done"
    ERRORED = "errored"
    CANCELLED = "cancelled"


# ─── Quality Presets ──────────────────────────────────────────────────────────

QUALITY_PRESETS: dict[str, float] = {
    "low": 0.5,
    "medium": 0.75,
    "high": 0.92,
}

DEFAULT_QUALITY = QUALITY_PRESETS["medium"]
DEFAULT_SCALE = 1.5
MIN_SCALE = 0.1
MAX_SCALE = 4.0


def resolve_quality(value: Union[str, float, int, None]) -> float:
    """
    Turn a preset name ("low", "medium", "high") or a number into a
    quality factor. Numbers outside [0, 1] are rejected.
    """
    if value is None or value == "":
        return DEFAULT_QUALITY

    if isinstance(value, str):
        key = value.strip().lower()
        if key in QUALITY_PRESETS:
            return QUALITY_PRESETS[key]
        try:
            value = float(key)
        except ValueError:
            raise ValueError(
                f"Unknown quality '{value}'. "
                f"Use one of {', '.join(QUALITY_PRESETS)} or a number in [0, 1]"
            ) from None

    quality = float(value)
    if not 0.0 <= quality <= 1.0:
        raise ValueError(f"Quality must be within [0, 1], got {quality}")
    return quality


# ─── Geometry & Payloads ──────────────────────────────────────────────────────


class PageSize(BaseModel):
    """Page dimensions in PDF points (1/72 inch)."""
    width_pt: float = Field(ge=0)
    height_pt: float = Field(ge=0)

    def as_tuple(self) -> tuple[float, float]:
        return (self.width_pt, self.height_pt)


class EncodedImage(BaseModel):
    """A JPEG-encoded page."""
    page_index: int = Field(ge=0)
    data: bytes = Field(repr=False)
    quality: float = Field(ge=0, le=1)
    pixel_width: int = Field(ge=1)
    pixel_height: int = Field(ge=1)
    mime_type: str = "image/jpeg"

    @computed_field
    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def summary(self) -> dict:
        return self.model_dump(exclude={"data"})


class OutputPdf(BaseModel):
    """A newly assembled PDF document."""
    data: bytes = Field(repr=False)
    page_count: int = Field(ge=0)
    mime_type: str = "application/pdf"

    @computed_field
    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def summary(self) -> dict:
        return self.model_dump(exclude={"data"})


# ─── Job Models ───────────────────────────────────────────────────────────────


class ConversionOptions(BaseModel):
    """Options accepted by ``ConversionPipeline.run``."""
    mode: ConversionMode = ConversionMode.EXTRACT_IMAGES
    quality: float = Field(default=DEFAULT_QUALITY, ge=0, le=1)
    scale: float = Field(default=DEFAULT_SCALE, ge=MIN_SCALE, le=MAX_SCALE)
    error_policy: ErrorPolicy = ErrorPolicy.FAIL_FAST
    password: Optional[str] = Field(default=None, repr=False)

    @field_validator("quality", mode="before")
    @classmethod
    def _accept_presets(cls, value):
        if isinstance(value, str):
            return resolve_quality(value)
        return value


class ConversionJob(BaseModel):
    """
    Transient state of one pipeline run.
    Created per run and passed explicitly through the pipeline.
    """
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    mode: ConversionMode
    quality: float
    scale: float
    error_policy: ErrorPolicy = ErrorPolicy.FAIL_FAST
    state: PipelineState = PipelineState.IDLE
    page_count: Optional[int] = None
    current_page_index: Optional[int] = None
    progress: float = Field(default=0.0, ge=0, le=1)
    skipped_pages: list[int] = Field(default_factory=list)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_options(cls, options: ConversionOptions, **kwargs) -> ConversionJob:
        return cls(
            mode=options.mode,
            quality=options.quality,
            scale=options.scale,
            error_policy=options.error_policy,
            **kwargs,
        )

    def mark_started(self):
        self.started_at = datetime.now(timezone.utc).isoformat()

    def mark_completed(self):
        self.completed_at = datetime.now(timezone.utc).isoformat()


class PageOutcome(BaseModel):
    """What happened to one page; yielded after each page boundary."""
    page_index: int = Field(ge=0)
    page_size: Optional[PageSize] = None
    image: Optional[EncodedImage] = None
    skipped: bool = False
    error_message: Optional[str] = None


class ConversionResult(BaseModel):
    """Final output of a successful run."""
    job_id: str
    mode: ConversionMode
    page_count: int = Field(ge=0)
    images: list[EncodedImage] = Field(default_factory=list)
    pdf: Optional[OutputPdf] = None
    skipped_pages: list[int] = Field(default_factory=list)
    source_size_bytes: int = Field(default=0, ge=0)

    @computed_field
    @property
    def output_size_bytes(self) -> int:
        if self.pdf is not None:
            return self.pdf.size_bytes
        return sum(img.size_bytes for img in self.images)

    @computed_field
    @property
    def reduction_percent(self) -> float:
        """Size saved relative to the source, negative when output grew."""
        if self.source_size_bytes == 0:
            return 0.0
        saved = self.source_size_bytes - self.output_size_bytes
        return round(saved / self.source_size_bytes * 100, 2)

    def summary(self) -> dict:
        data = self.model_dump(exclude={"images", "pdf"})
        data["images"] = [img.summary() for img in self.images]
        data["pdf"] = self.pdf.summary() if self.pdf is not None else None
        return data

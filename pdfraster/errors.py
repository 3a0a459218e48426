"""
Error Kinds
===========
Exceptions raised by the conversion pipeline.

Every error carries a ``kind`` (the class name) and a human-readable
message so the CLI and HTTP surfaces can report both without inspecting
the exception type themselves.
"""

from __future__ import annotations

from typing import Optional


class ConversionError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class DecodeError(ConversionError):
    """The buffer is not a readable PDF (corrupt, truncated or encrypted)."""


class RenderError(ConversionError):
    """A single page could not be rasterized."""

    def __init__(self, message: str, page_index: Optional[int] = None):
        super().__init__(message)
        self.page_index = page_index

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["page_index"] = self.page_index
        return data


class EncodeError(RenderError):
    """A rendered page could not be encoded as JPEG."""


class AssemblyError(ConversionError):
    """Invalid image or page geometry handed to the PDF assembler."""


class ArchiveError(ConversionError):
    """The ZIP archive of page images could not be built."""


class ConversionCancelled(ConversionError):
    """The job was cancelled at a page boundary."""


class PipelineBusy(ConversionError):
    """A pipeline instance was asked to run while already running."""

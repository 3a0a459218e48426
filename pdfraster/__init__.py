"""
pdfraster
=========
PDF page rasterization and re-encoding.

Architecture:
    - PDF Decoder: Opens PDF buffers and exposes page geometry (PyMuPDF)
    - Raster Surface: Renders a page into an opaque RGB pixel buffer
    - Image Encoder: Re-encodes rendered pages as quality-tunable JPEG (Pillow)
    - Page Assembler: Builds image-only PDFs sized like the source pages
    - Conversion Pipeline: Orchestrates the above per page with progress,
      cancellation and an explicit per-job state machine
    - Archive Builder: Bundles page images into a flat ZIP

Version: 1.0.0
"""

__version__ = "1.0.0"

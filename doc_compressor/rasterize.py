"""
rasterize.py - PDF to bitmap conversion using PyMuPDF.

Pages are rendered one at a time, in order, fully in memory.
"""

import logging
from typing import Callable, Iterator, List, Optional

import numpy as np
try:
    import fitz  # pip install pymupdf
except ImportError:
    import pymupdf as fitz  # apt install python3-pymupdf

from .codec import PageBitmap
from .errors import DocumentParseError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def open_document(data: bytes) -> "fitz.Document":
    """
    Open PDF bytes.

    Raises:
        DocumentParseError: empty, corrupt, non-PDF or encrypted input
    """
    if not data:
        raise DocumentParseError("Document is empty")

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise DocumentParseError(f"Cannot parse PDF: {e}") from e

    if doc.needs_pass:
        doc.close()
        raise DocumentParseError("PDF is encrypted")

    if doc.page_count == 0:
        doc.close()
        raise DocumentParseError("PDF has no pages")

    return doc


def get_page_count(data: bytes) -> int:
    """Get total page count."""
    with open_document(data) as doc:
        return doc.page_count


def render_page(doc: "fitz.Document", page_index: int, scale: float) -> PageBitmap:
    """
    Render one page to an RGB bitmap.

    Args:
        doc: Open document
        page_index: 1-based page number
        scale: Linear resolution multiplier (1.0 = one pixel per point)

    Returns:
        PageBitmap sized to the scaled page
    """
    try:
        page = doc[page_index - 1]
        rect = page.rect
        pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    except (RuntimeError, ValueError, IndexError) as e:
        raise DocumentParseError(f"Failed to render page {page_index}: {e}") from e

    # Bitmaps are always 3-channel RGB
    if pixmap.n != 3:
        pixmap = fitz.Pixmap(fitz.csRGB, pixmap)

    image = np.frombuffer(pixmap.samples, dtype=np.uint8).reshape(
        pixmap.height, pixmap.width, 3
    ).copy()  # Copy to own the memory

    logger.debug(
        f"Rasterized page {page_index}: {pixmap.width}x{pixmap.height} @ scale {scale}"
    )

    return PageBitmap(
        page_index=page_index,
        image=image,
        page_width_pts=rect.width,
        page_height_pts=rect.height,
    )


def iter_pages(
    data: bytes,
    scale: float = 1.5,
    progress_callback: Optional[ProgressCallback] = None
) -> Iterator[PageBitmap]:
    """
    Yield every page as a bitmap, first to last.

    progress_callback(current, total) fires before each page renders.
    A failure on any page aborts the iteration.
    """
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")

    with open_document(data) as doc:
        total = doc.page_count
        for page_index in range(1, total + 1):
            if progress_callback:
                progress_callback(page_index, total)
            yield render_page(doc, page_index, scale)


def rasterize_document(
    data: bytes,
    scale: float = 1.5,
    progress_callback: Optional[ProgressCallback] = None
) -> List[PageBitmap]:
    """Rasterize all pages into a list."""
    return list(iter_pages(data, scale, progress_callback))

"""
bundle.py - ZIP archive of per-page images.

Layout:
    <stem>/<stem>_page_1.jpg
    <stem>/<stem>_page_2.jpg
    ...
"""

import io
import logging
import zipfile
from pathlib import PurePath
from typing import Sequence

from .errors import ReassemblyError

logger = logging.getLogger(__name__)


def strip_extension(filename: str) -> str:
    """'scan.final.pdf' -> 'scan.final'"""
    return PurePath(filename).stem or filename


def page_filename(stem: str, page_num: int, ext: str = "jpg") -> str:
    return f"{stem}_page_{page_num}.{ext}"


def bundle_name(stem: str) -> str:
    """Suggested download name for the archive."""
    return f"{stem}_images.zip"


def create_image_bundle(stem: str, images: Sequence[bytes], ext: str = "jpg") -> bytes:
    """
    Package page images into a ZIP, one entry per page in order.

    Raises:
        ReassemblyError: no images, or the archive could not be written
    """
    if not images:
        raise ReassemblyError("Nothing to package: no page images")

    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for page_num, data in enumerate(images, start=1):
                archive.writestr(f"{stem}/{page_filename(stem, page_num, ext)}", data)
    except (OSError, ValueError, zipfile.LargeZipFile) as e:
        raise ReassemblyError(f"Archive creation failed: {e}") from e

    data = buffer.getvalue()
    logger.info(f"Bundled {len(images)} images: {len(data):,} bytes")
    return data

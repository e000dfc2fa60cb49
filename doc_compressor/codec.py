"""
codec.py - Raster codec.

Bitmaps are numpy arrays: H x W x 3 (RGB) or H x W (grayscale).
Quality levels are floats in (0.0, 1.0] and map monotonically onto
Pillow's 1-100 JPEG quality scale.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeError, EncodeError

logger = logging.getLogger(__name__)

# Fixed 4:2:0 chroma subsampling. Pillow's default depends on quality,
# which would break size monotonicity across the quality range.
JPEG_SUBSAMPLING = 2


@dataclass
class PageBitmap:
    """Decoded, uncompressed pixels for one page or image."""
    page_index: int  # 1-based
    image: np.ndarray
    page_width_pts: Optional[float] = None
    page_height_pts: Optional[float] = None

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def is_gray(self) -> bool:
        return self.image.ndim == 2


def quality_to_jpeg(quality: float) -> int:
    """Map a quality level in (0, 1] to Pillow's JPEG quality (1-100)."""
    if not 0.0 < quality <= 1.0:
        raise ValueError(f"Quality level must be in (0, 1], got {quality}")
    return max(1, min(100, int(round(quality * 100))))


def to_pil(image: np.ndarray) -> Image.Image:
    """Wrap a bitmap array as a PIL image (L or RGB)."""
    if image.size == 0 or image.ndim not in (2, 3):
        raise EncodeError(f"Cannot encode bitmap of shape {image.shape}")

    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return Image.fromarray(image)

    if image.shape[2] == 4:
        image = image[:, :, :3]
    elif image.shape[2] == 1:
        return Image.fromarray(np.ascontiguousarray(image[:, :, 0]))
    elif image.shape[2] != 3:
        raise EncodeError(f"Unsupported channel count: {image.shape[2]}")

    return Image.fromarray(np.ascontiguousarray(image))


def encode_jpeg(image: np.ndarray, quality: float) -> bytes:
    """
    Encode a bitmap as JPEG.

    Args:
        image: RGB or grayscale numpy array
        quality: Quality level in (0, 1]

    Returns:
        JPEG bytes

    Raises:
        EncodeError: degenerate bitmap or encoder failure
    """
    img = to_pil(image)
    jpeg_quality = quality_to_jpeg(quality)

    buffer = io.BytesIO()
    try:
        img.save(
            buffer,
            format="JPEG",
            quality=jpeg_quality,
            optimize=True,
            subsampling=JPEG_SUBSAMPLING,
        )
    except (OSError, ValueError) as e:
        raise EncodeError(f"JPEG encoding failed: {e}") from e

    data = buffer.getvalue()
    logger.debug(f"Encoded {img.width}x{img.height} {img.mode} at q={jpeg_quality}: {len(data):,} bytes")
    return data


def decode_image(data: bytes, page_index: int = 1) -> PageBitmap:
    """
    Decode JPEG/PNG bytes into a bitmap.

    EXIF orientation is applied. Grayscale sources stay single-channel,
    everything else becomes RGB.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Unreadable image: {e}") from e

    if img.mode in ("1", "L", "LA"):
        img = img.convert("L")
    else:
        img = img.convert("RGB")

    if img.width == 0 or img.height == 0:
        raise DecodeError("Image has zero area")

    logger.debug(f"Decoded image: {img.width}x{img.height} {img.mode}")
    return PageBitmap(page_index=page_index, image=np.array(img))

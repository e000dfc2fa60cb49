"""
compression.py - Target-size page compression.

Pipeline per bitmap:
1. Cap the larger dimension at MAX_DIMENSION (aspect preserved)
2. Brightness scaling, then optional grayscale
3. Quality search: halve the quality interval until the JPEG fits

The search only ever lowers quality. The first encoding at or under
the target wins, even if a higher quality would also fit.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

import cv2
import numpy as np

from .codec import PageBitmap, encode_jpeg
from .config import Config

logger = logging.getLogger(__name__)

# Quality search bounds
MIN_QUALITY = 0.01
MAX_QUALITY = 1.0
INITIAL_QUALITY = 0.8
QUALITY_FLOOR = 0.05  # Stop searching at or below this
MAX_ATTEMPTS = 10

Encoder = Callable[[np.ndarray, float], bytes]


@dataclass(frozen=True)
class CompressionSettings:
    """User-facing compression knobs."""
    target_size_kb: float
    brightness: float = 100.0  # Percent, 100 = unchanged
    grayscale: bool = False

    def __post_init__(self):
        if not self.target_size_kb > 0:
            raise ValueError(f"target_size_kb must be positive, got {self.target_size_kb}")
        if not 0 <= self.brightness <= 200:
            raise ValueError(f"brightness must be in [0, 200], got {self.brightness}")

    @property
    def target_bytes(self) -> int:
        return int(self.target_size_kb * 1024)

    def with_target(self, target_size_kb: float) -> "CompressionSettings":
        return replace(self, target_size_kb=target_size_kb)


@dataclass
class CompressedPage:
    """Compressed page data ready for PDF embedding or download."""
    page_num: int
    image_data: bytes
    width: int
    height: int
    is_color: bool
    quality: float
    encode_calls: int
    target_size: int
    page_width_pts: Optional[float] = None
    page_height_pts: Optional[float] = None

    @property
    def total_size(self) -> int:
        return len(self.image_data)

    @property
    def within_target(self) -> bool:
        return self.total_size <= self.target_size


def page_budget_kb(
    total_kb: float,
    page_count: int,
    floor_kb: float = Config.MIN_PAGE_BUDGET_KB
) -> float:
    """Split a whole-document budget across pages, floored at floor_kb."""
    if page_count < 1:
        raise ValueError(f"page_count must be at least 1, got {page_count}")
    return max(floor_kb, total_kb / page_count)


def limit_dimensions(image: np.ndarray, max_dimension: int = Config.MAX_DIMENSION) -> np.ndarray:
    """
    Downscale so the larger side equals max_dimension.

    Images already within the limit, and zero-area images, are returned
    unchanged. The encoder rejects the latter.
    """
    height, width = image.shape[:2]
    if width == 0 or height == 0 or (width <= max_dimension and height <= max_dimension):
        return image

    ratio = width / height
    if width > height:
        new_width = max_dimension
        new_height = max(1, int(round(max_dimension / ratio)))
    else:
        new_height = max_dimension
        new_width = max(1, int(round(max_dimension * ratio)))

    logger.debug(f"Constraining {width}x{height} to {new_width}x{new_height}")
    return cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_AREA)


def apply_adjustments(image: np.ndarray, brightness: float = 100.0, grayscale: bool = False) -> np.ndarray:
    """Scale every channel by brightness percent, then optionally desaturate."""
    if brightness != 100:
        image = cv2.convertScaleAbs(image, alpha=brightness / 100.0, beta=0)

    if grayscale and image.ndim == 3:
        image = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)

    return image


def compress_bitmap(
    bitmap: PageBitmap,
    settings: CompressionSettings,
    encoder: Encoder = encode_jpeg,
    max_dimension: int = Config.MAX_DIMENSION
) -> CompressedPage:
    """
    Compress a bitmap toward settings.target_size_kb.

    Best effort: if even the lowest quality tried is over budget, that
    encoding is returned anyway.

    Args:
        bitmap: Decoded page or image
        settings: Target size, brightness, grayscale
        encoder: Callable(image, quality) -> bytes
        max_dimension: Cap for the larger side, in pixels

    Returns:
        CompressedPage with the chosen encoding

    Raises:
        EncodeError: encoder cannot handle the bitmap
    """
    image = limit_dimensions(bitmap.image, max_dimension)
    image = apply_adjustments(image, settings.brightness, settings.grayscale)

    target = settings.target_bytes
    min_q = MIN_QUALITY
    max_q = MAX_QUALITY
    quality = INITIAL_QUALITY
    attempt = 0
    calls = 0

    while True:
        data = encoder(image, quality)
        calls += 1
        logger.debug(
            f"Page {bitmap.page_index}: attempt {attempt} q={quality:.4f} "
            f"-> {len(data):,} bytes (target {target:,})"
        )

        if len(data) <= target or quality <= QUALITY_FLOOR or attempt > MAX_ATTEMPTS:
            break

        max_q = quality
        quality = (min_q + max_q) / 2
        attempt += 1

    height, width = image.shape[:2]
    result = CompressedPage(
        page_num=bitmap.page_index,
        image_data=data,
        width=width,
        height=height,
        is_color=image.ndim == 3,
        quality=quality,
        encode_calls=calls,
        target_size=target,
        page_width_pts=bitmap.page_width_pts,
        page_height_pts=bitmap.page_height_pts,
    )

    logger.info(
        f"Page {result.page_num}: {result.total_size:,} bytes | "
        f"{width}x{height} | color={result.is_color} | q={quality:.3f}"
        + ("" if result.within_target else " | over target")
    )
    return result

"""Shared fixtures: in-memory bitmaps, encoded images and PDFs."""

import io

import numpy as np
import pytest
from PIL import Image

try:
    import fitz
except ImportError:
    import pymupdf as fitz

from doc_compressor.codec import PageBitmap, encode_jpeg
from doc_compressor.compression import CompressedPage

RED = (220, 30, 30)
GREEN = (30, 200, 30)
BLUE = (30, 30, 220)


def noise_image(height: int, width: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def gradient_image(height: int, width: int) -> np.ndarray:
    x = np.linspace(0, 255, width, dtype=np.float32)
    y = np.linspace(0, 255, height, dtype=np.float32)
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :, 0] = x[np.newaxis, :]
    image[:, :, 1] = y[:, np.newaxis]
    image[:, :, 2] = 128
    return image


def solid_image(height: int, width: int, color) -> np.ndarray:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    return image


def pil_bytes(image: np.ndarray, fmt: str, **kwargs) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(image).save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


def make_pdf(page_count: int, width: float = 200, height: float = 300) -> bytes:
    doc = fitz.open()
    for i in range(1, page_count + 1):
        page = doc.new_page(width=width, height=height)
        page.draw_rect(fitz.Rect(20, 20, width - 20, height / 2), color=(0, 0, 1), fill=(1, 0.8, 0))
        page.insert_text((30, height - 40), f"Page {i}", fontsize=24)
    data = doc.tobytes()
    doc.close()
    return data


def make_compressed(color, page_num: int = 1, width: int = 60, height: int = 80) -> CompressedPage:
    data = encode_jpeg(solid_image(height, width, color), 0.9)
    return CompressedPage(
        page_num=page_num,
        image_data=data,
        width=width,
        height=height,
        is_color=True,
        quality=0.9,
        encode_calls=1,
        target_size=len(data),
    )


class CountingEncoder:
    """Wraps an encoder and records every quality it was asked for."""

    def __init__(self, encoder=encode_jpeg):
        self.encoder = encoder
        self.qualities = []

    def __call__(self, image, quality):
        self.qualities.append(quality)
        return self.encoder(image, quality)

    @property
    def calls(self) -> int:
        return len(self.qualities)


@pytest.fixture
def photo_bitmap():
    return PageBitmap(page_index=1, image=gradient_image(240, 320))


@pytest.fixture
def noise_bitmap():
    return PageBitmap(page_index=1, image=noise_image(128, 128))


@pytest.fixture
def jpeg_bytes():
    return pil_bytes(gradient_image(120, 160), "JPEG", quality=95)


@pytest.fixture
def png_bytes():
    return pil_bytes(gradient_image(100, 50), "PNG")


@pytest.fixture
def three_page_pdf():
    return make_pdf(3)


@pytest.fixture
def five_page_pdf():
    return make_pdf(5)

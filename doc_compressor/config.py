"""Environment-driven tunables."""

import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    # Compression
    MAX_DIMENSION = int(os.getenv("DOC_MAX_DIMENSION", "2500"))  # px
    MIN_PAGE_BUDGET_KB = float(os.getenv("DOC_MIN_PAGE_BUDGET_KB", "20"))
    DEFAULT_TARGET_KB = float(os.getenv("DOC_DEFAULT_TARGET_KB", "200"))

    # Rasterization scale (1.0 = one pixel per PDF point)
    COMPRESS_SCALE = float(os.getenv("DOC_COMPRESS_SCALE", "1.5"))
    CONVERT_SCALE = float(os.getenv("DOC_CONVERT_SCALE", "2.0"))

    # Image-to-PDF layout
    PAGE_MARGIN_MM = float(os.getenv("DOC_PAGE_MARGIN_MM", "10"))

    # Extraction service (OpenAI-compatible endpoint)
    EXTRACT_API_BASE_URL = os.getenv("EXTRACT_API_BASE_URL", "http://localhost:1234")
    EXTRACT_MODEL = os.getenv("EXTRACT_MODEL", "local-model")
    EXTRACT_API_KEY = os.getenv("EXTRACT_API_KEY")
    EXTRACT_TIMEOUT = int(os.getenv("EXTRACT_TIMEOUT", "300"))

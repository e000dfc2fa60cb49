"""
extraction.py - Text extraction through an external vision model.

The service is a collaborator, not part of the pipeline: it receives a
prepared JPEG and returns structured text. Failures surface as
ExternalServiceError and are never retried here.
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional

import cv2
import numpy as np
import requests
from pydantic import BaseModel, Field, ValidationError

from .codec import decode_image, encode_jpeg
from .compression import apply_adjustments
from .config import Config
from .errors import DecodeError, ExternalServiceError

logger = logging.getLogger(__name__)

SCAN_MAX_WIDTH = 1000  # px
SCAN_JPEG_QUALITY = 0.9

EXTRACTION_PROMPT = """Analyze this document image.
1. Extract the main text content accurately.
2. Provide a brief summary of what this document is about.
3. If there are key items, dates, or amounts, list them.

Respond with a single JSON object with these keys:
- "text": full extracted text from the document
- "summary": a concise summary of the document
- "items": array of strings with key items, dates, or data points

Return ONLY the JSON object, no markdown fences, no explanation."""


class OcrResult(BaseModel):
    """Structured output of the extraction service"""

    text: str = Field(description="Full extracted text from the document")
    summary: str = Field(description="A concise summary of the document")
    items: Optional[List[str]] = Field(
        default=None, description="Key items, dates, or data points extracted"
    )


class VisionExtractor(ABC):
    @abstractmethod
    def extract(self, image_bytes: bytes, mime_type: str) -> OcrResult:
        """Send an image to the vision model and return its structured reading."""
        ...


def parse_extraction_response(raw: str) -> OcrResult:
    """Strip markdown fences if present and validate the JSON payload."""
    cleaned = re.sub(r"```(?:json)?", "", raw).strip()
    try:
        return OcrResult.model_validate_json(cleaned)
    except ValidationError as e:
        raise ExternalServiceError(f"Unparseable extraction response: {e}") from e


class OpenAICompatibleExtractor(VisionExtractor):
    """Uses an OpenAI-compatible /v1/chat/completions endpoint."""

    def __init__(
        self,
        base_url: str = Config.EXTRACT_API_BASE_URL,
        model: str = Config.EXTRACT_MODEL,
        api_key: Optional[str] = Config.EXTRACT_API_KEY,
        timeout: int = Config.EXTRACT_TIMEOUT
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    def extract(self, image_bytes: bytes, mime_type: str) -> OcrResult:
        img_b64 = base64.b64encode(image_bytes).decode("utf-8")
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": EXTRACTION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{img_b64}"},
                        },
                    ],
                }
            ],
            "temperature": 0.1,
        }
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            resp = requests.post(
                f"{self.base_url}/v1/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            choices = resp.json().get("choices", [])
        except (requests.RequestException, ValueError) as e:
            raise ExternalServiceError(f"Extraction request failed: {e}") from e

        if not choices or not choices[0].get("message", {}).get("content"):
            raise ExternalServiceError("No response text from extraction service")

        logger.debug(f"Extraction response from {self.model}: {len(choices[0]['message']['content'])} chars")
        return parse_extraction_response(choices[0]["message"]["content"])


def get_extractor() -> VisionExtractor:
    """Return the configured extractor."""
    return OpenAICompatibleExtractor()


def prepare_scan(
    data: bytes,
    brightness: float = 100.0,
    contrast: float = 100.0,
    threshold: float = 0.0
) -> bytes:
    """
    Clean up a photographed document before extraction.

    Width is capped at SCAN_MAX_WIDTH. threshold > 0 binarizes the page:
    pixels brighter than threshold% of 255 become white, the rest black.
    """
    image = decode_image(data).image

    height, width = image.shape[:2]
    if width > SCAN_MAX_WIDTH:
        scale = SCAN_MAX_WIDTH / width
        image = cv2.resize(
            image, (SCAN_MAX_WIDTH, max(1, int(height * scale))), interpolation=cv2.INTER_AREA
        )

    image = apply_adjustments(image, brightness)

    if contrast != 100:
        factor = contrast / 100.0
        image = np.clip((image.astype(np.float32) - 128) * factor + 128, 0, 255).astype(np.uint8)

    if threshold > 0:
        image = apply_adjustments(image, grayscale=True)
        _, image = cv2.threshold(image, 255 * threshold / 100.0, 255, cv2.THRESH_BINARY)

    return encode_jpeg(image, SCAN_JPEG_QUALITY)


def scan_document(
    data: bytes,
    mime_type: str,
    extractor: VisionExtractor,
    brightness: float = 100.0,
    contrast: float = 100.0,
    threshold: float = 0.0
) -> OcrResult:
    """Prepare an image and hand it to the extractor."""
    if not mime_type.startswith("image/"):
        raise DecodeError(f"Scanning needs an image, got {mime_type}")

    prepared = prepare_scan(data, brightness, contrast, threshold)
    logger.info(f"Prepared scan: {len(prepared):,} bytes")
    return extractor.extract(prepared, "image/jpeg")

"""
pipeline.py - Document compression pipeline.

Image input:
    Idle -> Loaded -> Compressing -> Done

PDF input:
    Idle -> Loaded -> Rasterizing -> PerPageCompressing -> Reassembling -> Done

Any failure moves the job to Failed, which is terminal. Pages are handled
strictly one after another; there is no parallel fan-out.
"""

import logging
import mimetypes
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .bundle import bundle_name, create_image_bundle, strip_extension
from .codec import decode_image, encode_jpeg
from .compression import CompressionSettings, CompressedPage, compress_bitmap, page_budget_kb
from .config import Config
from .errors import DecodeError
from .pdf_writer import PageLayout, create_pdf, images_to_pdf
from .rasterize import ProgressCallback, get_page_count, iter_pages, rasterize_document

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"

# Quality for pages exported by the PDF-to-images converter
CONVERT_JPEG_QUALITY = 1.0


def format_bytes(size: int, decimals: int = 2) -> str:
    """Human-readable byte count: 0 Bytes, 512 Bytes, 1.5 KB, 2 MB."""
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, max(0, decimals)):g} {units[i]}"


@dataclass(frozen=True)
class SourceDocument:
    """Input bytes plus their declared MIME type."""
    data: bytes
    mime_type: str
    name: str = "document"

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "SourceDocument":
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(data=path.read_bytes(), mime_type=mime_type, name=path.name)

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def stem(self) -> str:
        return strip_extension(self.name)

    @cached_property
    def page_count(self) -> int:
        return get_page_count(self.data) if self.is_pdf else 1


class ArtifactFormat(Enum):
    JPEG = "image/jpeg"
    PDF = "application/pdf"
    ZIP = "application/zip"


@dataclass
class EncodedArtifact:
    """Final output. The caller owns the bytes from here on."""
    data: bytes
    format: ArtifactFormat
    filename: str
    page_count: int = 1

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def mime_type(self) -> str:
        return self.format.value

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.write_bytes(self.data)
        logger.info(f"Saved {self.filename} ({self.size:,} bytes) to {path}")
        return path


class PipelineState(Enum):
    IDLE = "idle"
    LOADED = "loaded"
    COMPRESSING = "compressing"
    RASTERIZING = "rasterizing"
    PER_PAGE_COMPRESSING = "per_page_compressing"
    REASSEMBLING = "reassembling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PageStats:
    """Statistics for a processed page."""
    page_num: int
    compressed_size: int
    quality: float
    encode_calls: int
    within_target: bool
    process_time: float = 0.0


@dataclass
class PipelineResult:
    """Result of one pipeline run."""
    source_name: str
    input_size: int
    artifact: EncodedArtifact
    page_count: int = 1
    target_size_kb: float = 0.0
    total_time: float = 0.0
    page_stats: List[PageStats] = field(default_factory=list)

    @property
    def output_size(self) -> int:
        return self.artifact.size

    @property
    def reduction_pct(self) -> float:
        if self.input_size == 0:
            return 0
        return (1 - self.output_size / self.input_size) * 100

    @property
    def within_target(self) -> bool:
        return self.output_size <= self.target_size_kb * 1024

    def summary(self) -> str:
        return (
            f"Input:  {self.source_name} ({format_bytes(self.input_size)})\n"
            f"Output: {self.artifact.filename} ({format_bytes(self.output_size)})\n"
            f"Reduction: {self.reduction_pct:.1f}%\n"
            f"Pages: {self.page_count}\n"
            f"Target: {self.target_size_kb:g} KB"
            f"{'' if self.within_target else ' (best effort, not reached)'}\n"
            f"Time: {self.total_time:.1f}s"
        )


StateCallback = Callable[[PipelineState], None]


class CompressionJob:
    """
    One compression run over one source document.

    A job runs once. After Done or Failed, start a new job to retry.
    """

    def __init__(
        self,
        settings: CompressionSettings,
        scale: float = Config.COMPRESS_SCALE,
        progress_callback: Optional[ProgressCallback] = None,
        state_callback: Optional[StateCallback] = None
    ):
        self.settings = settings
        self.scale = scale
        self.progress_callback = progress_callback
        self.state_callback = state_callback
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.error: Optional[Exception] = None
        self.result: Optional[PipelineResult] = None

    def _set_state(self, state: PipelineState):
        logger.debug(f"State: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        if self.state_callback:
            self.state_callback(state)

    def run(self, source: SourceDocument) -> PipelineResult:
        """
        Compress an image or rebuild a PDF toward the target size.

        Raises:
            PipelineError: any stage failure (job ends in FAILED)
            RuntimeError: job has already run
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"Job already {self.state.value}; start a new job")

        start_time = time.time()
        self._set_state(PipelineState.LOADED)
        logger.info(
            f"Processing {source.name}: {source.mime_type}, {source.size:,} bytes, "
            f"target {self.settings.target_size_kb:g} KB"
        )

        try:
            if source.is_pdf:
                result = self._run_pdf(source)
            elif source.is_image:
                result = self._run_image(source)
            else:
                raise DecodeError(f"Unsupported type: {source.mime_type}")
        except Exception as e:
            self.error = e
            self._set_state(PipelineState.FAILED)
            logger.error(f"Pipeline failed for {source.name}: {e}")
            raise

        result.total_time = time.time() - start_time
        self.result = result
        self._set_state(PipelineState.DONE)
        logger.info(f"\n{result.summary()}")
        return result

    def _run_image(self, source: SourceDocument) -> PipelineResult:
        self._set_state(PipelineState.COMPRESSING)
        page_start = time.time()
        page = compress_bitmap(decode_image(source.data), self.settings)

        artifact = EncodedArtifact(
            data=page.image_data,
            format=ArtifactFormat.JPEG,
            filename=f"optimized_{source.stem}.jpg",
        )
        return PipelineResult(
            source_name=source.name,
            input_size=source.size,
            artifact=artifact,
            target_size_kb=self.settings.target_size_kb,
            page_stats=[_page_stats(page, time.time() - page_start)],
        )

    def _run_pdf(self, source: SourceDocument) -> PipelineResult:
        self._set_state(PipelineState.RASTERIZING)
        bitmaps = deque(rasterize_document(source.data, self.scale, self.progress_callback))
        page_count = len(bitmaps)

        budget_kb = page_budget_kb(self.settings.target_size_kb, page_count)
        page_settings = self.settings.with_target(budget_kb)
        logger.info(f"{page_count} pages, {budget_kb:.1f} KB budget per page")

        self._set_state(PipelineState.PER_PAGE_COMPRESSING)
        pages: List[CompressedPage] = []
        page_stats: List[PageStats] = []
        while bitmaps:
            page_start = time.time()
            page = compress_bitmap(bitmaps.popleft(), page_settings)
            pages.append(page)
            page_stats.append(_page_stats(page, time.time() - page_start))

        self._set_state(PipelineState.REASSEMBLING)
        artifact = EncodedArtifact(
            data=create_pdf(pages, PageLayout.NATIVE),
            format=ArtifactFormat.PDF,
            filename=f"optimized_{source.name}",
            page_count=page_count,
        )
        return PipelineResult(
            source_name=source.name,
            input_size=source.size,
            artifact=artifact,
            page_count=page_count,
            target_size_kb=self.settings.target_size_kb,
            page_stats=page_stats,
        )


def _page_stats(page: CompressedPage, elapsed: float) -> PageStats:
    return PageStats(
        page_num=page.page_num,
        compressed_size=page.total_size,
        quality=page.quality,
        encode_calls=page.encode_calls,
        within_target=page.within_target,
        process_time=elapsed,
    )


def compress_document(
    source: SourceDocument,
    settings: CompressionSettings,
    scale: float = Config.COMPRESS_SCALE,
    progress_callback: Optional[ProgressCallback] = None
) -> PipelineResult:
    """Run a fresh CompressionJob over source."""
    return CompressionJob(settings, scale, progress_callback).run(source)


def convert_pdf_to_images(
    source: SourceDocument,
    scale: float = Config.CONVERT_SCALE,
    progress_callback: Optional[ProgressCallback] = None
) -> EncodedArtifact:
    """Render every PDF page to JPEG and bundle them into a ZIP."""
    if not source.is_pdf:
        raise DecodeError(f"Expected a PDF, got {source.mime_type}")

    images = [
        encode_jpeg(bitmap.image, CONVERT_JPEG_QUALITY)
        for bitmap in iter_pages(source.data, scale, progress_callback)
    ]
    stem = source.stem
    return EncodedArtifact(
        data=create_image_bundle(stem, images),
        format=ArtifactFormat.ZIP,
        filename=bundle_name(stem),
        page_count=len(images),
    )


def convert_images_to_pdf(
    sources: Sequence[SourceDocument],
    filename: str = "converted_images.pdf"
) -> EncodedArtifact:
    """Merge images, in order, into an A4 PDF."""
    for source in sources:
        if not source.is_image:
            raise DecodeError(f"{source.name} is not an image ({source.mime_type})")

    return EncodedArtifact(
        data=images_to_pdf([source.data for source in sources]),
        format=ArtifactFormat.PDF,
        filename=filename,
        page_count=len(sources),
    )

"""
pdf_writer.py - PDF assembly from compressed pages.

One JPEG (DCTDecode) image per page, embedded without re-encoding.

Layouts:
- NATIVE: page sized to the source page geometry in points when known,
  otherwise to the image pixel dimensions; the image fills the page.
  Keeping the source geometry means a page rasterized at 1.5x does not
  come back 1.5x larger on paper.
- FIT_A4: A4 page with a margin, image aspect-fit and centred
"""

import io
import logging
from enum import Enum
from typing import Optional, Sequence, Tuple

import pikepdf
from pikepdf import Pdf, Stream, Dictionary, Name
from PIL import Image, UnidentifiedImageError

from .codec import decode_image, encode_jpeg
from .compression import CompressedPage
from .config import Config
from .errors import ReassemblyError

logger = logging.getLogger(__name__)

POINTS_PER_MM = 72 / 25.4
A4_WIDTH_PTS = 210 * POINTS_PER_MM
A4_HEIGHT_PTS = 297 * POINTS_PER_MM

# Re-encode quality for non-JPEG inputs to images_to_pdf
CONVERT_JPEG_QUALITY = 0.92

JPEG_MAGIC = b"\xff\xd8"
EXIF_ORIENTATION = 0x0112


class PageLayout(Enum):
    NATIVE = "native"
    FIT_A4 = "fit_a4"


def fit_to_page(
    width: float,
    height: float,
    page_width: float = A4_WIDTH_PTS,
    page_height: float = A4_HEIGHT_PTS,
    margin: float = Config.PAGE_MARGIN_MM * POINTS_PER_MM
) -> Tuple[float, float, float, float]:
    """
    Aspect-fit an image inside the page margins, centred.

    Returns:
        (x, y, draw_width, draw_height) in points
    """
    ratio = min((page_width - 2 * margin) / width, (page_height - 2 * margin) / height)
    draw_width = width * ratio
    draw_height = height * ratio
    return (page_width - draw_width) / 2, (page_height - draw_height) / 2, draw_width, draw_height


class PDFWriter:
    """
    Assembles JPEG page images into a PDF, one image per page.

    Use as a context manager, or call to_bytes(), to release the document.
    """

    def __init__(self, layout: PageLayout = PageLayout.NATIVE):
        self.pdf = Pdf.new()
        self.layout = layout
        self.page_count = 0
        self.image_bytes = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self.pdf is not None:
            self.pdf.close()
            self.pdf = None

    def add_image(
        self,
        image_data: bytes,
        width: int,
        height: int,
        is_color: bool,
        page_size: Optional[Tuple[float, float]] = None
    ):
        """
        Add a JPEG as a new page.

        Args:
            image_data: JPEG bytes
            width: Image width in pixels
            height: Image height in pixels
            is_color: RGB if True, grayscale otherwise
            page_size: Page size in points for NATIVE layout
                (defaults to the pixel dimensions)
        """
        if image_data[:2] != JPEG_MAGIC:
            raise ReassemblyError(f"Page {self.page_count + 1} is not JPEG data")
        if width <= 0 or height <= 0:
            raise ReassemblyError(f"Page {self.page_count + 1} has zero area")

        if self.layout is PageLayout.FIT_A4:
            page_width, page_height = A4_WIDTH_PTS, A4_HEIGHT_PTS
            x, y, draw_width, draw_height = fit_to_page(width, height)
        else:
            page_width, page_height = page_size or (float(width), float(height))
            x, y, draw_width, draw_height = 0.0, 0.0, page_width, page_height

        self.pdf.add_blank_page(page_size=(page_width, page_height))
        page = self.pdf.pages[-1]

        colorspace = Name.DeviceRGB if is_color else Name.DeviceGray
        image_dict = Dictionary({
            '/Type': Name.XObject,
            '/Subtype': Name.Image,
            '/Width': width,
            '/Height': height,
            '/ColorSpace': colorspace,
            '/BitsPerComponent': 8,
            '/Filter': Name.DCTDecode,
        })
        img_stream = Stream(self.pdf, image_data, image_dict)

        xobjects = Dictionary({})
        xobjects['/Im0'] = self.pdf.make_indirect(img_stream)
        page.Resources = Dictionary({'/XObject': xobjects})

        content = f"""
q
{draw_width:.4f} 0 0 {draw_height:.4f} {x:.4f} {y:.4f} cm
/Im0 Do
Q
"""
        page.Contents = self.pdf.make_indirect(Stream(self.pdf, content.strip().encode("latin-1")))

        self.page_count += 1
        self.image_bytes += len(image_data)

        logger.debug(
            f"Added page {self.page_count}: {len(image_data):,} bytes "
            f"({'color' if is_color else 'gray'}, {self.layout.value})"
        )

    def add_page(self, compressed: CompressedPage):
        """Add a compressed page, keeping its source page geometry if known."""
        page_size = None
        if compressed.page_width_pts and compressed.page_height_pts:
            page_size = (compressed.page_width_pts, compressed.page_height_pts)

        self.add_image(
            compressed.image_data,
            compressed.width,
            compressed.height,
            compressed.is_color,
            page_size=page_size,
        )

    def to_bytes(self) -> bytes:
        """Serialize the PDF."""
        if self.page_count == 0:
            raise ReassemblyError("No pages to write")

        buffer = io.BytesIO()
        try:
            self.pdf.save(
                buffer,
                compress_streams=True,
                object_stream_mode=pikepdf.ObjectStreamMode.generate
            )
        except (pikepdf.PdfError, OSError) as e:
            raise ReassemblyError(f"PDF serialization failed: {e}") from e
        finally:
            self.close()

        data = buffer.getvalue()
        logger.info(f"Assembled {self.page_count} pages: {len(data):,} bytes")
        return data


def create_pdf(pages: Sequence[CompressedPage], layout: PageLayout = PageLayout.NATIVE) -> bytes:
    """Create PDF bytes from compressed pages, in order."""
    with PDFWriter(layout) as writer:
        for page in pages:
            writer.add_page(page)
        return writer.to_bytes()


def _embeddable_jpeg(data: bytes) -> Optional[Tuple[int, int, bool]]:
    """Return (width, height, is_color) if data can be embedded as-is."""
    if data[:2] != JPEG_MAGIC:
        return None
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format != "JPEG" or img.mode not in ("L", "RGB"):
                return None
            if img.getexif().get(EXIF_ORIENTATION, 1) != 1:
                return None
            return img.width, img.height, img.mode == "RGB"
    except (UnidentifiedImageError, OSError):
        return None


def images_to_pdf(images: Sequence[bytes]) -> bytes:
    """
    Merge images into one PDF, one A4 page each, in input order.

    Plain RGB/gray JPEGs are embedded unchanged; anything else is decoded
    and re-encoded as JPEG.
    """
    if not images:
        raise ReassemblyError("No images to convert")

    with PDFWriter(PageLayout.FIT_A4) as writer:
        for index, data in enumerate(images, start=1):
            info = _embeddable_jpeg(data)
            if info is None:
                bitmap = decode_image(data, page_index=index)
                data = encode_jpeg(bitmap.image, CONVERT_JPEG_QUALITY)
                info = (bitmap.width, bitmap.height, not bitmap.is_gray)

            width, height, is_color = info
            writer.add_image(data, width, height, is_color)

        return writer.to_bytes()

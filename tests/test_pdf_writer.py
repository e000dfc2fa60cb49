import io
import zipfile

import numpy as np
import pikepdf
import pytest

try:
    import fitz
except ImportError:
    import pymupdf as fitz

from doc_compressor.bundle import bundle_name, create_image_bundle, page_filename, strip_extension
from doc_compressor import pdf_writer
from doc_compressor.errors import ReassemblyError
from doc_compressor.pdf_writer import (
    A4_HEIGHT_PTS,
    A4_WIDTH_PTS,
    POINTS_PER_MM,
    PageLayout,
    PDFWriter,
    create_pdf,
    fit_to_page,
    images_to_pdf,
)

from conftest import BLUE, GREEN, RED, gradient_image, make_compressed, pil_bytes, solid_image


def dominant_channels(pdf_bytes):
    """Index of the strongest RGB channel at the centre of each page."""
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        result = []
        for page in doc:
            pix = page.get_pixmap(alpha=False)
            image = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, 3)
            result.append(int(np.argmax(image[pix.height // 2, pix.width // 2])))
        return result


def page_sizes(pdf_bytes):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return [(page.rect.width, page.rect.height) for page in doc]


class TestCreatePdf:
    def test_page_order(self):
        pages = [make_compressed(RED, 1), make_compressed(GREEN, 2), make_compressed(BLUE, 3)]
        data = create_pdf(pages)
        assert data.startswith(b"%PDF")
        assert dominant_channels(data) == [0, 1, 2]

    def test_native_uses_pixel_size(self):
        data = create_pdf([make_compressed(RED, width=60, height=80)])
        assert page_sizes(data) == [pytest.approx((60, 80))]

    def test_native_uses_source_geometry(self):
        page = make_compressed(RED, width=300, height=450)
        page.page_width_pts, page.page_height_pts = 200.0, 300.0
        assert page_sizes(create_pdf([page])) == [pytest.approx((200, 300))]

    def test_fit_a4(self):
        data = create_pdf([make_compressed(RED), make_compressed(GREEN)], PageLayout.FIT_A4)
        assert page_sizes(data) == [pytest.approx((A4_WIDTH_PTS, A4_HEIGHT_PTS), abs=0.01)] * 2

    def test_jpeg_embedded_unchanged(self):
        page = make_compressed(BLUE)
        with pikepdf.open(io.BytesIO(create_pdf([page]))) as pdf:
            image = pdf.pages[0].Resources.XObject["/Im0"]
            assert image.Filter == pikepdf.Name.DCTDecode
            assert image.read_raw_bytes() == page.image_data

    def test_gray_page(self):
        page = make_compressed(RED)
        page.is_color = False
        with pikepdf.open(io.BytesIO(create_pdf([page]))) as pdf:
            assert pdf.pages[0].Resources.XObject["/Im0"].ColorSpace == pikepdf.Name.DeviceGray

    def test_no_pages(self):
        with pytest.raises(ReassemblyError):
            create_pdf([])

    def test_rejects_non_jpeg(self):
        writer = PDFWriter()
        with pytest.raises(ReassemblyError):
            writer.add_image(b"\x89PNG....", 10, 10, True)
        writer.close()

    def test_writer_closed_after_failed_page(self, monkeypatch):
        closed = []
        real_close = PDFWriter.close

        def spy(writer):
            closed.append(writer.pdf is not None)
            real_close(writer)

        monkeypatch.setattr(PDFWriter, "close", spy)
        bad = make_compressed(RED, 2)
        bad.image_data = b"\x89PNG not a jpeg"
        with pytest.raises(ReassemblyError):
            create_pdf([make_compressed(GREEN, 1), bad])
        assert closed == [True]

    def test_close_is_idempotent(self):
        writer = PDFWriter()
        writer.close()
        writer.close()
        assert writer.pdf is None


def test_fit_to_page_wide_image():
    margin = 10 * POINTS_PER_MM
    x, y, w, h = fit_to_page(1000, 500)
    assert w == pytest.approx(A4_WIDTH_PTS - 2 * margin)
    assert h == pytest.approx(w / 2)
    assert x == pytest.approx(margin)
    assert y == pytest.approx((A4_HEIGHT_PTS - h) / 2)


def test_fit_to_page_tall_image():
    margin = 10 * POINTS_PER_MM
    x, y, w, h = fit_to_page(100, 1000)
    assert h == pytest.approx(A4_HEIGHT_PTS - 2 * margin)
    assert y == pytest.approx(margin)
    assert x == pytest.approx((A4_WIDTH_PTS - w) / 2)


class TestImagesToPdf:
    def test_zero_area_rejected_and_closed(self, monkeypatch):
        closed = []
        real_close = PDFWriter.close
        monkeypatch.setattr(PDFWriter, "close", lambda writer: (closed.append(True), real_close(writer)))
        monkeypatch.setattr(pdf_writer, "_embeddable_jpeg", lambda data: (0, 10, True))
        with pytest.raises(ReassemblyError):
            images_to_pdf([b"\xff\xd8fake"])
        assert closed

    def test_mixed_formats(self, jpeg_bytes, png_bytes):
        data = images_to_pdf([jpeg_bytes, png_bytes, jpeg_bytes])
        assert len(page_sizes(data)) == 3

    def test_order(self):
        images = [pil_bytes(solid_image(50, 50, c), "PNG") for c in (BLUE, RED, GREEN)]
        assert dominant_channels(images_to_pdf(images)) == [2, 0, 1]

    def test_plain_jpeg_not_reencoded(self, jpeg_bytes):
        with pikepdf.open(io.BytesIO(images_to_pdf([jpeg_bytes]))) as pdf:
            assert pdf.pages[0].Resources.XObject["/Im0"].read_raw_bytes() == jpeg_bytes

    def test_empty(self):
        with pytest.raises(ReassemblyError):
            images_to_pdf([])


class TestImageBundle:
    def test_entries_in_page_order(self):
        images = [b"one", b"two", b"three"]
        data = create_image_bundle("report", images)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == [
                "report/report_page_1.jpg",
                "report/report_page_2.jpg",
                "report/report_page_3.jpg",
            ]
            assert [archive.read(name) for name in archive.namelist()] == images

    def test_extension(self):
        data = create_image_bundle("scan", [b"x"], ext="png")
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["scan/scan_page_1.png"]

    def test_empty_is_an_error(self):
        with pytest.raises(ReassemblyError):
            create_image_bundle("report", [])

    def test_names(self):
        assert strip_extension("scan.final.pdf") == "scan.final"
        assert strip_extension("noext") == "noext"
        assert page_filename("a", 12) == "a_page_12.jpg"
        assert bundle_name("report") == "report_images.zip"

    def test_real_pages(self):
        jpeg = pil_bytes(gradient_image(20, 20), "JPEG")
        data = create_image_bundle("doc", [jpeg, jpeg])
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.testzip() is None
            assert archive.read("doc/doc_page_2.jpg") == jpeg

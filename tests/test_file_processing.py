"""
Tests for page image preparation of uploaded scans.

Run with: pytest tests/test_file_processing.py -v
"""
import io

from PIL import Image

from app.services.file_processing import is_image_filename, page_images, slice_tall_image


def make_image(width: int, height: int, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buffer, format=fmt)
    return buffer.getvalue()


def heights(slices):
    return [Image.open(io.BytesIO(s)).size[1] for s in slices]


class TestSliceTallImage:
    def test_tall_scan_becomes_overlapping_strips(self):
        slices = page_images(make_image(100, 5000), "scan.png")
        assert len(slices) == 3
        # Strips start at 0, 1600 and 3200
        assert heights(slices) == [2000, 2000, 1800]

    def test_short_image_is_untouched(self):
        original = make_image(100, 2500)
        assert page_images(original, "photo.png") == [original]

    def test_jpeg_slices_stay_jpeg(self):
        slices = slice_tall_image(make_image(50, 3500, "JPEG"))
        assert len(slices) == 2
        assert all(Image.open(io.BytesIO(s)).format == "JPEG" for s in slices)

    def test_unreadable_image_is_sent_whole(self):
        assert slice_tall_image(b"not an image") == [b"not an image"]


def test_is_image_filename():
    assert is_image_filename("Scan.JPG")
    assert not is_image_filename("exam.pdf")

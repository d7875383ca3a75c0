"""
PDF text extraction and PDF-to-image rendering.
"""

import asyncio
import io
import os
from typing import List

import fitz
from PIL import Image

from app.config import logger
from app.utils.concurrency import conversion_semaphore

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

# Scans taller than this are cut into overlapping strips
TALL_IMAGE_MAX_HEIGHT = 3000
IMAGE_SLICE_HEIGHT = 2000
IMAGE_SLICE_OVERLAP = 400


def is_image_filename(filename: str) -> bool:
    return os.path.splitext(filename or "")[1].lower() in IMAGE_EXTENSIONS


def is_pdf_bytes(data: bytes) -> bool:
    return data[:5] == b"%PDF-"


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Concatenate the text layer of every page."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        pages = [page.get_text("text") for page in doc]
    finally:
        doc.close()
    text = "\n".join(pages)
    logger.info(f"Extracted {len(text)} chars of text from {len(pages)} PDF pages")
    return text


def pdf_to_images(pdf_bytes: bytes, zoom: float = 2.0, quality: int = 80) -> List[bytes]:
    """Render every PDF page to compressed JPEG bytes - NO PAGE LIMIT"""
    images = []
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        for page in doc:
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            img = Image.open(io.BytesIO(pix.tobytes("png")))
            if img.mode != "RGB":
                img = img.convert("RGB")

            compressed_buffer = io.BytesIO()
            img.save(compressed_buffer, format="JPEG", quality=quality, optimize=True)
            images.append(compressed_buffer.getvalue())
    finally:
        doc.close()

    logger.info(f"Converted PDF with {len(images)} pages to compressed images")
    return images


def slice_tall_image(
    image_bytes: bytes,
    max_height: int = TALL_IMAGE_MAX_HEIGHT,
    slice_height: int = IMAGE_SLICE_HEIGHT,
    overlap: int = IMAGE_SLICE_OVERLAP,
) -> List[bytes]:
    """
    Cut a long scan into overlapping horizontal strips so the vision model
    sees every question at a readable size. Images up to `max_height` pixels
    tall are returned unchanged as a single part.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read image for slicing, sending it whole: {e}")
        return [image_bytes]

    width, height = img.size
    if height <= max_height:
        return [image_bytes]

    fmt = img.format if img.format in ("JPEG", "PNG", "WEBP") else "PNG"
    if fmt == "JPEG" and img.mode != "RGB":
        img = img.convert("RGB")

    slices = []
    top = 0
    while top < height:
        bottom = min(top + slice_height, height)
        buffer = io.BytesIO()
        img.crop((0, top, width, bottom)).save(buffer, format=fmt)
        slices.append(buffer.getvalue())
        if bottom >= height:
            break
        # Strips overlap so a question on a cut line appears whole in one of them
        top += slice_height - overlap

    logger.info(f"Split {width}x{height} image into {len(slices)} slices")
    return slices


def page_images(document_bytes: bytes, filename: str = "") -> List[bytes]:
    """Ordered page images for a document; an image upload yields one or more slices of itself."""
    if is_pdf_bytes(document_bytes) or filename.lower().endswith(".pdf"):
        return pdf_to_images(document_bytes)
    return slice_tall_image(document_bytes)



async def page_images_async(document_bytes: bytes, filename: str = "") -> List[bytes]:
    async with conversion_semaphore:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, page_images, document_bytes, filename)


async def extract_text_async(document_bytes: bytes, filename: str = "") -> str:
    """Text of a PDF, or the bytes decoded as UTF-8 for plain-text uploads."""
    if not is_pdf_bytes(document_bytes) and not filename.lower().endswith(".pdf"):
        return document_bytes.decode("utf-8", errors="replace")
    async with conversion_semaphore:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, extract_pdf_text, document_bytes)

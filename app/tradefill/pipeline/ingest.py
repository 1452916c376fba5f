from __future__ import annotations

import io
import logging
from typing import List, Optional

import numpy as np
from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PIL import Image, ImageOps, UnidentifiedImageError

LOGGER = logging.getLogger(__name__)


PDF_MAGIC = b"%PDF"


class UnsupportedDocument(ValueError):
    pass


class RendererUnavailable(RuntimeError):
    """The PDF renderer (poppler) is missing or timed out on this host."""


def is_pdf(data: bytes, filename: Optional[str] = None) -> bool:
    if data[:4] == PDF_MAGIC:
        return True
    return bool(filename) and filename.lower().endswith(".pdf")


def load_upload(data: bytes, filename: Optional[str] = None) -> List[Image.Image]:
    """Decode uploaded bytes (PDF or image) into a list of PIL pages."""
    if is_pdf(data, filename):
        LOGGER.info("Rendering PDF upload %s to images", filename or "<unnamed>")
        try:
            return convert_from_bytes(data, dpi=300)
        except PDFInfoNotInstalledError as exc:
            raise RendererUnavailable("PDF rendering not configured (poppler not found)") from exc
        except PDFPopplerTimeoutError as exc:
            raise RendererUnavailable(f"PDF rendering timed out: {exc}") from exc
        except (PDFPageCountError, PDFSyntaxError) as exc:
            raise UnsupportedDocument(f"Unsupported or corrupt PDF upload: {filename or '<unnamed>'}") from exc
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise UnsupportedDocument(f"Unsupported or corrupt image upload: {filename or '<unnamed>'}") from exc
    # Normalize orientation/mode so OCR sees consistent pixels.
    image = ImageOps.exif_transpose(image)
    if image.mode not in {"RGB", "L"}:
        image = image.convert("RGB")
    return [image]


MIN_OCR_WIDTH = 1000


def preprocess_image(image: Image.Image, min_width: int = MIN_OCR_WIDTH) -> Image.Image:
    """Grayscale + autocontrast, upscale narrow scans, binarize unless it blanks the page."""
    page = ImageOps.autocontrast(ImageOps.grayscale(image))
    if page.width < min_width:
        ratio = min_width / page.width
        page = page.resize((min_width, max(1, round(page.height * ratio))))
    pixels = np.asarray(page)
    if not pixels.size:
        return page
    binary = np.where(pixels > pixels.mean(), 255, 0).astype(np.uint8)
    dark_share = float(np.count_nonzero(binary == 0)) / binary.size
    # Photos of stamped or shaded LC pages can go almost fully black or white.
    if not 0.01 <= dark_share <= 0.99:
        return page
    return Image.fromarray(binary)

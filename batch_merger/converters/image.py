"""Raster image (.png/.jpg) to a single PDF page."""

from typing import List, Tuple

from PIL import Image, ImageOps
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ..models import FileKind
from ..pdf_text import PORTRAIT, sanitize_text
from .base import BaseConverter, ConversionContext, ConversionStrategy

FILL_RATIO = 0.9


def fit_to_page(image_size: Tuple[float, float], page_size: Tuple[float, float], ratio: float = FILL_RATIO) -> Tuple[float, float, float, float]:
    """Scale preserving aspect ratio into ratio of the page, centred. Returns x, y, width, height."""
    image_width, image_height = image_size
    page_width, page_height = page_size
    scale = min(page_width * ratio / image_width, page_height * ratio / image_height)
    width = image_width * scale
    height = image_height * scale
    return (page_width - width) / 2, (page_height - height) / 2, width, height


def render_image(context: ConversionContext) -> str:
    with Image.open(context.input_path) as source:
        image = ImageOps.exif_transpose(source)
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        if image.width <= 0 or image.height <= 0:
            raise ValueError("Image has no pixels")
        x, y, width, height = fit_to_page(image.size, PORTRAIT)
        pdf = canvas.Canvas(context.output_path, pagesize=PORTRAIT)
        pdf.setTitle(sanitize_text(context.original_name))
        pdf.setAuthor("batch-merger")
        pdf.drawImage(ImageReader(image), x, y, width=width, height=height)
        pdf.showPage()
        pdf.save()
    return context.output_path


class ImageConverter(BaseConverter):
    kind = FileKind.IMAGE
    supported_extensions = (".png", ".jpg", ".jpeg")

    def strategies(self) -> List[ConversionStrategy]:
        return [ConversionStrategy("image-embed", 0, render_image)]

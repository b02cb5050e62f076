"""PowerPoint deck (.pptx) to PDF, one page per slide."""

import re
import xml.etree.ElementTree as ET
import zipfile
from typing import List, Tuple

from ..exceptions import ConversionError
from ..models import FileKind
from ..pdf_text import BOLD, BOLD_ITALIC, ITALIC, LANDSCAPE, REGULAR, PageWriter
from .base import BaseConverter, ConversionContext, ConversionStrategy
from .placeholder import placeholder_strategy

A_NS = "{http://schemas.openxmlformats.org/drawingml/2006/main}"
SLIDE_PATTERN = re.compile(r"^ppt/slides/slide(\d+)\.xml$")


def _truthy(value) -> bool:
    return value in ("1", "true")


def slide_paragraphs(xml_bytes: bytes) -> List[List[Tuple[str, str]]]:
    """Text paragraphs of one slide as styled runs."""
    root = ET.fromstring(xml_bytes)
    paragraphs: List[List[Tuple[str, str]]] = []
    for para in root.iter(f"{A_NS}p"):
        segments: List[Tuple[str, str]] = []
        for run in para.iter(f"{A_NS}r"):
            props = run.find(f"{A_NS}rPr")
            bold = props is not None and _truthy(props.get("b"))
            italic = props is not None and _truthy(props.get("i"))
            text = "".join(node.text or "" for node in run.iter(f"{A_NS}t"))
            if not text:
                continue
            if bold and italic:
                font = BOLD_ITALIC
            elif bold:
                font = BOLD
            elif italic:
                font = ITALIC
            else:
                font = REGULAR
            segments.append((text, font))
        if segments:
            paragraphs.append(segments)
    return paragraphs


def render_slide_text(context: ConversionContext) -> str:
    with zipfile.ZipFile(context.input_path) as archive:
        slides = []
        for name in archive.namelist():
            match = SLIDE_PATTERN.match(name)
            if match:
                slides.append((int(match.group(1)), name))
        if not slides:
            raise ConversionError("Presentation contains no slides")
        slides.sort()
        slide_texts = [(number, slide_paragraphs(archive.read(name))) for number, name in slides]

    writer = PageWriter(context.output_path, pagesize=LANDSCAPE, margin=40, title=context.original_name)
    for index, (number, paragraphs) in enumerate(slide_texts):
        if index:
            writer.new_page()
        writer.line(f"Slide {number} of {len(slide_texts)}", font=ITALIC, size=9)
        writer.skip(6)
        if not paragraphs:
            writer.line("(no text on this slide)", font=ITALIC, size=11)
            continue
        # The first text block of a slide is usually its title.
        title, body = paragraphs[0], paragraphs[1:]
        writer.rich_paragraph([(text, BOLD) for text, _ in title], size=20, spacing=10)
        for segments in body:
            writer.rich_paragraph(segments, size=13, indent=12, spacing=4)
    writer.save()
    return context.output_path


class PresentationConverter(BaseConverter):
    kind = FileKind.PRESENTATION
    supported_extensions = (".pptx",)

    def strategies(self) -> List[ConversionStrategy]:
        return [
            self.engine_strategy(0),
            ConversionStrategy("slide-text", 1, render_slide_text),
            placeholder_strategy(2, "Presentation"),
        ]

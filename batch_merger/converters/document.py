"""Word document (.docx) to PDF."""

import xml.etree.ElementTree as ET
import zipfile
from typing import List, Tuple

from docx import Document
from docx.table import Table
from docx.text.paragraph import Paragraph

from ..exceptions import ConversionError
from ..models import FileKind
from ..pdf_text import BOLD, BOLD_ITALIC, ITALIC, REGULAR, PageWriter
from .base import BaseConverter, ConversionContext, ConversionStrategy
from .placeholder import placeholder_strategy

W_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"

HEADING_SIZES = {1: 18, 2: 15, 3: 13}


def _font_for(bold: bool, italic: bool) -> str:
    if bold and italic:
        return BOLD_ITALIC
    if bold:
        return BOLD
    if italic:
        return ITALIC
    return REGULAR


def _heading_level(paragraph: Paragraph) -> int:
    style_name = (paragraph.style.name if paragraph.style is not None else "") or ""
    if style_name == "Title":
        return 1
    if style_name.startswith("Heading"):
        try:
            return int(style_name.split()[-1])
        except ValueError:
            return 3
    return 0


def render_docx_structure(context: ConversionContext) -> str:
    """Paragraphs, runs and tables read through python-docx."""
    document = Document(context.input_path)
    writer = PageWriter(context.output_path, title=context.original_name, header=context.original_name)
    paragraphs = 0

    for element in document.element.body.iterchildren():
        if element.tag == f"{W_NS}p":
            paragraph = Paragraph(element, document)
            level = _heading_level(paragraph)
            if level:
                if paragraph.text.strip():
                    writer.skip(4)
                    writer.paragraph(paragraph.text, font=BOLD, size=HEADING_SIZES.get(level, 12), spacing=4)
                    paragraphs += 1
                continue
            segments: List[Tuple[str, str]] = [
                (run.text, _font_for(bool(run.bold), bool(run.italic))) for run in paragraph.runs if run.text
            ]
            if not segments:
                writer.skip(8)
                continue
            indent = 14 if paragraph.style is not None and "List" in (paragraph.style.name or "") else 0
            writer.rich_paragraph(segments, size=11, indent=indent, spacing=4)
            paragraphs += 1
        elif element.tag == f"{W_NS}tbl":
            table = Table(element, document)
            rows = [[cell.text for cell in row.cells] for row in table.rows]
            if rows:
                writer.grid(rows, size=8)
                writer.skip(8)

    if paragraphs == 0 and not document.tables:
        raise ConversionError("Document has no readable paragraphs")
    writer.save()
    return context.output_path


def render_docx_xml(context: ConversionContext) -> str:
    """Walk word/document.xml directly when python-docx cannot open the package."""
    with zipfile.ZipFile(context.input_path) as archive:
        candidates = [name for name in archive.namelist() if name.endswith("document.xml")]
        if not candidates:
            raise ConversionError("word/document.xml not found")
        root = ET.fromstring(archive.read(candidates[0]))

    writer = PageWriter(context.output_path, title=context.original_name, header=context.original_name)
    drawn = 0
    for para in root.iter(f"{W_NS}p"):
        segments: List[Tuple[str, str]] = []
        for run in para.iter(f"{W_NS}r"):
            props = run.find(f"{W_NS}rPr")
            bold = props is not None and props.find(f"{W_NS}b") is not None
            italic = props is not None and props.find(f"{W_NS}i") is not None
            text = "".join(node.text or "" for node in run.iter(f"{W_NS}t"))
            if text:
                segments.append((text, _font_for(bold, italic)))
        if segments:
            writer.rich_paragraph(segments, size=11, spacing=4)
            drawn += 1
        else:
            writer.skip(8)
    if drawn == 0:
        raise ConversionError("No text runs found in document.xml")
    writer.save()
    return context.output_path


class DocumentConverter(BaseConverter):
    kind = FileKind.DOCUMENT
    supported_extensions = (".docx",)

    def strategies(self) -> List[ConversionStrategy]:
        return [
            self.engine_strategy(0),
            ConversionStrategy("docx-structure", 1, render_docx_structure),
            ConversionStrategy("docx-xml", 2, render_docx_xml),
            placeholder_strategy(3, "Document"),
        ]

"""Plain text and CSV to PDF."""

import csv
import io
from typing import List

from ..models import FileKind
from ..pdf_text import BOLD, LANDSCAPE, PORTRAIT, REGULAR, PageWriter, read_text_file
from .base import BaseConverter, ConversionContext, ConversionStrategy


def render_text(context: ConversionContext) -> str:
    content = read_text_file(context.input_path)
    writer = PageWriter(context.output_path, pagesize=PORTRAIT, margin=50, title=context.original_name)
    writer.paragraph(content, font=REGULAR, size=12)
    writer.save()
    return context.output_path


def read_csv_rows(path: str) -> List[List[str]]:
    content = read_text_file(path)
    try:
        dialect = csv.Sniffer().sniff(content[:4096], delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    return [row for row in csv.reader(io.StringIO(content), dialect) if any(cell.strip() for cell in row)]


def render_csv(context: ConversionContext) -> str:
    rows = read_csv_rows(context.input_path)
    writer = PageWriter(
        context.output_path,
        pagesize=LANDSCAPE,
        margin=30,
        title=context.original_name,
        header=context.original_name,
    )
    writer.line(context.original_name, font=BOLD, size=12)
    writer.skip(4)
    if rows:
        writer.grid(rows, size=9)
    else:
        writer.line("(no rows)", size=10)
    writer.save()
    return context.output_path


class TextConverter(BaseConverter):
    kind = FileKind.TEXT
    supported_extensions = (".txt", ".csv")

    def strategies(self) -> List[ConversionStrategy]:
        return [ConversionStrategy("text-layout", 0, render_text)]

    def strategies_for(self, context: ConversionContext) -> List[ConversionStrategy]:
        if context.is_csv:
            return [ConversionStrategy("csv-grid", 0, render_csv)]
        return self.strategies()

"""Excel workbook (.xlsx) to PDF."""

from datetime import date, datetime
from typing import List

from openpyxl import load_workbook

from ..exceptions import ConversionError
from ..models import FileKind
from ..pdf_text import BOLD, ITALIC, LANDSCAPE, PageWriter
from .base import BaseConverter, ConversionContext, ConversionStrategy
from .placeholder import placeholder_strategy

MAX_ROWS_PER_SHEET = 5000


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_workbook_grid(context: ConversionContext) -> str:
    """One monospaced grid per worksheet, header row repeated on every page."""
    workbook = load_workbook(context.input_path, read_only=True, data_only=True)
    try:
        if not workbook.sheetnames:
            raise ConversionError("Workbook contains no worksheets")
        writer = PageWriter(
            context.output_path,
            pagesize=LANDSCAPE,
            margin=30,
            title=context.original_name,
            header=context.original_name,
        )
        for index, sheet in enumerate(workbook.worksheets):
            if index:
                writer.new_page()
            writer.line(f"Sheet: {sheet.title}", font=BOLD, size=13)
            writer.skip(4)

            rows: List[List[str]] = []
            truncated = False
            for row in sheet.iter_rows(values_only=True):
                if len(rows) >= MAX_ROWS_PER_SHEET:
                    truncated = True
                    break
                rows.append([_cell_text(value) for value in row])
            # Trailing empty rows are common in read-only mode.
            while rows and not any(cell.strip() for cell in rows[-1]):
                rows.pop()

            if not rows:
                writer.line("(empty sheet)", font=ITALIC, size=10)
                continue
            writer.grid(rows, size=8)
            if truncated:
                writer.line(f"... truncated after {MAX_ROWS_PER_SHEET} rows", font=ITALIC, size=9)
        writer.save()
    finally:
        workbook.close()
    return context.output_path


class SpreadsheetConverter(BaseConverter):
    kind = FileKind.SPREADSHEET
    supported_extensions = (".xlsx",)

    def strategies(self) -> List[ConversionStrategy]:
        return [
            self.engine_strategy(0),
            ConversionStrategy("sheet-grid", 1, render_workbook_grid),
            placeholder_strategy(2, "Spreadsheet"),
        ]

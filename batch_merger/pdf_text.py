"""
Text sanitisation and simple page layout on top of the ReportLab canvas.

Every string drawn by the converters passes through sanitize_text so that
the standard Helvetica/Courier fonts (WinAnsi) can always encode it.
"""

import re
from typing import List, Optional, Sequence, Tuple

from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

PORTRAIT = A4
LANDSCAPE = landscape(A4)

REGULAR = "Helvetica"
BOLD = "Helvetica-Bold"
ITALIC = "Helvetica-Oblique"
BOLD_ITALIC = "Helvetica-BoldOblique"
MONO = "Courier"
MONO_BOLD = "Courier-Bold"

MIN_CELL_CHARS = 4

_REPLACEMENTS: Tuple[Tuple[str, str], ...] = (
    ("\r\n", "\n"),
    ("\r", "\n"),
    ("✅", "[CHECK]"),
    ("❌", "[X]"),
    ("⚠️", "[WARNING]"),
    ("⚠", "[WARNING]"),
    ("✓", "+"),
    ("✔", "+"),
    ("✗", "-"),
    ("✘", "-"),
    ("•", "*"),
    ("●", "*"),
    ("▪", "*"),
    ("→", "->"),
    ("←", "<-"),
    ("↑", "^"),
    ("↓", "v"),
    ("“", '"'),
    ("”", '"'),
    ("„", '"'),
    ("‘", "'"),
    ("’", "'"),
    ("‚", "'"),
    ("–", "-"),
    ("—", "-"),
    ("−", "-"),
    ("…", "..."),
    ("\u00a0", " "),
    ("\t", "    "),
)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_UNENCODABLE = re.compile(r"[^\x20-\x7e\n]")


def sanitize_text(text: Optional[str]) -> str:
    """Map text onto printable ASCII plus newlines."""
    if not text:
        return ""
    for needle, replacement in _REPLACEMENTS:
        text = text.replace(needle, replacement)
    text = _CONTROL_CHARS.sub("", text)
    return _UNENCODABLE.sub("?", text)


def read_text_file(path: str) -> str:
    """Read text as UTF-8, falling back to latin-1 which never fails."""
    with open(path, "rb") as handle:
        raw = handle.read()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def split_word(word: str, font: str, size: float, max_width: float) -> List[str]:
    """Split a word wider than max_width into pieces that each fit."""
    pieces: List[str] = []
    while stringWidth(word, font, size) > max_width and len(word) > 1:
        cut = len(word)
        while cut > 1 and stringWidth(word[:cut], font, size) > max_width:
            cut -= 1
        pieces.append(word[:cut])
        word = word[cut:]
    pieces.append(word)
    return pieces


def wrap_text(text: str, font: str, size: float, max_width: float) -> List[str]:
    """Greedy word wrap measured with the font's metrics."""
    lines: List[str] = []
    for paragraph in text.split("\n"):
        if not paragraph.strip():
            lines.append("")
            continue
        current = ""
        for word in paragraph.split(" "):
            candidate = f"{current} {word}" if current else word
            if stringWidth(candidate, font, size) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            # Words wider than the line are split by character.
            pieces = split_word(word, font, size, max_width)
            lines.extend(pieces[:-1])
            current = pieces[-1]
        if current:
            lines.append(current)
    return lines


def fit_cell(value: str, width_chars: int) -> str:
    value = sanitize_text(value).replace("\n", " ")
    if len(value) <= width_chars:
        return value.ljust(width_chars)
    if width_chars <= 3:
        return value[:width_chars]
    return value[: width_chars - 3] + "..."


class PageWriter:
    """Cursor-based writer that paginates as lines are added."""

    def __init__(
        self,
        output_path: str,
        pagesize: Tuple[float, float] = PORTRAIT,
        margin: float = 50,
        title: Optional[str] = None,
        header: Optional[str] = None,
    ):
        self.output_path = output_path
        self.width, self.height = pagesize
        self.margin = margin
        self.header = sanitize_text(header) if header else None
        self.canvas = canvas.Canvas(output_path, pagesize=pagesize)
        if title:
            self.canvas.setTitle(sanitize_text(title))
        self.canvas.setAuthor("batch-merger")
        self.pages_written = 0
        self._dirty = False
        self.y = self.height - margin
        self._start_page()

    @property
    def usable_width(self) -> float:
        return self.width - 2 * self.margin

    def _start_page(self) -> None:
        self.y = self.height - self.margin
        if self.header and self.pages_written:
            self.canvas.setFont(ITALIC, 8)
            self.canvas.drawString(self.margin, self.height - self.margin / 2, f"{self.header} (continued)")

    def new_page(self) -> None:
        self.canvas.showPage()
        self.pages_written += 1
        self._dirty = False
        self._start_page()

    def ensure_space(self, height: float) -> None:
        if self.y - height < self.margin:
            self.new_page()

    def line(self, text: str, font: str = REGULAR, size: float = 11, indent: float = 0, leading: Optional[float] = None) -> None:
        """Draw one pre-wrapped line."""
        leading = leading or size * 1.3
        self.ensure_space(leading)
        self.canvas.setFont(font, size)
        self.canvas.drawString(self.margin + indent, self.y - size, sanitize_text(text))
        self.y -= leading
        self._dirty = True

    def paragraph(self, text: str, font: str = REGULAR, size: float = 11, indent: float = 0, spacing: float = 0) -> int:
        """Wrap and draw a paragraph. Returns the number of lines drawn."""
        wrapped = wrap_text(sanitize_text(text), font, size, self.usable_width - indent)
        for wrapped_line in wrapped:
            self.line(wrapped_line, font=font, size=size, indent=indent)
        if spacing:
            self.skip(spacing)
        return len(wrapped)

    def rich_paragraph(self, segments: Sequence[Tuple[str, str]], size: float = 11, indent: float = 0, spacing: float = 0) -> int:
        """
        Lay out styled runs ((text, font) pairs) with word wrap.

        Each word keeps the font of the run it came from, so bold and italic
        spans survive wrapping. Returns the number of lines drawn.
        """
        words: List[Tuple[str, str]] = []
        for text, font in segments:
            for word in sanitize_text(text).replace("\n", " ").split(" "):
                if word:
                    words.append((word, font))
        if not words:
            self.skip(size * 1.3)
            return 0

        max_width = self.usable_width - indent
        space = stringWidth(" ", REGULAR, size)
        leading = size * 1.3
        line: List[Tuple[str, str]] = []
        line_width = 0.0
        lines_drawn = 0

        def flush() -> None:
            nonlocal line, line_width, lines_drawn
            if not line:
                return
            self.ensure_space(leading)
            x = self.margin + indent
            for word, font in line:
                self.canvas.setFont(font, size)
                self.canvas.drawString(x, self.y - size, word)
                x += stringWidth(word, font, size) + space
            self.y -= leading
            self._dirty = True
            lines_drawn += 1
            line = []
            line_width = 0.0

        for word, font in words:
            width = stringWidth(word, font, size)
            if width > max_width:
                # Over-wide words get lines of their own, split by character.
                flush()
                pieces = split_word(word, font, size, max_width)
                for piece in pieces[:-1]:
                    line.append((piece, font))
                    flush()
                word = pieces[-1]
                width = stringWidth(word, font, size)
            needed = width if not line else line_width + space + width
            if line and needed > max_width:
                flush()
                needed = width
            line.append((word, font))
            line_width = needed
        flush()
        if spacing:
            self.skip(spacing)
        return lines_drawn

    def skip(self, height: float) -> None:
        if self.y - height < self.margin:
            self.new_page()
        else:
            self.y -= height

    def rule(self) -> None:
        self.ensure_space(8)
        self.canvas.setLineWidth(0.5)
        self.canvas.line(self.margin, self.y - 4, self.width - self.margin, self.y - 4)
        self.y -= 8
        self._dirty = True

    def grid(self, rows: Sequence[Sequence[str]], size: float = 8, header_rows: int = 1) -> None:
        """
        Render rows as a monospaced grid, repeating the header on new pages.

        Tables wider than the page are printed in bands of columns, one band
        after the other, so no line runs past the right margin.
        """
        if not rows:
            return
        columns = max(len(row) for row in rows) or 1
        char_width = stringWidth("M", MONO, size)
        total_chars = max(MIN_CELL_CHARS, int(self.usable_width / char_width))
        band_columns = max(1, min(columns, total_chars // MIN_CELL_CHARS))
        for band_start in range(0, columns, band_columns):
            band_end = min(columns, band_start + band_columns)
            if band_end - band_start < columns:
                self.skip(size)
                self.line(f"Columns {band_start + 1}-{band_end} of {columns}", font=ITALIC, size=size)
            band = [list(row)[band_start:band_end] for row in rows]
            self._grid_band(band, band_end - band_start, total_chars, size, header_rows)

    def _grid_band(self, rows: List[List[str]], columns: int, total_chars: int, size: float, header_rows: int) -> None:
        width_chars = max(3, total_chars // columns - 1)
        header = [self._grid_line(row, columns, width_chars) for row in rows[:header_rows]]
        leading = size * 1.4
        for index, row in enumerate(rows):
            if index >= header_rows and self.y - leading < self.margin:
                self.new_page()
                for header_line in header:
                    self.line(header_line, font=MONO_BOLD, size=size, leading=leading)
            font = MONO_BOLD if index < header_rows else MONO
            self.line(self._grid_line(row, columns, width_chars), font=font, size=size, leading=leading)

    @staticmethod
    def _grid_line(row: Sequence[str], columns: int, width_chars: int) -> str:
        cells = list(row) + [""] * (columns - len(row))
        return " ".join(fit_cell("" if cell is None else str(cell), width_chars) for cell in cells).rstrip()

    def save(self) -> int:
        """Flush the final page and write the file. Returns the page count."""
        if self._dirty or self.pages_written == 0:
            if not self._dirty:
                self.canvas.setFont(ITALIC, 9)
                self.canvas.drawString(self.margin, self.height - self.margin, "(no content)")
            self.canvas.showPage()
            self.pages_written += 1
        self.canvas.save()
        return self.pages_written

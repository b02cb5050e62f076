import pytest
from pypdf import PdfReader
from reportlab.pdfbase.pdfmetrics import stringWidth

from batch_merger.pdf_text import BOLD, REGULAR, PageWriter, fit_cell, read_text_file, sanitize_text, split_word, wrap_text


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("• item", "* item"),
        ("“quoted” ‘single’", "\"quoted\" 'single'"),
        ("a – b — c", "a - b - c"),
        ("wait…", "wait..."),
        ("col1\tcol2", "col1    col2"),
        ("✅ done ❌ failed", "[CHECK] done [X] failed"),
        ("⚠ careful", "[WARNING] careful"),
        ("✓ ok ✗ no", "+ ok - no"),
        ("next → prev ←", "next -> prev <-"),
        ("line1\r\nline2\rline3", "line1\nline2\nline3"),
        ("bell\x07 nul\x00", "bell nul"),
        ("non\u00a0breaking", "non breaking"),
        ("café 日本", "caf? ??"),
    ],
)
def test_sanitize_text(raw, expected):
    assert sanitize_text(raw) == expected


def test_sanitize_text_handles_empty_values():
    assert sanitize_text(None) == ""
    assert sanitize_text("") == ""


def test_read_text_file_falls_back_to_latin1(tmp_path):
    path = tmp_path / "legacy.txt"
    path.write_bytes("naïve".encode("latin-1"))

    assert read_text_file(str(path)) == "naïve"


def test_read_text_file_strips_utf8_bom(tmp_path):
    path = tmp_path / "bom.txt"
    path.write_bytes("\ufeffhello".encode("utf-8"))

    assert read_text_file(str(path)) == "hello"


def test_wrap_text_splits_long_words_and_keeps_blank_lines():
    lines = wrap_text("short\n\n" + "x" * 400, REGULAR, 11, 100)

    assert lines[0] == "short"
    assert lines[1] == ""
    assert len(lines) > 3
    assert "".join(lines[2:]) == "x" * 400


def test_fit_cell_pads_and_truncates():
    assert fit_cell("abc", 6) == "abc   "
    assert fit_cell("abcdefghij", 6) == "abc..."
    assert fit_cell("multi\nline", 20).startswith("multi line")


def test_page_writer_paginates_and_repeats_grid_header(tmp_path):
    output = tmp_path / "grid.pdf"
    rows = [["id", "label"]] + [[str(number), f"row {number}"] for number in range(300)]

    writer = PageWriter(str(output), header="grid.csv")
    writer.grid(rows, size=8)
    pages = writer.save()

    reader = PdfReader(str(output))
    assert pages == len(reader.pages) > 1
    second_page = reader.pages[1].extract_text()
    assert "label" in second_page
    assert "(continued)" in second_page


def test_page_writer_marks_empty_documents(tmp_path):
    output = tmp_path / "empty.pdf"

    assert PageWriter(str(output)).save() == 1
    assert "(no content)" in PdfReader(str(output)).pages[0].extract_text()


def _record_drawn_lines(writer: PageWriter) -> list:
    drawn = []
    draw = writer.canvas.drawString

    def _draw(x, y, text, *args, **kwargs):
        right = x + stringWidth(text, writer.canvas._fontname, writer.canvas._fontsize)
        drawn.append((text, right))
        return draw(x, y, text, *args, **kwargs)

    writer.canvas.drawString = _draw
    return drawn


def test_split_word_pieces_fit_and_rejoin():
    word = "https://example.com/" + "segment/" * 30

    pieces = split_word(word, REGULAR, 11, 200)

    assert "".join(pieces) == word
    assert all(stringWidth(piece, REGULAR, 11) <= 200 for piece in pieces)
    assert split_word("short", REGULAR, 11, 200) == ["short"]


def test_rich_paragraph_splits_words_wider_than_the_line(tmp_path):
    url = "https://example.com/" + "a1b2c3d4" * 25
    writer = PageWriter(str(tmp_path / "rich.pdf"))
    drawn = _record_drawn_lines(writer)

    lines = writer.rich_paragraph([("See", REGULAR), (url, BOLD), ("for details", REGULAR)])
    writer.save()

    limit = writer.width - writer.margin + 0.01
    assert lines > 2
    assert all(right <= limit for _text, right in drawn)
    assert "".join(text for text, _right in drawn if text not in ("See", "for", "details")) == url


def test_wide_grid_is_printed_in_column_bands(tmp_path):
    columns = 40
    rows = [[f"col{index}" for index in range(columns)]] + [
        [str(row * columns + index) for index in range(columns)] for row in range(5)
    ]
    writer = PageWriter(str(tmp_path / "wide.pdf"))
    drawn = _record_drawn_lines(writer)

    writer.grid(rows, size=8)
    writer.save()

    limit = writer.width - writer.margin + 0.01
    assert all(right <= limit for _text, right in drawn)
    labels = [text for text, _right in drawn if text.startswith("Columns ")]
    assert len(labels) >= 2
    assert labels[-1].endswith(f"of {columns}")
    assert any("col39" in text for text, _right in drawn)

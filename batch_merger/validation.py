"""
Input/output validation and the integrity score.

Errors make a result invalid; warnings never abort a merge, they only lower
the advisory integrity score.
"""

import hashlib
import math
import os
import re
import zipfile
from typing import Iterable, Optional

from docx import Document
from openpyxl import load_workbook
from PIL import Image
from pypdf import PdfReader

from .models import EXTENSION_KINDS, FileKind, OutputFormat, ValidationResult
from .pdf_text import read_text_file

MAX_INPUT_FILE_MB = 100
WARNING_PENALTY = 5
BINARY_PATTERN = re.compile(r"[\x00-\x08\x0e-\x1f\x7f]")

KIND_EXTENSIONS = {
    FileKind.DOCUMENT: ".docx",
    FileKind.SPREADSHEET: ".xlsx",
    FileKind.PRESENTATION: ".pptx",
}

OOXML_MAIN_PARTS = {
    ".docx": "word/document.xml",
    ".pptx": "ppt/presentation.xml",
    ".xlsx": "xl/workbook.xml",
}


def file_hash(path: str) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def integrity_score(results: Iterable[ValidationResult]) -> int:
    """
    Mean of per-result scores, rounded half up and clamped to 0..100.

    A valid result scores 100 minus 5 per warning (never below 0); an invalid
    result scores 0. No results at all scores 0.
    """
    scores = []
    for result in results:
        if not result.is_valid:
            scores.append(0)
        else:
            scores.append(max(0, 100 - WARNING_PENALTY * len(result.warnings)))
    if not scores:
        return 0
    mean = sum(scores) / len(scores)
    return max(0, min(100, int(math.floor(mean + 0.5))))


def validation_summary(results: Iterable[ValidationResult]) -> str:
    results = list(results)
    errors = sum(len(result.errors) for result in results)
    warnings = sum(len(result.warnings) for result in results)
    status = "SUCCESS" if errors == 0 else "FAILED"
    return f"Validation {status}: {errors} errors, {warnings} warnings"


class ValidationService:
    """Pre-flight, post-flight and per-conversion checks."""

    def __init__(self, max_input_file_mb: float = MAX_INPUT_FILE_MB):
        self.max_input_file_mb = max_input_file_mb
        self.max_input_bytes = int(max_input_file_mb * 1024 * 1024)

    # -- inputs -------------------------------------------------------------

    def validate_input(self, path: str, original_name: Optional[str] = None, kind: Optional[FileKind] = None) -> ValidationResult:
        name = original_name or os.path.basename(path)
        result = ValidationResult(target=path, name=name)
        if not os.path.exists(path):
            result.add_error(f"Input file does not exist: {name}")
            return result

        size = os.path.getsize(path)
        result.metadata["file_size"] = size
        if size < 1:
            result.add_error(f"File is empty or too small: {size} bytes")
            return result
        if size > self.max_input_bytes:
            result.add_error(
                f"File is too large: {size / 1024 / 1024:.2f} MB (max: {self.max_input_file_mb:g} MB)"
            )
            return result

        extension = os.path.splitext(name)[1].lower()
        kind = kind or EXTENSION_KINDS.get(extension)
        if kind is None:
            result.add_error(f"Unsupported file type: {extension or '(none)'}")
            return result
        if extension not in EXTENSION_KINDS:
            # Recognised by mimetype only; sniff as the canonical extension.
            extension = KIND_EXTENSIONS.get(kind, extension)

        try:
            result.metadata["content_hash"] = file_hash(path)
        except OSError as exc:
            result.add_error(f"Cannot read file: {exc}")
            return result

        self._sniff(path, extension, kind, result)
        return result

    def _sniff(self, path: str, extension: str, kind: FileKind, result: ValidationResult) -> None:
        if kind == FileKind.PDF:
            self._sniff_pdf(path, result)
        elif extension in OOXML_MAIN_PARTS:
            self._sniff_ooxml(path, extension, result)
        elif kind == FileKind.IMAGE:
            self._sniff_image(path, result)
        elif kind == FileKind.TEXT:
            self._sniff_text(path, result)

    def _sniff_pdf(self, path: str, result: ValidationResult) -> None:
        try:
            reader = PdfReader(path)
            if reader.is_encrypted:
                result.add_warning("PDF is encrypted - may affect processing")
                if not reader.decrypt(""):
                    return
            page_count = len(reader.pages)
            result.metadata["page_count"] = page_count
            if page_count == 0:
                result.add_warning("PDF has no pages")
        except Exception as exc:
            result.add_error(f"Invalid PDF file: {exc}")

    def _sniff_ooxml(self, path: str, extension: str, result: ValidationResult) -> None:
        label = extension[1:].upper()
        main_part = OOXML_MAIN_PARTS[extension]
        try:
            with zipfile.ZipFile(path) as archive:
                names = set(archive.namelist())
                if main_part not in names:
                    result.add_error(f"Invalid {label} file: missing {os.path.basename(main_part)}")
                    return
                if extension == ".docx":
                    if len(archive.read(main_part)) < 100:
                        result.add_warning("DOCX appears to have minimal content")
                elif extension == ".pptx":
                    slides = [name for name in names if re.match(r"^ppt/slides/slide\d+\.xml$", name)]
                    result.metadata["page_count"] = len(slides)
                    if not slides:
                        result.add_warning("PPTX file has no slides")
        except zipfile.BadZipFile as exc:
            result.add_error(f"Invalid {label} file: {exc}")
            return

        if extension == ".xlsx":
            self._sniff_workbook(path, result)

    def _sniff_workbook(self, path: str, result: ValidationResult) -> None:
        try:
            workbook = load_workbook(path, read_only=True, data_only=True)
        except Exception as exc:
            result.add_error(f"Invalid XLSX file: {exc}")
            return
        try:
            if not workbook.sheetnames:
                result.add_warning("XLSX file has no sheets")
                return
            has_data = False
            for sheet in workbook.worksheets:
                for row in sheet.iter_rows(values_only=True):
                    if any(value is not None for value in row):
                        has_data = True
                        break
                if has_data:
                    break
            if not has_data:
                result.add_warning("XLSX file appears to have no data")
        finally:
            workbook.close()

    def _sniff_image(self, path: str, result: ValidationResult) -> None:
        try:
            with Image.open(path) as image:
                width, height = image.size
                image.verify()
        except Exception as exc:
            result.add_error(f"Invalid image file: {exc}")
            return
        if width <= 0 or height <= 0:
            result.add_error(f"Invalid image dimensions: {width}x{height}")
            return
        result.metadata["dimensions"] = f"{width}x{height}"

    def _sniff_text(self, path: str, result: ValidationResult) -> None:
        try:
            content = read_text_file(path)
        except OSError as exc:
            result.add_error(f"Cannot read text file: {exc}")
            return
        if not content.strip():
            result.add_warning("Text file is empty")
        if BINARY_PATTERN.search(content):
            result.add_warning("Text file may contain binary data")

    # -- outputs ------------------------------------------------------------

    def validate_output(self, path: str, output_format: OutputFormat) -> ValidationResult:
        output_format = OutputFormat.parse(output_format)
        result = ValidationResult(target=path)
        if not os.path.exists(path):
            result.add_error(f"Output file was not created: {os.path.basename(path)}")
            return result
        size = os.path.getsize(path)
        result.metadata["file_size"] = size
        if size == 0:
            result.add_error("Output file is empty: 0 bytes")
            return result

        extension = os.path.splitext(path)[1].lower()
        if extension != f".{output_format.value}":
            result.add_warning(f"Output file extension mismatch: expected .{output_format.value}, got {extension}")

        if output_format == OutputFormat.PDF:
            self._check_pdf_structure(path, result, check_metadata=True)
        elif output_format == OutputFormat.DOCX:
            self._check_docx_output(path, result)
        elif output_format == OutputFormat.ZIP:
            self._check_zip_output(path, result)
        return result

    def _check_pdf_structure(self, path: str, result: ValidationResult, check_metadata: bool = False) -> None:
        with open(path, "rb") as handle:
            header = handle.read(5)
        if header != b"%PDF-":
            result.add_error("Invalid PDF header")
            return
        try:
            reader = PdfReader(path)
            page_count = len(reader.pages)
            result.metadata["page_count"] = page_count
            if page_count < 1:
                result.add_error("Generated PDF has no pages")
                return
            box = reader.pages[0].mediabox
            if float(box.width) <= 0 or float(box.height) <= 0:
                result.add_warning("PDF page has invalid dimensions")
            if check_metadata:
                metadata = reader.metadata
                if metadata is None or (not metadata.title and not metadata.author):
                    result.add_warning("PDF has no metadata (title/author)")
        except Exception as exc:
            result.add_error(f"Invalid generated PDF: {exc}")

    def _check_docx_output(self, path: str, result: ValidationResult) -> None:
        try:
            document = Document(path)
        except Exception as exc:
            result.add_error(f"Invalid DOCX output: {exc}")
            return
        result.metadata["paragraphs"] = len(document.paragraphs)

    def _check_zip_output(self, path: str, result: ValidationResult) -> None:
        try:
            with zipfile.ZipFile(path) as archive:
                bad_entry = archive.testzip()
                entries = archive.namelist()
        except zipfile.BadZipFile as exc:
            result.add_error(f"Invalid ZIP output: {exc}")
            return
        if bad_entry is not None:
            result.add_error(f"Corrupt archive entry: {bad_entry}")
        if not entries:
            result.add_error("Archive contains no entries")
        result.metadata["entries"] = len(entries)

    # -- conversions --------------------------------------------------------

    def validate_conversion(self, input_path: str, fragment_path: str, original_name: Optional[str] = None) -> ValidationResult:
        """Structural checks on a PDF fragment plus input/output size heuristics."""
        name = original_name or os.path.basename(input_path)
        result = ValidationResult(target=fragment_path, name=f"{name} -> pdf")
        if not os.path.exists(fragment_path):
            result.add_error("Conversion produced no output")
            return result
        output_size = os.path.getsize(fragment_path)
        result.metadata["file_size"] = output_size
        if output_size == 0:
            result.add_error("Output file is empty - conversion failed")
            return result

        self._check_pdf_structure(fragment_path, result)
        if not result.is_valid:
            return result

        try:
            input_size = os.path.getsize(input_path)
        except OSError:
            return result
        if input_size > 1024 and output_size / input_size < 0.01:
            result.add_warning(
                f"Output file is very small compared to input ({output_size / input_size * 100:.2f}% of original)"
            )

        extension = os.path.splitext(name)[1].lower()
        kind = EXTENSION_KINDS.get(extension)
        if kind == FileKind.TEXT:
            if len(read_text_file(input_path)) > 100 and output_size < 1000:
                result.add_warning("Output PDF may be missing content from text input")
        elif kind == FileKind.IMAGE:
            if output_size < 1000:
                result.add_warning("PDF output may be missing image content")
            elif output_size > input_size * 10:
                result.add_warning("PDF output is much larger than expected")
        return result

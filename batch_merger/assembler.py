"""Writes the final merged artifact for each output format."""

import io
import os
import re
import zipfile
from collections import defaultdict
from contextlib import ExitStack
from typing import Dict, List, Optional, Set, Tuple

from docx import Document
from docx.shared import Inches, Pt
from pypdf import PdfReader, PdfWriter

from .exceptions import AssemblyError
from .models import FileKind, InputFile
from .pdf_text import read_text_file
from .run_log import RunLogger

LARGE_FILE_THRESHOLD_MB = 50
XML_UNSAFE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _remove_partial(path: str) -> None:
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass


def unique_entry_name(name: str, used: Set[str]) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, ext = os.path.splitext(name)
    counter = 1
    while f"{stem}_{counter}{ext}" in used:
        counter += 1
    candidate = f"{stem}_{counter}{ext}"
    used.add(candidate)
    return candidate


class OutputAssembler:
    """Combines converted fragments or originals into one file."""

    def __init__(self, large_file_threshold_mb: float = LARGE_FILE_THRESHOLD_MB, run_logger: Optional[RunLogger] = None):
        self.large_file_threshold_bytes = int(large_file_threshold_mb * 1024 * 1024)
        self.run_logger = run_logger or RunLogger.disabled()

    def _open_reader(self, path: str, stack: ExitStack) -> PdfReader:
        # Large fragments are read from an open file handle that stays open
        # until the writer has flushed; small ones are buffered.
        if os.path.getsize(path) > self.large_file_threshold_bytes:
            handle = stack.enter_context(open(path, "rb"))
            return PdfReader(handle)
        with open(path, "rb") as handle:
            return PdfReader(io.BytesIO(handle.read()))

    def assemble_pdf(
        self,
        fragments: List[Tuple[str, str]],
        output_path: str,
        title: str,
        run_logger: Optional[RunLogger] = None,
    ) -> int:
        """
        Concatenate PDF fragments in order.

        Args:
            fragments: (fragment path, display label) pairs in final order
            output_path: Destination file
            title: Document title written into the metadata
            run_logger: Per-run logger; defaults to the assembler's own

        Returns:
            Number of pages written
        """
        if not fragments:
            raise AssemblyError("No fragments to assemble")
        run_logger = run_logger or self.run_logger
        writer = PdfWriter()
        total_pages = 0
        try:
            with ExitStack() as stack:
                for fragment_path, label in fragments:
                    reader = self._open_reader(fragment_path, stack)
                    if reader.is_encrypted and not reader.decrypt(""):
                        raise AssemblyError(f"{label} is password-protected and cannot be merged")
                    page_start = total_pages
                    for page in reader.pages:
                        writer.add_page(page)
                        total_pages += 1
                    if total_pages > page_start:
                        writer.add_outline_item(label, page_start)
                    else:
                        run_logger.warning("pdf_no_pages", "Fragment contained zero readable pages", file=label)

                if total_pages == 0:
                    raise AssemblyError("No readable pages were found in any fragment")
                writer.add_metadata({
                    "/Title": title,
                    "/Author": "batch-merger",
                    "/Producer": "batch-merger (pypdf)",
                })
                os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
                with open(output_path, "wb") as handle:
                    writer.write(handle)
        except AssemblyError:
            _remove_partial(output_path)
            raise
        except Exception as exc:
            _remove_partial(output_path)
            raise AssemblyError(f"Failed to write merged PDF: {exc}", cause=exc) from exc

        print(f"    Created: {os.path.basename(output_path)} ({len(fragments)} files, {total_pages} pages)")
        run_logger.info("output_assembled", "Merged PDF written", output=output_path, pages=total_pages)
        return total_pages

    def assemble_docx(
        self,
        files: List[InputFile],
        output_path: str,
        title: Optional[str] = None,
        run_logger: Optional[RunLogger] = None,
    ) -> int:
        """Append text, images and embedded-document placeholders in order."""
        document = Document()
        if title:
            document.core_properties.title = title
        document.core_properties.author = "batch-merger"
        added = 0
        try:
            for input_file in files:
                if input_file.kind == FileKind.TEXT:
                    self._add_text(document, input_file)
                elif input_file.kind == FileKind.IMAGE:
                    self._add_image(document, input_file)
                elif input_file.kind == FileKind.DOCUMENT:
                    self._add_docx_placeholder(document, input_file)
                else:
                    raise AssemblyError(f"Cannot merge {input_file.original_name} into DOCX")
                added += 1
            os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
            document.save(output_path)
        except AssemblyError:
            _remove_partial(output_path)
            raise
        except Exception as exc:
            _remove_partial(output_path)
            raise AssemblyError(f"Failed to write merged DOCX: {exc}", cause=exc) from exc

        print(f"    Created: {os.path.basename(output_path)} ({added} documents)")
        (run_logger or self.run_logger).info("output_assembled", "Merged DOCX written", output=output_path, documents=added)
        return added

    @staticmethod
    def _add_text(document, input_file: InputFile) -> None:
        content = XML_UNSAFE.sub("", read_text_file(input_file.path))
        for line in content.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
            document.add_paragraph(line)
        document.add_paragraph("")

    @staticmethod
    def _add_image(document, input_file: InputFile) -> None:
        document.add_picture(input_file.path, width=Inches(4))
        caption = document.add_paragraph()
        run = caption.add_run(f"Image: {input_file.original_name}")
        run.italic = True
        run.font.size = Pt(9)
        document.add_paragraph("")

    @staticmethod
    def _add_docx_placeholder(document, input_file: InputFile) -> None:
        try:
            paragraph_count = len(Document(input_file.path).paragraphs)
        except Exception:
            paragraph_count = 0
        heading = document.add_paragraph()
        heading.add_run(f"--- Content from {input_file.original_name} ---").bold = True
        note = document.add_paragraph()
        note.add_run(
            f"[Embedded document with {paragraph_count} paragraphs. Open the original file for full formatting.]"
        ).italic = True
        document.add_paragraph("")

    def assemble_zip(self, files: List[InputFile], output_path: str, run_logger: Optional[RunLogger] = None) -> int:
        """Archive originals as <kind>_<n>_<original name>."""
        counters: Dict[str, int] = defaultdict(int)
        used: Set[str] = set()
        try:
            os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
            with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
                for input_file in files:
                    prefix = input_file.kind.value if input_file.kind else "file"
                    counters[prefix] += 1
                    base_name = os.path.basename(input_file.original_name.replace("\\", "/"))
                    entry = unique_entry_name(f"{prefix}_{counters[prefix]}_{base_name}", used)
                    archive.write(input_file.path, arcname=entry)
        except Exception as exc:
            _remove_partial(output_path)
            raise AssemblyError(f"Failed to write ZIP archive: {exc}", cause=exc) from exc

        print(f"    Created: {os.path.basename(output_path)} ({len(files)} entries)")
        (run_logger or self.run_logger).info("output_assembled", "ZIP archive written", output=output_path, entries=len(files))
        return len(files)

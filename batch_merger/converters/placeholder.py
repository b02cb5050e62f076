"""Last-resort report page describing a file that could not be rendered."""

import os
import zipfile
from datetime import datetime
from typing import Dict, Optional

from ..pdf_text import BOLD, ITALIC, PageWriter
from .base import ConversionContext, ConversionStrategy

MAIN_PARTS = {
    ".docx": "word/document.xml",
    ".xlsx": "xl/workbook.xml",
    ".pptx": "ppt/presentation.xml",
}

MEDIA_PREFIXES = ("word/media/", "xl/media/", "ppt/media/")
EMBEDDING_PREFIXES = ("word/embeddings/", "xl/embeddings/", "ppt/embeddings/")


def analyze_archive(path: str, extension: str) -> Dict[str, object]:
    """Structural statistics for an OOXML package. Empty when it is not a zip."""
    stats: Dict[str, object] = {}
    if not zipfile.is_zipfile(path):
        stats["archive"] = False
        return stats
    with zipfile.ZipFile(path) as archive:
        infos = archive.infolist()
        names = [info.filename for info in infos]
        stats["archive"] = True
        stats["entries"] = len(infos)
        main_part = MAIN_PARTS.get(extension)
        if main_part and main_part in names:
            stats["main_part_size"] = archive.getinfo(main_part).file_size
        stats["media_files"] = sum(1 for name in names if name.startswith(MEDIA_PREFIXES))
        stats["embedded_objects"] = sum(1 for name in names if name.startswith(EMBEDDING_PREFIXES))
        if extension == ".pptx":
            stats["slides"] = sum(
                1 for name in names if name.startswith("ppt/slides/slide") and name.endswith(".xml")
            )
        if extension == ".xlsx":
            stats["sheets"] = sum(
                1 for name in names if name.startswith("xl/worksheets/sheet") and name.endswith(".xml")
            )
    return stats


def write_placeholder(context: ConversionContext, kind_label: str = "Document") -> str:
    stat = os.stat(context.input_path)
    try:
        stats = analyze_archive(context.input_path, context.extension)
    except (zipfile.BadZipFile, OSError) as exc:
        stats = {"archive": False, "analysis_error": str(exc)}

    writer = PageWriter(context.output_path, title=f"{kind_label} Conversion Report")
    writer.line(f"{kind_label} Conversion Report", font=BOLD, size=18)
    writer.skip(6)
    writer.line(f"File: {context.original_name}", size=12)
    writer.line(f"Size: {stat.st_size / 1024:.2f} KB", size=12)
    modified = datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
    writer.line(f"Modified: {modified}", size=12)
    writer.skip(8)
    writer.rule()

    writer.line("Structure", font=BOLD, size=13)
    if stats.get("archive"):
        writer.line(f"Archive entries: {stats.get('entries', 0)}")
        if "main_part_size" in stats:
            writer.line(f"Main content part: {stats['main_part_size']} bytes")
        if "slides" in stats:
            writer.line(f"Slides: {stats['slides']}")
        if "sheets" in stats:
            writer.line(f"Worksheets: {stats['sheets']}")
        writer.line(f"Embedded media: {'yes' if stats.get('media_files') else 'no'} ({stats.get('media_files', 0)} files)")
        writer.line(f"Embedded objects: {'yes' if stats.get('embedded_objects') else 'no'}")
    else:
        writer.line("The file is not a readable archive.")
        if stats.get("analysis_error"):
            writer.paragraph(f"Analysis error: {stats['analysis_error']}", font=ITALIC, size=10)
    writer.skip(8)

    writer.line("Conversion attempts", font=BOLD, size=13)
    if context.attempts:
        for name, error in context.attempts:
            writer.paragraph(f"* {name}: {error}", size=10, indent=10)
    else:
        writer.line("No other strategies were attempted.", size=10)
    writer.skip(8)
    writer.paragraph(
        "The original content could not be rendered. Open the source file directly "
        "or install LibreOffice for a faithful conversion.",
        font=ITALIC,
        size=10,
    )
    writer.save()
    return context.output_path


def placeholder_strategy(tier: int, kind_label: str = "Document", name: Optional[str] = None) -> ConversionStrategy:
    def _write(context: ConversionContext) -> str:
        return write_placeholder(context, kind_label)

    return ConversionStrategy(name or "placeholder", tier, _write)

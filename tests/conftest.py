from pathlib import Path
from typing import Dict, List, Optional, Sequence
import zipfile
from xml.sax.saxutils import escape

import pytest
from docx import Document
from openpyxl import Workbook
from PIL import Image
from pypdf import PdfWriter

from batch_merger.governor import ResourceGovernor
from batch_merger.models import InputFile, MergeRequest, OutputFormat
from batch_merger.office_engine import OfficeEngine
from batch_merger.orchestrator import MergeOrchestrator
from batch_merger.run_log import RunLogger
from batch_merger.settings import GovernorConfig, MergeSettings


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def settings(tmp_path: Path, upload_dir: Path) -> MergeSettings:
    return MergeSettings(
        upload_dir=str(upload_dir),
        output_dir=str(tmp_path / "output"),
        temp_dir=str(tmp_path / "temp"),
        logs_dir=str(tmp_path / "logs"),
        max_concurrent_operations=4,
        batch_size=4,
        memory_threshold_mb=1_000_000,
        cpu_threshold=100,
        worker_pool_size=2,
        throttle_poll_interval=0,
        throttle_max_wait=0,
        batch_delay=0,
        enable_memory_optimization=False,
    )


@pytest.fixture
def make_orchestrator(settings: MergeSettings):
    def _make(**overrides) -> MergeOrchestrator:
        run_logger = overrides.pop("run_logger", RunLogger.disabled())
        configured = settings.model_copy(update=overrides)
        return MergeOrchestrator(
            configured,
            engine=OfficeEngine.disabled(),
            run_logger=run_logger,
        )

    return _make


@pytest.fixture
def make_governor():
    def _make(**overrides) -> ResourceGovernor:
        values = dict(
            max_concurrent_operations=4,
            batch_size=4,
            memory_threshold_mb=1_000_000,
            cpu_threshold=100,
            throttle_poll_interval=0,
            throttle_max_wait=0,
            batch_delay=0,
            cpu_sample_interval=0,
            enable_memory_optimization=False,
        )
        values.update(overrides)
        return ResourceGovernor(GovernorConfig(**values), run_logger=RunLogger.disabled())

    return _make


@pytest.fixture
def make_request():
    def _make(paths: Sequence[Path], output_format: str = "pdf", **kwargs) -> MergeRequest:
        files = [InputFile.from_upload(str(path)) for path in paths]
        return MergeRequest(files=files, output_format=OutputFormat.parse(output_format), **kwargs)

    return _make


@pytest.fixture
def make_pdf(upload_dir: Path):
    def _make(filename: str, pages: int = 1) -> Path:
        path = upload_dir / filename
        writer = PdfWriter()
        for _ in range(pages):
            writer.add_blank_page(width=72, height=72)
        with path.open("wb") as handle:
            writer.write(handle)
        return path

    return _make


@pytest.fixture
def make_docx(upload_dir: Path):
    def _make(filename: str, text: str = "Body text", heading: Optional[str] = None) -> Path:
        path = upload_dir / filename
        document = Document()
        if heading:
            document.add_heading(heading, level=1)
        paragraph = document.add_paragraph(text)
        paragraph.add_run(" bold tail").bold = True
        document.save(path)
        return path

    return _make


@pytest.fixture
def make_txt(upload_dir: Path):
    def _make(filename: str, text: str = "Hello from a text file.\nSecond line.") -> Path:
        path = upload_dir / filename
        path.write_text(text, encoding="utf-8")
        return path

    return _make


@pytest.fixture
def make_csv(upload_dir: Path):
    def _make(filename: str, rows: Optional[List[List[str]]] = None) -> Path:
        rows = rows or [["name", "qty"], ["alpha", "1"], ["beta", "2"]]
        path = upload_dir / filename
        path.write_text("\n".join(",".join(row) for row in rows) + "\n", encoding="utf-8")
        return path

    return _make


@pytest.fixture
def make_png(upload_dir: Path):
    def _make(filename: str, size=(40, 30), color=(200, 30, 30)) -> Path:
        path = upload_dir / filename
        Image.new("RGB", size, color).save(path, format="PNG")
        return path

    return _make


@pytest.fixture
def make_jpg(upload_dir: Path):
    def _make(filename: str, size=(40, 30), color=(30, 30, 200)) -> Path:
        path = upload_dir / filename
        Image.new("RGB", size, color).save(path, format="JPEG")
        return path

    return _make


@pytest.fixture
def make_xlsx(upload_dir: Path):
    def _make(filename: str, sheets: Optional[Dict[str, List[list]]] = None) -> Path:
        sheets = sheets or {"Data": [["region", "total"], ["north", 10], ["south", 12]]}
        path = upload_dir / filename
        workbook = Workbook()
        for index, (title, rows) in enumerate(sheets.items()):
            sheet = workbook.active if index == 0 else workbook.create_sheet()
            sheet.title = title
            for row in rows:
                sheet.append(row)
        workbook.save(path)
        return path

    return _make


PRESENTATION_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<p:presentation xmlns:p="http://schemas.openxmlformats.org/presentationml/2006/main"/>'
)

SLIDE_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<p:sld xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main"'
    ' xmlns:p="http://schemas.openxmlformats.org/presentationml/2006/main">'
    "<p:cSld><p:spTree>{shapes}</p:spTree></p:cSld></p:sld>"
)


def _slide_shape(text: str, bold: bool = False) -> str:
    props = '<a:rPr b="1"/>' if bold else "<a:rPr/>"
    return f"<p:sp><p:txBody><a:p><a:r>{props}<a:t>{escape(text)}</a:t></a:r></a:p></p:txBody></p:sp>"


@pytest.fixture
def make_pptx(upload_dir: Path):
    """Minimal hand-built deck: each slide is a title line plus body lines."""

    def _make(filename: str, slides: Optional[List[List[str]]] = None) -> Path:
        slides = slides or [["Quarterly review", "Revenue up"], ["Next steps", "Hire", "Ship"]]
        path = upload_dir / filename
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("ppt/presentation.xml", PRESENTATION_XML)
            for number, lines in enumerate(slides, start=1):
                shapes = "".join(_slide_shape(line, bold=index == 0) for index, line in enumerate(lines))
                archive.writestr(f"ppt/slides/slide{number}.xml", SLIDE_XML.format(shapes=shapes))
        return path

    return _make

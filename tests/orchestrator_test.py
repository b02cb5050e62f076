import asyncio
import json
import math
import os
import re
import zipfile
from datetime import datetime, timezone

import pytest
from docx import Document
from pypdf import PdfReader

from batch_merger.exceptions import ConversionError, MergeError, ValidationError
from batch_merger.models import FileKind, InputFile, MergeRequest, OutputFormat
from batch_merger.orchestrator import (
    generate_output_filename,
    group_by_kind,
    resolve_merge_order,
    supported_formats,
)


def _outline_titles(path) -> list:
    return [item.title for item in PdfReader(str(path)).outline]


def _leftover_fragment_dirs(settings) -> list:
    if not os.path.isdir(settings.temp_dir):
        return []
    return [name for name in os.listdir(settings.temp_dir) if name.startswith("request_")]


def _inputs(*names) -> list:
    return [InputFile.from_upload(f"/uploads/{name}", original_name=name, size=1) for name in names]


def test_resolve_merge_order_places_named_files_first():
    files = _inputs("a.txt", "b.pdf", "c.png", "d.docx")

    ordered = resolve_merge_order(files, ["c.png", "missing.txt", "a.txt"])

    assert [item.original_name for item in ordered] == ["c.png", "a.txt", "b.pdf", "d.docx"]


def test_resolve_merge_order_is_deterministic_and_idempotent():
    files = _inputs("a.txt", "b.txt", "a.txt", "c.txt")
    order = ["a.txt", "c.txt", "a.txt", "a.txt"]

    first = resolve_merge_order(files, order)
    again = resolve_merge_order(files, order)
    twice = resolve_merge_order(first, order)

    assert first == again == twice
    assert [item.original_name for item in first] == ["a.txt", "c.txt", "a.txt", "b.txt"]
    assert first[0] is files[0]
    assert first[2] is files[2]


def test_resolve_merge_order_without_order_keeps_upload_order():
    files = _inputs("z.txt", "a.txt")

    assert resolve_merge_order(files, None) == files
    assert resolve_merge_order(files, []) == files


def test_group_by_kind_keeps_first_seen_order():
    groups = group_by_kind(_inputs("a.png", "b.txt", "c.png", "d.pdf"))

    assert list(groups) == [FileKind.IMAGE, FileKind.TEXT, FileKind.PDF]
    assert [item.original_name for item in groups[FileKind.IMAGE]] == ["a.png", "c.png"]


def test_generate_output_filename_shape():
    now = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)

    name = generate_output_filename("quarterly report", OutputFormat.ZIP, now=now)

    assert re.fullmatch(r"quarterly report-2024-01-02T03-04-05-678Z-[0-9a-f]{8}\.zip", name)
    assert generate_output_filename("x", "pdf", now=now) != generate_output_filename("x", "pdf", now=now)


def test_supported_formats_lists_inputs_and_outputs():
    formats = supported_formats()

    assert {entry["extension"] for entry in formats["input"]} >= {".pdf", ".docx", ".csv", ".jpeg"}
    assert [entry["format"] for entry in formats["output"]] == ["pdf", "docx", "zip"]


def test_scenario_text_and_csv_to_pdf(make_orchestrator, make_request, make_txt, make_csv, settings):
    sources = [make_txt("a.txt"), make_csv("b.csv")]

    result = make_orchestrator().merge_sync(make_request(sources, "pdf", document_name="notes"))

    assert os.path.exists(result.output_path)
    assert result.filename.startswith("notes-") and result.filename.endswith(".pdf")
    assert len(PdfReader(result.output_path).pages) >= 2
    assert result.integrity_score >= 70
    assert result.processed_files == 2
    assert [conversion.strategy for conversion in result.conversions] == ["text-layout", "csv-grid"]
    assert not any(source.exists() for source in sources)
    assert _leftover_fragment_dirs(settings) == []

    payload = result.to_dict()
    assert payload["fileSize"] == os.path.getsize(result.output_path)
    assert set(payload["performanceMetrics"]) == {
        "totalProcessingTime",
        "conversionTime",
        "validationTime",
        "memoryUsage",
    }


def test_scenario_docx_without_engine_still_returns_pdf(make_orchestrator, make_request, make_docx):
    result = make_orchestrator().merge_sync(make_request([make_docx("doc.docx", "Board minutes")], "pdf"))

    assert result.conversions[0].strategy in ("docx-structure", "docx-xml", "placeholder")
    assert result.conversions[0].attempts[0][0] == "office-engine"
    assert len(PdfReader(result.output_path).pages) >= 1


def test_scenario_images_to_zip(make_orchestrator, make_request, make_png, make_jpg):
    result = make_orchestrator().merge_sync(make_request([make_png("img.png"), make_jpg("img2.jpg")], "zip"))

    with zipfile.ZipFile(result.output_path) as archive:
        names = archive.namelist()
    assert names == ["image_1_img.png", "image_2_img2.jpg"]
    assert result.conversions == []


def test_scenario_empty_request_is_rejected(make_orchestrator, settings):
    orchestrator = make_orchestrator()

    with pytest.raises(ValidationError, match="No files provided"):
        orchestrator.merge_sync(MergeRequest(files=[], output_format=OutputFormat.PDF))

    assert os.listdir(settings.output_dir) == []


def test_scenario_ten_mixed_files_in_three_batches(
    make_orchestrator,
    make_request,
    make_txt,
    make_csv,
    make_png,
    make_jpg,
    make_docx,
    make_xlsx,
    make_pptx,
):
    sources = [
        make_txt("01.txt"),
        make_csv("02.csv"),
        make_png("03.png"),
        make_jpg("04.jpg"),
        make_docx("05.docx"),
        make_xlsx("06.xlsx"),
        make_pptx("07.pptx", slides=[["Only slide"]]),
        make_txt("08.txt"),
        make_csv("09.csv"),
        make_png("10.png"),
    ]
    orchestrator = make_orchestrator(batch_size=4, max_concurrent_operations=6)

    result = orchestrator.merge_sync(make_request(sources, "pdf"))

    report = orchestrator.governor.last_execution
    assert report.batches == math.ceil(10 / 4) == 3
    assert report.batch_sizes == [4, 4, 2]
    assert _outline_titles(result.output_path) == [source.name for source in sources]


def test_pdf_inputs_pass_through_without_conversion(make_orchestrator, make_request, make_pdf, make_txt):
    sources = [make_pdf("first.pdf", pages=2), make_txt("second.txt"), make_pdf("third.pdf")]

    result = make_orchestrator().merge_sync(make_request(sources, "pdf"))

    assert len(PdfReader(result.output_path).pages) == 4
    assert len(result.conversions) == 1
    assert _outline_titles(result.output_path) == ["first.pdf", "second.txt", "third.pdf"]


def test_merge_order_applies_to_output(make_orchestrator, make_request, make_txt):
    sources = [make_txt("a.txt"), make_txt("b.txt"), make_txt("c.txt")]

    result = make_orchestrator().merge_sync(make_request(sources, "pdf", merge_order=["c.txt", "a.txt"]))

    assert _outline_titles(result.output_path) == ["c.txt", "a.txt", "b.txt"]


def test_docx_output_combines_text_images_and_documents(make_orchestrator, make_request, make_txt, make_png, make_docx):
    sources = [make_txt("intro.txt", "Opening line"), make_png("chart.png"), make_docx("appendix.docx")]

    result = make_orchestrator().merge_sync(make_request(sources, "docx", document_name="bundle"))

    document = Document(result.output_path)
    text = "\n".join(paragraph.text for paragraph in document.paragraphs)
    assert "Opening line" in text
    assert "Image: chart.png" in text
    assert "--- Content from appendix.docx ---" in text
    assert len(document.inline_shapes) == 1
    assert document.core_properties.title == "bundle"


def test_docx_output_rejects_spreadsheets(make_orchestrator, make_request, make_xlsx, make_txt, settings):
    sources = [make_txt("a.txt"), make_xlsx("book.xlsx")]

    with pytest.raises(ValidationError) as excinfo:
        make_orchestrator().merge_sync(make_request(sources, "docx"))

    assert excinfo.value.status_code == 400
    assert "Cannot merge spreadsheet into DOCX" in excinfo.value.messages[0]
    assert not any(source.exists() for source in sources)
    assert os.listdir(settings.output_dir) == []


def test_invalid_input_reports_file_and_cleans_up(make_orchestrator, make_request, make_txt, upload_dir):
    good = make_txt("good.txt")
    bad = upload_dir / "broken.pdf"
    bad.write_bytes(b"not really a pdf")

    with pytest.raises(ValidationError) as excinfo:
        make_orchestrator().merge_sync(make_request([good, bad], "pdf"))

    assert excinfo.value.messages[0].startswith("broken.pdf: Invalid PDF file")
    assert not good.exists()
    assert not bad.exists()


def test_conversion_failure_removes_inputs_fragments_and_output(
    make_orchestrator, make_request, make_txt, make_png, settings, monkeypatch
):
    orchestrator = make_orchestrator()
    sources = [make_txt("a.txt"), make_png("b.png")]

    async def _fail(path, original_name=None, output_dir=None, run_logger=None, mime_type=None):
        raise ConversionError(f"cannot convert {original_name}", source=path)

    monkeypatch.setattr(orchestrator.converters[FileKind.IMAGE], "convert_to_pdf", _fail)

    with pytest.raises(ConversionError):
        orchestrator.merge_sync(make_request(sources, "pdf"))

    assert not any(source.exists() for source in sources)
    assert _leftover_fragment_dirs(settings) == []
    assert os.listdir(settings.output_dir) == []
    assert orchestrator.run_logger.events_named("merge_failed")


def test_unexpected_error_is_wrapped_as_merge_error(make_orchestrator, make_request, make_txt, settings, monkeypatch):
    orchestrator = make_orchestrator()

    def _explode(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(orchestrator.assembler, "assemble_pdf", _explode)

    with pytest.raises(MergeError, match="disk full") as excinfo:
        orchestrator.merge_sync(make_request([make_txt("a.txt")], "pdf"))

    assert isinstance(excinfo.value.cause, OSError)
    assert os.listdir(settings.output_dir) == []
    assert _leftover_fragment_dirs(settings) == []


def test_sequential_mode_produces_same_output(make_orchestrator, make_request, make_txt, make_png):
    sources = [make_txt("a.txt"), make_png("b.png"), make_txt("c.txt")]
    orchestrator = make_orchestrator(enable_parallel_processing=False)

    result = orchestrator.merge_sync(make_request(sources, "pdf"))

    assert orchestrator.governor.last_execution.parallel is False
    assert _outline_titles(result.output_path) == ["a.txt", "b.png", "c.txt"]
    assert len(result.validation_results) == 3 + 3 + 1


def test_merge_logs_lifecycle_events(make_orchestrator, make_request, make_txt):
    orchestrator = make_orchestrator()

    asyncio.run(orchestrator.merge(make_request([make_txt("a.txt")], "zip")))

    logger = orchestrator.run_logger
    assert logger.events_named("merge_started")
    assert logger.events_named("merge_completed")
    assert logger.events_named("cleanup")[0]["context"]["inputs_removed"] == 1


def test_every_input_kind_merges_into_pdf_and_zip(
    make_orchestrator, make_request, make_pdf, make_docx, make_xlsx, make_pptx, make_png, make_txt
):
    for output_format in ("pdf", "zip"):
        sources = [
            make_pdf(f"p-{output_format}.pdf"),
            make_docx(f"d-{output_format}.docx"),
            make_xlsx(f"x-{output_format}.xlsx"),
            make_pptx(f"s-{output_format}.pptx"),
            make_png(f"i-{output_format}.png"),
            make_txt(f"t-{output_format}.txt"),
        ]
        result = make_orchestrator().merge_sync(make_request(sources, output_format))
        assert result.output_path.endswith(f".{output_format}")
        assert result.file_size > 0


def test_validation_warnings_reach_run_log_and_lower_score(make_orchestrator, make_request, make_txt):
    orchestrator = make_orchestrator()

    result = orchestrator.merge_sync(make_request([make_txt("blank.txt", "   \n")], "pdf"))

    warnings = orchestrator.run_logger.events_named("validation_warning")
    assert warnings[0]["message"] == "Text file is empty"
    assert warnings[0]["context"]["target"] == "blank.txt"
    assert result.integrity_score < 100


def _manifest_events(settings) -> list:
    events = []
    for name in sorted(os.listdir(settings.logs_dir)):
        if name.endswith(".jsonl"):
            with open(os.path.join(settings.logs_dir, name), encoding="utf-8") as handle:
                events.extend(json.loads(line)["event"] for line in handle if line.strip())
    return events


def test_run_manifest_collects_component_events(make_orchestrator, make_request, make_docx, make_txt, settings):
    orchestrator = make_orchestrator(run_logger=None)

    orchestrator.merge_sync(make_request([make_docx("a.docx"), make_txt("b.txt")], "pdf"))

    events = _manifest_events(settings)
    assert "conversion_strategy_failed" in events
    assert "conversion_succeeded" in events
    assert "governor_batch" in events
    assert "governor_execute" in events
    assert "output_assembled" in events
    assert "merge_completed" in events


def test_component_loggers_stay_empty_across_requests(make_orchestrator, make_request, make_docx, settings):
    orchestrator = make_orchestrator(run_logger=None)

    for index in range(3):
        orchestrator.merge_sync(make_request([make_docx(f"d{index}.docx"), make_docx(f"e{index}.docx")], "pdf"))

    assert len(orchestrator.governor.run_logger.events) == 0
    assert len(orchestrator.assembler.run_logger.events) == 0
    assert all(len(converter.run_logger.events) == 0 for converter in orchestrator.converters.values())
    assert len([name for name in os.listdir(settings.logs_dir) if name.endswith(".jsonl")]) == 3


def test_unsupported_format_from_transport_payload_removes_uploads(make_orchestrator, make_txt, settings):
    source = make_txt("a.txt")
    request = MergeRequest.from_dict({"files": [{"path": str(source), "originalName": "a.txt"}], "outputFormat": "rtf"})

    with pytest.raises(ValidationError, match="Unsupported output format"):
        make_orchestrator().merge_sync(request)

    assert not source.exists()
    assert os.listdir(settings.output_dir) == []

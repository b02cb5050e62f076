"""Command-line entry point."""

import json
import os
import shutil
import uuid
from typing import List, Optional

import typer

from .exceptions import MergeError, ValidationError
from .models import InputFile, MergeRequest
from .office_engine import OfficeEngine
from .orchestrator import MergeOrchestrator, supported_formats
from .settings import MergeSettings

app = typer.Typer(
    name="batch-merger",
    help="Merge PDFs, Office documents, images and text into one PDF, DOCX or ZIP.",
    add_completion=False,
    no_args_is_help=True,
)


def stage_upload(source: str, upload_dir: str) -> InputFile:
    """Copy a file into the upload directory; the merge deletes the copy, never the source."""
    original_name = os.path.basename(source)
    os.makedirs(upload_dir, exist_ok=True)
    staged = os.path.join(upload_dir, f"{uuid.uuid4().hex}_{original_name}")
    shutil.copyfile(source, staged)
    return InputFile.from_upload(staged, original_name=original_name)


@app.command("merge")
def merge(
    files: List[str] = typer.Argument(..., help="Files to merge, in upload order."),
    output_format: str = typer.Option("pdf", "--format", "-f", help="pdf, docx or zip."),
    name: str = typer.Option("merged-document", "--name", "-n", help="Base name of the output file."),
    order: Optional[List[str]] = typer.Option(None, "--order", "-o", help="Original file name to place first; repeatable."),
) -> None:
    """Merge FILES and print the result as JSON."""
    settings = MergeSettings()
    settings.ensure_directories()

    staged: List[InputFile] = []
    for source in files:
        if not os.path.isfile(source):
            for input_file in staged:
                os.remove(input_file.path)
            typer.echo(json.dumps({"error": "ValidationError", "message": f"File not found: {source}"}), err=True)
            raise typer.Exit(code=2)
        staged.append(stage_upload(source, settings.upload_dir))

    try:
        request = MergeRequest(
            files=staged,
            output_format=output_format,
            document_name=name,
            merge_order=list(order) if order else None,
        )
        result = MergeOrchestrator(settings).merge_sync(request)
    except ValidationError as exc:
        for input_file in staged:
            if os.path.exists(input_file.path):
                os.remove(input_file.path)
        typer.echo(json.dumps(exc.to_dict(), indent=2), err=True)
        raise typer.Exit(code=2)
    except MergeError as exc:
        typer.echo(json.dumps(exc.to_dict(), indent=2), err=True)
        raise typer.Exit(code=1)

    payload = result.to_dict()
    payload["outputPath"] = result.output_path
    typer.echo(json.dumps(payload, indent=2))


@app.command("engine-status")
def engine_status(
    probe: bool = typer.Option(False, "--probe", help="Run a real test conversion."),
) -> None:
    """Report whether the office engine is installed and working."""
    engine = OfficeEngine.from_settings(MergeSettings())
    if probe:
        engine.verify(probe_conversion=True)
    typer.echo(engine.status_report())


@app.command("formats")
def formats() -> None:
    """List supported input and output formats as JSON."""
    typer.echo(json.dumps(supported_formats(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()

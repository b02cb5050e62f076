"""
Conversion orchestrator.

merge() validates a request, orders and groups its files, converts them to
PDF fragments through the resource governor, assembles the output, scores it
and always removes the request's inputs and fragments before returning.
"""

import asyncio
import os
import shutil
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import psutil

from .assembler import OutputAssembler
from .converters import BaseConverter, build_converter_registry
from .exceptions import ConversionError, MergeError, ValidationError
from .governor import ResourceGovernor
from .models import (
    OUTPUT_ACCEPTS,
    ConversionResult,
    FileKind,
    InputFile,
    MergeRequest,
    MergeResult,
    OutputFormat,
    PerformanceMetrics,
    ValidationResult,
    detect_kind,
)
from .office_engine import OfficeEngine
from .run_log import RunLogger, record_warning
from .settings import MergeSettings
from .validation import ValidationService, integrity_score, validation_summary

SUPPORTED_INPUTS = [
    {"extension": ".pdf", "mimeType": "application/pdf", "description": "PDF documents"},
    {
        "extension": ".docx",
        "mimeType": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "description": "Word documents",
    },
    {
        "extension": ".pptx",
        "mimeType": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "description": "PowerPoint presentations",
    },
    {
        "extension": ".xlsx",
        "mimeType": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "description": "Excel spreadsheets",
    },
    {"extension": ".txt", "mimeType": "text/plain", "description": "Text files"},
    {"extension": ".csv", "mimeType": "text/csv", "description": "CSV files"},
    {"extension": ".jpg", "mimeType": "image/jpeg", "description": "JPEG images"},
    {"extension": ".jpeg", "mimeType": "image/jpeg", "description": "JPEG images"},
    {"extension": ".png", "mimeType": "image/png", "description": "PNG images"},
]

SUPPORTED_OUTPUTS = [
    {"format": "pdf", "description": "Merged PDF document"},
    {"format": "docx", "description": "Merged Word document"},
    {"format": "zip", "description": "ZIP archive of the original files"},
]


def supported_formats() -> Dict[str, list]:
    return {"input": list(SUPPORTED_INPUTS), "output": list(SUPPORTED_OUTPUTS)}


def resolve_merge_order(files: List[InputFile], merge_order: Optional[List[str]] = None) -> List[InputFile]:
    """
    Files named in merge_order first, in that order, then the rest in upload order.

    Each name claims the first unclaimed file with that original name; unknown
    names are ignored. Applying the result again yields the same order.
    """
    if not merge_order:
        return list(files)
    remaining = list(files)
    ordered: List[InputFile] = []
    for name in merge_order:
        for index, candidate in enumerate(remaining):
            if candidate.original_name == name:
                ordered.append(remaining.pop(index))
                break
    return ordered + remaining


def group_by_kind(files: List[InputFile]) -> "OrderedDict[FileKind, List[InputFile]]":
    """Bucket files by kind in first-seen order, keeping file order inside each bucket."""
    groups: "OrderedDict[FileKind, List[InputFile]]" = OrderedDict()
    for input_file in files:
        groups.setdefault(input_file.kind, []).append(input_file)
    return groups


def generate_output_filename(document_name: str, output_format: OutputFormat, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    timestamp = timestamp.replace(":", "-").replace(".", "-")
    safe_name = (document_name or "merged-document").replace("/", "_").replace("\\", "_").strip() or "merged-document"
    return f"{safe_name}-{timestamp}-{uuid.uuid4().hex[:8]}.{OutputFormat.parse(output_format).value}"


def _remove_file(path: str) -> bool:
    if path and os.path.exists(path):
        try:
            os.remove(path)
            return True
        except OSError:
            return False
    return False


class MergeOrchestrator:
    """Coordinates the entire merging process"""

    def __init__(
        self,
        settings: Optional[MergeSettings] = None,
        governor: Optional[ResourceGovernor] = None,
        engine: Optional[OfficeEngine] = None,
        converters: Optional[Dict[FileKind, BaseConverter]] = None,
        validator: Optional[ValidationService] = None,
        assembler: Optional[OutputAssembler] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.settings = settings or MergeSettings()
        self.settings.ensure_directories()
        self.run_logger = run_logger
        self.governor = governor or ResourceGovernor(self.settings.governor_config(), run_logger=run_logger)
        self.engine = engine or OfficeEngine.from_settings(self.settings)
        self.converters = converters or build_converter_registry(
            engine=self.engine,
            fragment_dir=self.settings.temp_dir,
            run_logger=run_logger,
        )
        self.validator = validator or ValidationService(self.settings.max_input_file_mb)
        self.assembler = assembler or OutputAssembler(self.settings.large_file_threshold_mb, run_logger=run_logger)

    def _open_run_logger(self) -> Tuple[RunLogger, bool]:
        if self.run_logger is not None:
            return self.run_logger, False
        logger = RunLogger(
            logs_dir=self.settings.logs_dir,
            enabled=self.settings.enable_detailed_logging,
            privacy_mode=self.settings.log_privacy_mode,
        )
        return logger, True

    # -- pre-flight ---------------------------------------------------------

    def preflight(self, request: MergeRequest) -> List[ValidationResult]:
        """Validate the request and each file in order, stopping at the first invalid one."""
        if not request.files:
            raise ValidationError("No files provided")
        output_format = OutputFormat.parse(request.output_format)
        request.output_format = output_format

        results: List[ValidationResult] = []
        for input_file in request.files:
            if input_file.kind is None:
                input_file.kind = detect_kind(input_file.original_name, input_file.mime_type)
            result = self.validator.validate_input(input_file.path, input_file.original_name, kind=input_file.kind)
            if result.is_valid and input_file.kind not in OUTPUT_ACCEPTS[output_format]:
                result.add_error(f"Cannot merge {input_file.kind.value} into {output_format.value.upper()}")
            if not result.is_valid:
                raise ValidationError(f"Invalid input file: {input_file.original_name}", results=[result])
            results.append(result)
        return results

    # -- conversion ---------------------------------------------------------

    def _conversion_operation(self, input_file: InputFile, fragment_dir: str, run_logger: Optional[RunLogger] = None):
        converter = self.converters.get(input_file.kind)
        if converter is None:
            raise ValidationError(f"No converter registered for {input_file.kind.value}")

        async def _operation() -> ConversionResult:
            try:
                return await converter.convert_to_pdf(
                    input_file.path,
                    input_file.original_name,
                    fragment_dir,
                    run_logger=run_logger,
                    mime_type=input_file.mime_type,
                )
            except ConversionError:
                raise
            except Exception as exc:
                raise ConversionError(
                    f"Conversion failed for {input_file.original_name}: {exc}",
                    source=input_file.path,
                    cause=exc,
                ) from exc

        return _operation

    async def convert_all(
        self, files: List[InputFile], fragment_dir: str, run_logger: Optional[RunLogger] = None
    ) -> Dict[int, ConversionResult]:
        """Convert every non-PDF file; keys are positions in files."""
        positions = [index for index, input_file in enumerate(files) if input_file.kind != FileKind.PDF]
        operations = [self._conversion_operation(files[index], fragment_dir, run_logger) for index in positions]
        if not operations:
            return {}
        results = await self.governor.execute(operations, operation_name="convert", run_logger=run_logger)
        return dict(zip(positions, results))

    async def _validate_conversions(
        self, jobs: List[Tuple[str, str, str]], run_logger: Optional[RunLogger] = None
    ) -> List[ValidationResult]:
        if not jobs:
            return []

        def _check(job: Tuple[str, str, str]) -> ValidationResult:
            return self.validator.validate_conversion(*job)

        if self.governor.config.enable_parallel_processing:
            return await self.governor.run_in_pool(_check, jobs, run_logger=run_logger)
        return [_check(job) for job in jobs]

    # -- entry point --------------------------------------------------------

    async def merge(self, request: MergeRequest) -> MergeResult:
        run_logger, owns_logger = self._open_run_logger()
        process = psutil.Process(os.getpid())
        start_rss = process.memory_info().rss
        started = time.perf_counter()
        fragment_dir = os.path.join(self.settings.temp_dir, f"request_{uuid.uuid4().hex}")
        output_path = None
        succeeded = False

        print(f"\nMerging {len(request.files)} files")
        run_logger.info("merge_started", "Merge request received", files=len(request.files))
        try:
            input_results = self.preflight(request)
            output_format = request.output_format

            ordered = resolve_merge_order(request.files, request.merge_order)
            groups = group_by_kind(ordered)
            run_logger.info(
                "merge_ordered",
                "Resolved merge order",
                order=[input_file.original_name for input_file in ordered],
                groups={kind.value: len(members) for kind, members in groups.items()},
            )

            filename = generate_output_filename(request.document_name, output_format)
            output_path = os.path.join(self.settings.output_dir, filename)
            os.makedirs(fragment_dir, exist_ok=True)

            conversion_started = time.perf_counter()
            conversions: Dict[int, ConversionResult] = {}
            if output_format == OutputFormat.PDF:
                conversions = await self.convert_all(ordered, fragment_dir, run_logger)
                fragments = [
                    (conversions[index].fragment_path if index in conversions else input_file.path, input_file.original_name)
                    for index, input_file in enumerate(ordered)
                ]
                await asyncio.to_thread(
                    self.assembler.assemble_pdf, fragments, output_path, request.document_name, run_logger=run_logger
                )
            elif output_format == OutputFormat.DOCX:
                await asyncio.to_thread(
                    self.assembler.assemble_docx, ordered, output_path, request.document_name, run_logger=run_logger
                )
            else:
                await asyncio.to_thread(self.assembler.assemble_zip, ordered, output_path, run_logger=run_logger)
            conversion_time = time.perf_counter() - conversion_started

            validation_started = time.perf_counter()
            output_result = await asyncio.to_thread(self.validator.validate_output, output_path, output_format)
            conversion_results = await self._validate_conversions([
                (ordered[index].path, conversions[index].fragment_path, ordered[index].original_name)
                for index in sorted(conversions)
            ], run_logger)
            validation_time = time.perf_counter() - validation_started

            validation_results = input_results + conversion_results + [output_result]
            warnings: List[dict] = []
            for validation in validation_results:
                for message in validation.warnings:
                    record_warning(warnings, "validation_warning", message, target=validation.display_name)
            run_logger.flush_warnings(warnings)
            score = integrity_score(validation_results)
            file_size = os.path.getsize(output_path)
            metrics = PerformanceMetrics(
                total_processing_time=time.perf_counter() - started,
                conversion_time=conversion_time,
                validation_time=validation_time,
                memory_usage=process.memory_info().rss - start_rss,
            )
            result = MergeResult(
                filename=filename,
                output_path=output_path,
                file_size=file_size,
                processed_files=len(request.files),
                integrity_score=score,
                performance_metrics=metrics,
                validation_results=validation_results,
                conversions=[conversions[index] for index in sorted(conversions)],
            )
            succeeded = True
            print(f"Merge complete: {filename} ({file_size} bytes, integrity {score})")
            run_logger.info(
                "merge_completed",
                validation_summary(validation_results),
                output=output_path,
                file_size=file_size,
                integrity_score=score,
                strategies=[conversion.strategy for conversion in result.conversions],
            )
            return result
        except ValidationError as exc:
            run_logger.error("merge_rejected", exc.message, details=exc.messages)
            raise
        except MergeError as exc:
            run_logger.error("merge_failed", exc.message, error_type=type(exc).__name__)
            raise
        except Exception as exc:
            run_logger.error("merge_failed", str(exc), error_type=type(exc).__name__)
            raise MergeError(f"Merge failed: {exc}", cause=exc) from exc
        finally:
            removed = sum(1 for input_file in request.files if _remove_file(input_file.path))
            shutil.rmtree(fragment_dir, ignore_errors=True)
            if not succeeded and output_path:
                _remove_file(output_path)
            run_logger.info("cleanup", "Removed request files", inputs_removed=removed)
            if owns_logger:
                run_logger.close()

    def merge_sync(self, request: MergeRequest) -> MergeResult:
        return asyncio.run(self.merge(request))

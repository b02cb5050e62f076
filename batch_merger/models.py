"""
Data model for merge requests and their results.
"""

import mimetypes
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import ValidationError


class OutputFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    ZIP = "zip"

    @classmethod
    def parse(cls, value) -> "OutputFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            raise ValidationError(f"Unsupported output format: {value}") from None


class FileKind(str, Enum):
    PDF = "pdf"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    IMAGE = "image"
    TEXT = "text"


EXTENSION_KINDS: Dict[str, FileKind] = {
    ".pdf": FileKind.PDF,
    ".docx": FileKind.DOCUMENT,
    ".xlsx": FileKind.SPREADSHEET,
    ".pptx": FileKind.PRESENTATION,
    ".png": FileKind.IMAGE,
    ".jpg": FileKind.IMAGE,
    ".jpeg": FileKind.IMAGE,
    ".txt": FileKind.TEXT,
    ".csv": FileKind.TEXT,
}

MIME_KINDS: Dict[str, FileKind] = {
    "application/pdf": FileKind.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": FileKind.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileKind.SPREADSHEET,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": FileKind.PRESENTATION,
    "image/png": FileKind.IMAGE,
    "image/jpeg": FileKind.IMAGE,
    "text/plain": FileKind.TEXT,
    "text/csv": FileKind.TEXT,
}

# Kinds each output format can take. PDF converts everything, ZIP archives originals.
OUTPUT_ACCEPTS: Dict[OutputFormat, Tuple[FileKind, ...]] = {
    OutputFormat.PDF: tuple(FileKind),
    OutputFormat.DOCX: (FileKind.TEXT, FileKind.IMAGE, FileKind.DOCUMENT),
    OutputFormat.ZIP: tuple(FileKind),
}


def detect_kind(name: str, mime_type: Optional[str] = None) -> Optional[FileKind]:
    """Extension first, mimetype second. None when neither is recognised."""
    extension = os.path.splitext(name or "")[1].lower()
    if extension in EXTENSION_KINDS:
        return EXTENSION_KINDS[extension]
    if mime_type:
        return MIME_KINDS.get(mime_type.split(";")[0].strip().lower())
    return None


@dataclass
class InputFile:
    path: str
    original_name: str
    mime_type: str
    size: int
    kind: Optional[FileKind]
    extension: str

    @classmethod
    def from_upload(
        cls,
        path: str,
        original_name: Optional[str] = None,
        mime_type: Optional[str] = None,
        size: Optional[int] = None,
    ) -> "InputFile":
        original_name = original_name or os.path.basename(path)
        if not mime_type:
            mime_type = mimetypes.guess_type(original_name)[0] or "application/octet-stream"
        if size is None:
            try:
                size = os.path.getsize(path)
            except OSError:
                size = 0
        return cls(
            path=path,
            original_name=original_name,
            mime_type=mime_type,
            size=int(size),
            kind=detect_kind(original_name, mime_type),
            extension=os.path.splitext(original_name)[1].lower(),
        )


@dataclass
class MergeRequest:
    files: List[InputFile]
    output_format: Union[OutputFormat, str]
    document_name: str = "merged-document"
    merge_order: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "MergeRequest":
        """
        Build a request from the transport shape used by upload handlers.

        The output format stays a raw string here; preflight parses it so an
        unsupported value is rejected inside the merge and the uploads are
        still removed.
        """
        files = [
            InputFile.from_upload(
                entry["path"],
                entry.get("originalName"),
                entry.get("mimeType"),
                entry.get("size"),
            )
            for entry in payload.get("files") or []
        ]
        return cls(
            files=files,
            output_format=str(payload.get("outputFormat") or "").strip().lower(),
            document_name=payload.get("documentName") or "merged-document",
            merge_order=payload.get("mergeOrder"),
        )


@dataclass
class ConversionResult:
    source: str
    fragment_path: str
    strategy: str
    tier: int
    elapsed: float
    success: bool = True
    attempts: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ValidationResult:
    target: str
    is_valid: bool = True
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def display_name(self) -> str:
        return self.name or os.path.basename(self.target)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.display_name,
            "isValid": self.is_valid,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
        }


@dataclass
class PerformanceMetrics:
    total_processing_time: float = 0.0
    conversion_time: float = 0.0
    validation_time: float = 0.0
    memory_usage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalProcessingTime": round(self.total_processing_time * 1000),
            "conversionTime": round(self.conversion_time * 1000),
            "validationTime": round(self.validation_time * 1000),
            "memoryUsage": self.memory_usage,
        }


@dataclass
class ResourceSnapshot:
    cpu_percent: float
    memory_used: int
    memory_total: int
    memory_percent: float
    process_memory_mb: float
    active_operations: int
    queued_operations: int
    average_processing_time: float


@dataclass
class MergeResult:
    filename: str
    output_path: str
    file_size: int
    processed_files: int
    integrity_score: int
    performance_metrics: PerformanceMetrics
    validation_results: List[ValidationResult] = field(default_factory=list)
    conversions: List[ConversionResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "fileSize": self.file_size,
            "processedFiles": self.processed_files,
            "integrityScore": self.integrity_score,
            "performanceMetrics": self.performance_metrics.to_dict(),
            "validationResults": [result.to_dict() for result in self.validation_results],
        }

"""
Batch merger: combine uploaded documents into one PDF, DOCX or ZIP.
"""

from .exceptions import AssemblyError, ConversionError, MergeError, ResourceTimeoutError, ValidationError
from .governor import ResourceGovernor, WorkerPool
from .models import FileKind, InputFile, MergeRequest, MergeResult, OutputFormat, ValidationResult
from .office_engine import OfficeEngine
from .orchestrator import MergeOrchestrator, supported_formats
from .settings import GovernorConfig, MergeSettings

__version__ = "1.0.0"

__all__ = [
    "AssemblyError",
    "ConversionError",
    "FileKind",
    "GovernorConfig",
    "InputFile",
    "MergeError",
    "MergeOrchestrator",
    "MergeRequest",
    "MergeResult",
    "MergeSettings",
    "OfficeEngine",
    "OutputFormat",
    "ResourceGovernor",
    "ResourceTimeoutError",
    "ValidationError",
    "ValidationResult",
    "WorkerPool",
    "supported_formats",
]

from typing import Dict, Optional

from ..models import FileKind
from ..office_engine import OfficeEngine
from ..run_log import RunLogger
from .base import BaseConverter, ConversionContext, ConversionStrategy, StrategyChain
from .document import DocumentConverter
from .image import ImageConverter
from .presentation import PresentationConverter
from .spreadsheet import SpreadsheetConverter
from .text import TextConverter

CONVERTER_TYPES = (
    DocumentConverter,
    SpreadsheetConverter,
    PresentationConverter,
    ImageConverter,
    TextConverter,
)


def build_converter_registry(
    engine: Optional[OfficeEngine] = None,
    fragment_dir: Optional[str] = None,
    run_logger: Optional[RunLogger] = None,
) -> Dict[FileKind, BaseConverter]:
    """Map each convertible kind to one converter instance."""
    return {
        converter_type.kind: converter_type(engine=engine, fragment_dir=fragment_dir, run_logger=run_logger)
        for converter_type in CONVERTER_TYPES
    }


__all__ = [
    "BaseConverter",
    "ConversionContext",
    "ConversionStrategy",
    "StrategyChain",
    "DocumentConverter",
    "SpreadsheetConverter",
    "PresentationConverter",
    "ImageConverter",
    "TextConverter",
    "build_converter_registry",
]

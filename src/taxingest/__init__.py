"""taxingest - Tax document import and field-mapping pipeline."""

__version__ = "0.1.0"

from .catalogue import detect_document_type, get_schema, load_catalogue
from .config import IngestSettings, configure_logging
from .field_mapper import FieldMapping, suggest_mapping
from .models import DocumentType, ExtractionResult, LedgerEntry, ParseResult, PipelineResult
from .pipeline import ImportPipeline

__all__ = [
    "DocumentType",
    "ExtractionResult",
    "FieldMapping",
    "ImportPipeline",
    "IngestSettings",
    "LedgerEntry",
    "ParseResult",
    "PipelineResult",
    "configure_logging",
    "detect_document_type",
    "get_schema",
    "load_catalogue",
    "suggest_mapping",
]

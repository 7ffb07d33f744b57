"""Data models for the taxingest pipeline.

This package contains:
- schema: Document types and target form schema definitions
- records: Raw, validated and ledger records
- extraction: Scanned-document extraction results and progress events
"""

from .extraction import (
    Confidence,
    ConfidenceLevel,
    ExtractionResult,
    FieldSource,
    ManualReview,
    ProgressEvent,
    ProgressStep,
    StructuredFields,
)
from .records import (
    AmountSource,
    LedgerCategory,
    LedgerEntry,
    ParseResult,
    PipelineResult,
    RawRow,
    RowError,
    ValidatedRow,
    ValidationResult,
)
from .schema import DocumentType, FieldDefinition, FieldType, FormSchema

__all__ = [
    # Schema
    "DocumentType",
    "FieldDefinition",
    "FieldType",
    "FormSchema",
    # Records
    "AmountSource",
    "LedgerCategory",
    "LedgerEntry",
    "ParseResult",
    "PipelineResult",
    "RawRow",
    "RowError",
    "ValidatedRow",
    "ValidationResult",
    # Extraction
    "Confidence",
    "ConfidenceLevel",
    "ExtractionResult",
    "FieldSource",
    "ManualReview",
    "ProgressEvent",
    "ProgressStep",
    "StructuredFields",
]

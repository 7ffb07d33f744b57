"""Extraction results for scanned tax documents.

An extraction either recovered named tax values (``StructuredFields``) or
recovered only text that a person must review (``ManualReview``). The two
variants form a discriminated union on ``kind`` so callers can branch on the
outcome instead of probing an open-ended dictionary.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .records import RawRow
from .schema import DocumentType

TEXT_ONLY_SOURCE = "text-only"
MANUAL_REVIEW_NOTE = (
    "Manual review required - automated extraction was unable to identify "
    "specific tax form fields"
)


class ConfidenceLevel(str, Enum):
    """Categorical confidence of an extraction."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FieldSource(str, Enum):
    """Where the values of an extraction came from."""

    BACKEND = "backend"
    FALLBACK = "fallback"
    MERGED = "merged"


class Confidence(BaseModel):
    """Confidence score (0-1) with its categorical level."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    level: ConfidenceLevel


class StructuredFields(BaseModel):
    """Named tax values recovered from a document, keyed by canonical name."""

    kind: Literal["structured"] = "structured"
    fields: dict[str, str]
    source: FieldSource
    backend_fields: list[str] = Field(
        default_factory=list, description="Canonical names supplied by the backend"
    )
    fallback_fields: list[str] = Field(
        default_factory=list, description="Canonical names recovered by pattern extraction"
    )


class ManualReview(BaseModel):
    """No fields were recovered; only an OCR excerpt is available."""

    kind: Literal["text_only"] = "text_only"
    ocr_excerpt: str
    note: str = MANUAL_REVIEW_NOTE


ExtractionPayload = Annotated[
    Union[StructuredFields, ManualReview], Field(discriminator="kind")
]


class ExtractionResult(BaseModel):
    """Outcome of extracting one scanned document."""

    document_type: DocumentType
    ocr_text: str
    payload: ExtractionPayload
    confidence: Confidence
    backend_error: Optional[str] = Field(
        default=None, description="Backend failure message when the local text path was used"
    )
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def requires_review(self) -> bool:
        return isinstance(self.payload, ManualReview)

    @property
    def extracted_fields(self) -> dict[str, str]:
        if isinstance(self.payload, StructuredFields):
            return dict(self.payload.fields)
        return {}

    def to_raw_row(self) -> RawRow:
        """Express the extraction as a single raw row for field mapping."""
        if isinstance(self.payload, StructuredFields):
            return dict(self.payload.fields)
        return {
            "sourceType": TEXT_ONLY_SOURCE,
            "ocrText": self.payload.ocr_excerpt,
            "note": self.payload.note,
        }

    def to_dict(self) -> dict[str, Any]:
        """Caller-facing summary of the extraction."""
        return {
            "success": True,
            "document_type": self.document_type.value,
            "extracted_fields": self.extracted_fields,
            "ocr_text": self.ocr_text,
            "confidence": self.confidence.level.value,
            "confidence_score": self.confidence.score,
            "requires_review": self.requires_review,
        }


class ProgressStep(str, Enum):
    """Steps reported while a document is being extracted."""

    STARTED = "started"
    BACKEND_COMPLETE = "backend_complete"
    BACKEND_FAILED = "backend_failed"
    FALLBACK_APPLIED = "fallback_applied"
    COMPLETED = "completed"


class ProgressEvent(BaseModel):
    """A progress notification delivered to the caller's callback."""

    model_config = ConfigDict(frozen=True)

    step: ProgressStep
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

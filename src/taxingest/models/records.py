"""Row and ledger records produced by the import pipeline.

Data flows through these types in order:
1. Raw rows (``RawRow``) from a format parser or the OCR extractor
2. Validated rows (``ValidatedRow``) and row errors (``RowError``)
3. Ledger entries (``LedgerEntry``) ready for the caller's persistence layer
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .schema import DocumentType

RawRow = dict[str, Any]
"""Source column name to scalar value (str, number, bool, date or None)."""


# =============================================================================
# PARSING
# =============================================================================


class ParseResult(BaseModel):
    """Outcome of decoding one uploaded file into raw rows."""

    success: bool
    rows: list[RawRow] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    total_row_count: int = 0
    preview: list[RawRow] = Field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_rows(
        cls, rows: list[RawRow], columns: list[str], preview_rows: int = 5
    ) -> "ParseResult":
        """Build a successful result, keeping only a short preview prefix."""
        return cls(
            success=True,
            rows=rows,
            columns=columns,
            total_row_count=len(rows),
            preview=[dict(r) for r in rows[:preview_rows]],
        )

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        """Build a failed result carrying a single descriptive error."""
        return cls(success=False, error=error)


# =============================================================================
# VALIDATION
# =============================================================================


class RowError(BaseModel):
    """A single field-level validation problem.

    Row numbers are 1-based positions in the parsed row sequence so they can
    be matched against the uploaded file.
    """

    model_config = ConfigDict(frozen=True)

    row: int = Field(ge=1)
    field: str
    message: str
    value: Any = None


class ValidatedRow(BaseModel):
    """A fully validated row of typed values keyed by target field name."""

    model_config = ConfigDict(frozen=True)

    row_number: int = Field(ge=1)
    values: dict[str, Any]
    source: RawRow = Field(description="Originating raw row, kept for audit")

    def get(self, name: str, default: Any = None) -> Any:
        """Return a typed value by target field name."""
        return self.values.get(name, default)


class ValidationResult(BaseModel):
    """Validated rows and the itemized errors of the rows that failed."""

    rows: list[ValidatedRow] = Field(default_factory=list)
    errors: list[RowError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return not self.errors

    @computed_field  # type: ignore[prop-decorator]
    @property
    def processed_count(self) -> int:
        return len(self.rows)


# =============================================================================
# LEDGER
# =============================================================================


class LedgerCategory(str, Enum):
    """Income ledger categories derived from the document type."""

    WAGE_INCOME = "wage income"
    NONEMPLOYEE_COMPENSATION = "nonemployee compensation"
    BUSINESS_INCOME = "business income"
    INTEREST = "interest income"
    DIVIDENDS = "dividend income"
    UNEMPLOYMENT = "unemployment compensation"
    RETIREMENT_DISTRIBUTIONS = "retirement distributions"
    PROCEEDS_FROM_BROKER = "proceeds from broker"
    PROCEEDS_FROM_REAL_ESTATE = "proceeds from real estate"
    ACQUISITION_ABANDONMENT_SECURED_PROPERTY = "acquisition or abandonment of secured property"
    CANCELLATION_OF_DEBT = "cancellation of debt"
    ORIGINAL_ISSUE_DISCOUNT = "original issue discount"
    TAXABLE_PATRONAGE_DIVIDENDS = "taxable patronage dividends"
    QUALIFIED_EDUCATION_EXPENSES = "qualified education program payments"
    ARCHER_MSA_DISTRIBUTIONS = "archer msa distributions"
    OTHER_INCOME = "other income"


class AmountSource(str, Enum):
    """How a ledger entry amount was obtained."""

    DESIGNATED = "designated"
    BEST_EFFORT = "best_effort"
    UNRESOLVED = "unresolved"


class LedgerEntry(BaseModel):
    """An income ledger entry created from one validated row.

    Entries are immutable once created and are owned by the caller's
    persistence layer.
    """

    model_config = ConfigDict(frozen=True)

    document_type: DocumentType
    category: LedgerCategory
    amount: Decimal = Field(ge=0)
    amount_source: AmountSource
    counterparty_name: str = ""
    counterparty_tin: str = ""
    employer_name: str = ""
    employer_ein: str = ""
    payer_name: str = ""
    payer_tin: str = ""
    description: str = ""
    row_number: int = Field(ge=1, description="Position of the originating validated row")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def amount_resolved(self) -> bool:
        """False when the amount could not be read and was recorded as zero."""
        return self.amount_source != AmountSource.UNRESOLVED


class PipelineResult(BaseModel):
    """Outcome of mapping, validating and converting a batch of rows."""

    success: bool
    processed_count: int = 0
    errors: list[RowError] = Field(default_factory=list)
    ledger_entries: list[LedgerEntry] = Field(default_factory=list)

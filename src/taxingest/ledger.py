"""Conversion of validated rows into income ledger entries.

Every validated row yields exactly one ``LedgerEntry``. The amount comes
from the document type's designated amount field; document types without
one use a best-effort rule (first positive numeric value of the row), and
an amount that cannot be read is recorded as zero and flagged unresolved.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog

from .models.records import AmountSource, LedgerCategory, LedgerEntry, ValidatedRow
from .models.schema import DocumentType

logger = structlog.get_logger()


CATEGORY_BY_DOCUMENT_TYPE: dict[DocumentType, LedgerCategory] = {
    DocumentType.W2: LedgerCategory.WAGE_INCOME,
    DocumentType.W2_CORRECTED: LedgerCategory.WAGE_INCOME,
    DocumentType.W3: LedgerCategory.WAGE_INCOME,
    DocumentType.FORM_1099_NEC: LedgerCategory.NONEMPLOYEE_COMPENSATION,
    DocumentType.FORM_1099_MISC: LedgerCategory.BUSINESS_INCOME,
    DocumentType.FORM_1099_INT: LedgerCategory.INTEREST,
    DocumentType.FORM_1099_DIV: LedgerCategory.DIVIDENDS,
    DocumentType.FORM_1099_G: LedgerCategory.UNEMPLOYMENT,
    DocumentType.FORM_1099_R: LedgerCategory.RETIREMENT_DISTRIBUTIONS,
    DocumentType.FORM_1099_K: LedgerCategory.OTHER_INCOME,
    DocumentType.FORM_1099_B: LedgerCategory.PROCEEDS_FROM_BROKER,
    DocumentType.FORM_1099_S: LedgerCategory.PROCEEDS_FROM_REAL_ESTATE,
    DocumentType.FORM_1099_A: LedgerCategory.ACQUISITION_ABANDONMENT_SECURED_PROPERTY,
    DocumentType.FORM_1099_C: LedgerCategory.CANCELLATION_OF_DEBT,
    DocumentType.FORM_1099_OID: LedgerCategory.ORIGINAL_ISSUE_DISCOUNT,
    DocumentType.FORM_1099_PATR: LedgerCategory.TAXABLE_PATRONAGE_DIVIDENDS,
    DocumentType.FORM_1099_Q: LedgerCategory.QUALIFIED_EDUCATION_EXPENSES,
    DocumentType.FORM_1099_SA: LedgerCategory.ARCHER_MSA_DISTRIBUTIONS,
    DocumentType.FORM_1098: LedgerCategory.OTHER_INCOME,
    DocumentType.FORM_1098_E: LedgerCategory.OTHER_INCOME,
    DocumentType.FORM_1098_T: LedgerCategory.OTHER_INCOME,
    DocumentType.FORM_5498: LedgerCategory.OTHER_INCOME,
    DocumentType.SCHEDULE_K1: LedgerCategory.BUSINESS_INCOME,
    DocumentType.OTHER_TAX_DOCUMENT: LedgerCategory.OTHER_INCOME,
    DocumentType.RECEIPT: LedgerCategory.OTHER_INCOME,
    DocumentType.STATEMENT: LedgerCategory.OTHER_INCOME,
    DocumentType.UNKNOWN: LedgerCategory.OTHER_INCOME,
}

# Field holding the entry amount for each document type that has one
AMOUNT_FIELDS: dict[DocumentType, str] = {
    DocumentType.W2: "wages",
    DocumentType.W2_CORRECTED: "wages",
    DocumentType.W3: "wages",
    DocumentType.FORM_1099_NEC: "nonemployeeCompensation",
    DocumentType.FORM_1099_INT: "interestIncome",
    DocumentType.FORM_1099_DIV: "totalOrdinaryDividends",
    DocumentType.FORM_1099_G: "unemploymentCompensation",
    DocumentType.FORM_1099_R: "grossDistribution",
}


def category_for(document_type: DocumentType) -> LedgerCategory:
    """Ledger category of a document type."""
    return CATEGORY_BY_DOCUMENT_TYPE.get(document_type, LedgerCategory.OTHER_INCOME)


def _as_amount(value: Any) -> Optional[Decimal]:
    """Numeric value as a Decimal; None for anything non-numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        amount = Decimal(str(value))
        return amount if amount.is_finite() else None
    return None


def _text(values: dict[str, Any], name: str) -> str:
    value = values.get(name)
    return str(value).strip() if value is not None else ""


def resolve_amount(row: ValidatedRow, document_type: DocumentType) -> tuple[Decimal, AmountSource]:
    """Pick the entry amount of a row and report how it was found."""
    field_name = AMOUNT_FIELDS.get(document_type)

    if field_name is not None:
        amount = _as_amount(row.get(field_name))
        if amount is not None and amount >= 0:
            return amount, AmountSource.DESIGNATED
        logger.warning(
            "ledger_amount_unresolved",
            document_type=document_type.value,
            row=row.row_number,
            field=field_name,
        )
        return Decimal("0"), AmountSource.UNRESOLVED

    for name, value in row.values.items():
        amount = _as_amount(value)
        if amount is not None and amount > 0:
            logger.warning(
                "ledger_amount_best_effort",
                document_type=document_type.value,
                row=row.row_number,
                field=name,
            )
            return amount, AmountSource.BEST_EFFORT

    logger.warning(
        "ledger_amount_unresolved",
        document_type=document_type.value,
        row=row.row_number,
        field=None,
    )
    return Decimal("0"), AmountSource.UNRESOLVED


def convert_row(row: ValidatedRow, document_type: DocumentType) -> LedgerEntry:
    """Build the ledger entry for one validated row.

    Counterparty fields prefer employer values on wage statements and payer
    values on every other document type, falling back to the other pair.
    """
    values = row.values
    employer_name = _text(values, "employerName")
    employer_ein = _text(values, "employerEIN")
    payer_name = _text(values, "payerName")
    payer_tin = _text(values, "payerTIN")

    if document_type.is_wage_statement:
        counterparty_name = employer_name or payer_name
        counterparty_tin = employer_ein or payer_tin
    else:
        counterparty_name = payer_name or employer_name
        counterparty_tin = payer_tin or employer_ein

    amount, amount_source = resolve_amount(row, document_type)

    return LedgerEntry(
        document_type=document_type,
        category=category_for(document_type),
        amount=amount,
        amount_source=amount_source,
        counterparty_name=counterparty_name,
        counterparty_tin=counterparty_tin,
        employer_name=employer_name,
        employer_ein=employer_ein,
        payer_name=payer_name,
        payer_tin=payer_tin,
        description=f"Imported from {document_type.value}",
        row_number=row.row_number,
    )


def convert_rows(rows: Iterable[ValidatedRow], document_type: DocumentType) -> list[LedgerEntry]:
    """Convert validated rows one-for-one into ledger entries."""
    entries = [convert_row(row, document_type) for row in rows]
    logger.info(
        "ledger_entries_created",
        document_type=document_type.value,
        count=len(entries),
        unresolved=sum(1 for e in entries if not e.amount_resolved),
    )
    return entries


__all__ = [
    "AMOUNT_FIELDS",
    "CATEGORY_BY_DOCUMENT_TYPE",
    "category_for",
    "convert_row",
    "convert_rows",
    "resolve_amount",
]

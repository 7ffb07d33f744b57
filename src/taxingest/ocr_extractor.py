"""Field extraction from scanned tax documents.

Combines the structured guesses of a document-intelligence backend with
regex pattern extraction over the OCR text:

1. Backend fields are renamed to canonical field names.
2. When fewer than ``min_backend_fields`` values were supplied and OCR text
   is available, pattern extraction fills in the missing fields. Backend
   values always win over pattern values.
3. When nothing at all was recovered but text exists, the result is a
   text-only record flagged for manual review.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx
import structlog

from .backends import BackendResponse, ExtractionBackend, LocalTextBackend
from .catalogue import load_catalogue
from .config import IngestSettings
from .exceptions import ExtractionError, MalformedFileError
from .models.extraction import (
    Confidence,
    ConfidenceLevel,
    ExtractionResult,
    FieldSource,
    ManualReview,
    ProgressEvent,
    ProgressStep,
    StructuredFields,
)
from .models.schema import DocumentType

logger = structlog.get_logger()

ProgressCallback = Callable[[ProgressEvent], None]


# =============================================================================
# CANONICAL FIELD NAMES
# =============================================================================

# Backend and legacy identifiers mapped to catalogue field names
BACKEND_FIELD_ALIASES: dict[str, str] = {
    # Wage statements
    "Employee": "employeeName",
    "EmployeeName": "employeeName",
    "Employee.Name": "employeeName",
    "employee_name": "employeeName",
    "Employer": "employerName",
    "EmployerName": "employerName",
    "Employer.Name": "employerName",
    "employer_name": "employerName",
    "EmployerAddress": "employerAddress",
    "Employer.Address": "employerAddress",
    "EmployerAddress.StreetAddress": "employerAddress",
    "EmployeeAddress": "employeeAddress",
    "Employee.Address": "employeeAddress",
    "SSN": "employeeSSN",
    "EmployeeSSN": "employeeSSN",
    "Employee.SSN": "employeeSSN",
    "Employee.SocialSecurityNumber": "employeeSSN",
    "employee_ssn": "employeeSSN",
    "EIN": "employerEIN",
    "EmployerEIN": "employerEIN",
    "Employer.EIN": "employerEIN",
    "Employer.IdNumber": "employerEIN",
    "EmployerIdNumber": "employerEIN",
    "employer_ein": "employerEIN",
    "W2FormYear": "taxYear",
    "TaxYear": "taxYear",
    "Wages": "wages",
    "WagesTipsOtherCompensation": "wages",
    "wages_tips_other_compensation": "wages",
    "FederalIncomeTaxWithheld": "federalTaxWithheld",
    "federalIncomeTaxWithheld": "federalTaxWithheld",
    "federal_income_tax_withheld": "federalTaxWithheld",
    "federal_tax_withheld": "federalTaxWithheld",
    "SocialSecurityWages": "socialSecurityWages",
    "SocialSecurityTaxWithheld": "socialSecurityTaxWithheld",
    "SocialSecurityTips": "socialSecurityTips",
    "MedicareWagesAndTips": "medicareWages",
    "MedicareTaxWithheld": "medicareTaxWithheld",
    "AllocatedTips": "allocatedTips",
    "DependentCareBenefits": "dependentCareBenefits",
    "StateWagesTipsEtc": "stateWages",
    "StateIncomeTax": "stateIncomeTax",
    "LocalWagesTipsEtc": "localWages",
    "LocalIncomeTax": "localIncomeTax",
    # Information returns
    "Payer": "payerName",
    "PayerName": "payerName",
    "Payer.Name": "payerName",
    "payer_name": "payerName",
    "PayerTIN": "payerTIN",
    "PayerTaxIdNumber": "payerTIN",
    "Payer.TIN": "payerTIN",
    "payer_tin": "payerTIN",
    "Recipient": "recipientName",
    "RecipientName": "recipientName",
    "Recipient.Name": "recipientName",
    "recipient_name": "recipientName",
    "RecipientTIN": "recipientTIN",
    "RecipientTaxIdNumber": "recipientTIN",
    "Recipient.TIN": "recipientTIN",
    "recipient_tin": "recipientTIN",
    "NonemployeeCompensation": "nonemployeeCompensation",
    "nonemployee_compensation": "nonemployeeCompensation",
    "InterestIncome": "interestIncome",
    "interest_income": "interestIncome",
    "EarlyWithdrawalPenalty": "earlyWithdrawalPenalty",
    "TaxExemptInterest": "taxExemptInterest",
    "OrdinaryDividends": "totalOrdinaryDividends",
    "TotalOrdinaryDividends": "totalOrdinaryDividends",
    "ordinaryDividends": "totalOrdinaryDividends",
    "dividendIncome": "totalOrdinaryDividends",
    "ordinary_dividends": "totalOrdinaryDividends",
    "QualifiedDividends": "qualifiedDividends",
    "qualified_dividends": "qualifiedDividends",
    "TotalCapitalGainDistributions": "totalCapitalGainDistributions",
    "UnemploymentCompensation": "unemploymentCompensation",
    "GrossDistribution": "grossDistribution",
    "TaxableAmount": "taxableAmount",
    "DistributionCode": "distributionCode",
}


def _catalogue_field_names() -> set[str]:
    catalogue = load_catalogue()
    return {
        name
        for document_type in catalogue.document_types
        for name in catalogue.get(document_type).field_names
    }


CANONICAL_FIELD_NAMES: dict[str, str] = {
    **{name: name for name in sorted(_catalogue_field_names())},
    **BACKEND_FIELD_ALIASES,
}


def canonicalize_field_name(key: str) -> str:
    """Map a backend field identifier to its canonical name.

    Unknown identifiers pass through lower-cased.
    """
    return CANONICAL_FIELD_NAMES.get(key, key.lower())


# =============================================================================
# FALLBACK PATTERN EXTRACTION
# =============================================================================

# Label separator followed by an amount such as 45,200.00 or 5100
_AMOUNT = r'[\s:|]*\$?\s*(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)'

MONEY_FIELD_PATTERNS: dict[str, list[str]] = {
    'wages': [
        r'(?i)wages,?\s*tips,?\s*(?:and\s*)?other\s*comp(?:ensation)?' + _AMOUNT,
        r'(?i)\btotal\s+wages\b' + _AMOUNT,
    ],
    'federalTaxWithheld': [
        r'(?i)federal\s*income\s*tax\s*withheld' + _AMOUNT,
        r'(?i)federal\s*tax\s*withheld' + _AMOUNT,
    ],
    'interestIncome': [
        r'(?i)interest\s*income' + _AMOUNT,
    ],
    'totalOrdinaryDividends': [
        r'(?i)total\s*ordinary\s*dividends' + _AMOUNT,
        r'(?i)ordinary\s*dividends' + _AMOUNT,
    ],
    'nonemployeeCompensation': [
        r'(?i)nonemployee\s*compensation' + _AMOUNT,
    ],
}

# Inclusive (min, max) bounds; matches outside are discarded
AMOUNT_BOUNDS: dict[str, tuple[Decimal, Decimal]] = {
    'wages': (Decimal('1000'), Decimal('1000000')),
    'federalTaxWithheld': (Decimal('0'), Decimal('100000')),
    'interestIncome': (Decimal('0'), Decimal('1000000')),
    'totalOrdinaryDividends': (Decimal('0'), Decimal('1000000')),
    'nonemployeeCompensation': (Decimal('1'), Decimal('1000000')),
}

# Two capitalized words; the lookahead lets windows overlap
PERSON_NAME_PATTERN = re.compile(r'(?=\b([A-Z][a-z]{2,15})\s+([A-Z][a-z]{2,15})\b)')

ENTITY_SUFFIXES = (
    'Company', 'Corporation', 'Corp', 'LLC', 'Inc', 'Group', 'Associates',
    'Partners', 'Enterprises', 'Solutions', 'Services', 'Industries', 'Bank',
)

# Length bounds of an organization phrase, entity suffix included
ORGANIZATION_MIN_CHARS = 5
ORGANIZATION_MAX_CHARS = 40

ORGANIZATION_PATTERN = re.compile(
    r"(?=\b([A-Z][A-Za-z ,.'&-]{0,38}?\b(?i:" + '|'.join(ENTITY_SUFFIXES) + r"))\b)"
)

EIN_PATTERN = re.compile(r'\b(\d{2}-\d{7})\b')
SSN_PATTERN = re.compile(r'\b(\d{3}-\d{2}-\d{4})\b')

# Form boilerplate that looks like a capitalized name
NAME_STOP_WORDS = frozenset({
    'Employee', 'Employer', 'Federal', 'Social', 'Security', 'Medicare',
    'Control', 'Wages', 'Wage', 'Income', 'State', 'Local', 'Form', 'Copy',
    'Statement', 'Department', 'Treasury', 'Internal', 'Revenue', 'Service',
    'Recipient', 'Payer', 'Tax', 'Withheld', 'Interest', 'Dividends',
    'Ordinary', 'Qualified', 'Total', 'Nonemployee', 'Compensation', 'Other',
    'Number', 'Identification', 'Address', 'Name', 'Tips', 'Box', 'Year',
    *ENTITY_SUFFIXES,
})

_INFORMATION_RETURN_TARGETS = {
    'person': 'recipientName',
    'organization': 'payerName',
    'ein': 'payerTIN',
    'ssn': 'recipientTIN',
}

_WAGE_STATEMENT_TARGETS = {
    'person': 'employeeName',
    'organization': 'employerName',
    'ein': 'employerEIN',
    'ssn': 'employeeSSN',
}


def _parse_amount(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value.replace(',', ''))
    except InvalidOperation:
        return None


def _format_amount(amount: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    return format(amount.normalize(), 'f')


def _find_amount(field_name: str, text: str) -> Optional[str]:
    low, high = AMOUNT_BOUNDS[field_name]
    for pattern in MONEY_FIELD_PATTERNS[field_name]:
        match = re.search(pattern, text)
        if not match:
            continue
        amount = _parse_amount(match.group(1))
        if amount is None:
            continue
        if low <= amount <= high:
            return _format_amount(amount)
        logger.warning(
            "fallback_amount_out_of_bounds",
            field=field_name,
            low=str(low),
            high=str(high),
        )
    return None


def _find_person_name(text: str, organization: Optional[str] = None) -> Optional[str]:
    for match in PERSON_NAME_PATTERN.finditer(text):
        first, last = match.group(1), match.group(2)
        if first in NAME_STOP_WORDS or last in NAME_STOP_WORDS:
            continue
        name = f"{first} {last}"
        if organization and name in organization:
            continue
        return name
    return None


def _find_organization(text: str) -> Optional[str]:
    for match in ORGANIZATION_PATTERN.finditer(text):
        candidate = match.group(1).strip()
        if not ORGANIZATION_MIN_CHARS <= len(candidate) <= ORGANIZATION_MAX_CHARS:
            continue
        if candidate.split()[0].rstrip(",.'") not in NAME_STOP_WORDS:
            return candidate
    return None


def extract_fallback_fields(text: str, document_type: DocumentType) -> dict[str, str]:
    """Recover tax fields from OCR text with regex patterns.

    Names and identifiers land on payer/recipient fields for information
    returns and on employer/employee fields otherwise. Monetary values are
    kept only within their field's bounds.

    Args:
        text: Full OCR text of the document.
        document_type: Type of the document, used to pick target fields.

    Returns:
        Canonical field name to string value.
    """
    targets = (
        _INFORMATION_RETURN_TARGETS
        if document_type.is_information_return
        else _WAGE_STATEMENT_TARGETS
    )
    fields: dict[str, str] = {}

    organization = _find_organization(text)
    person = _find_person_name(text, organization)
    if person:
        fields[targets['person']] = person
    if organization:
        fields[targets['organization']] = organization

    for field_name in MONEY_FIELD_PATTERNS:
        amount = _find_amount(field_name, text)
        if amount is not None:
            fields[field_name] = amount

    ein = EIN_PATTERN.search(text)
    if ein:
        fields[targets['ein']] = ein.group(1)

    ssn = SSN_PATTERN.search(text)
    if ssn:
        fields[targets['ssn']] = ssn.group(1)

    logger.debug("fallback_fields_extracted", fields=sorted(fields))
    return fields


# =============================================================================
# EXTRACTOR
# =============================================================================

class DocumentExtractor:
    """Produces one ``ExtractionResult`` per scanned document.

    Args:
        backend: Primary document-intelligence backend. When omitted the
            local text backend is used directly.
        text_backend: Backend used when the primary one fails.
        settings: Thresholds and confidence defaults.
    """

    def __init__(
        self,
        backend: Optional[ExtractionBackend] = None,
        text_backend: Optional[ExtractionBackend] = None,
        settings: Optional[IngestSettings] = None,
    ) -> None:
        self.settings = settings or IngestSettings()
        self.text_backend = text_backend or LocalTextBackend()
        self.backend = backend or self.text_backend

    def extract(
        self,
        content: bytes,
        document_type: DocumentType,
        *,
        filename: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ExtractionResult:
        """Extract canonical tax fields from document bytes.

        Raises:
            MalformedFileError: If the document is empty or unreadable.
            ExtractionError: If neither fields nor text could be recovered.
        """
        def emit(step: ProgressStep, message: str, **details) -> None:
            if progress is not None:
                progress(ProgressEvent(step=step, message=message, details=details))

        if not content:
            raise MalformedFileError("Document is empty", filename=filename, file_kind="document")

        log = logger.bind(filename=filename, document_type=document_type.value)
        emit(ProgressStep.STARTED, "Starting document extraction", backend=self.backend.name)

        response, backend_error = self._analyze(content, document_type, emit)
        log.info(
            "backend_response_received",
            backend_fields=len(response.structured_fields),
            text_chars=len(response.ocr_text),
            degraded=backend_error is not None,
        )

        base: dict[str, str] = {}
        for key, value in response.structured_fields.items():
            value = str(value).strip()
            if value:
                base.setdefault(canonicalize_field_name(key), value)

        text = response.ocr_text or ""
        added: dict[str, str] = {}
        if len(base) < self.settings.min_backend_fields and text.strip():
            fallback = extract_fallback_fields(text, document_type)
            added = {k: v for k, v in fallback.items() if k not in base}
            log.info("fallback_applied", recovered=sorted(added))
            emit(
                ProgressStep.FALLBACK_APPLIED,
                f"Pattern extraction recovered {len(added)} fields",
                fields=sorted(added),
            )

        fields = {**base, **added}

        if fields:
            if base:
                source = FieldSource.MERGED if added else FieldSource.BACKEND
                confidence = Confidence(
                    score=response.confidence or self.settings.default_backend_confidence,
                    level=ConfidenceLevel.HIGH,
                )
            else:
                source = FieldSource.FALLBACK
                confidence = Confidence(
                    score=self.settings.fallback_confidence,
                    level=ConfidenceLevel.MEDIUM,
                )
            payload = StructuredFields(
                fields=fields,
                source=source,
                backend_fields=sorted(base),
                fallback_fields=sorted(added),
            )
        elif text.strip():
            log.warning("extraction_text_only", text_chars=len(text))
            payload = ManualReview(ocr_excerpt=text[: self.settings.ocr_excerpt_chars])
            confidence = Confidence(score=0.0, level=ConfidenceLevel.LOW)
        else:
            raise ExtractionError(
                "No text or fields could be recovered from the document",
                backend=self.backend.name,
                document_type=document_type.value,
                details={"backend_error": backend_error} if backend_error else None,
                recoverable=False,
            )

        result = ExtractionResult(
            document_type=document_type,
            ocr_text=text,
            payload=payload,
            confidence=confidence,
            backend_error=backend_error,
        )
        log.info(
            "document_extracted",
            fields=sorted(result.extracted_fields),
            confidence=confidence.level.value,
            requires_review=result.requires_review,
        )
        emit(
            ProgressStep.COMPLETED,
            "Document extraction complete",
            confidence=confidence.level.value,
        )
        return result

    def _analyze(
        self,
        content: bytes,
        document_type: DocumentType,
        emit: Callable[..., None],
    ) -> tuple[BackendResponse, Optional[str]]:
        """Run the primary backend, degrading to the text backend on failure."""
        try:
            response = self.backend.analyze(content, document_type)
        except (ExtractionError, httpx.HTTPError) as e:
            if self.backend is self.text_backend:
                raise
            logger.warning(
                "backend_failed",
                backend=self.backend.name,
                document_type=document_type.value,
                error=str(e),
            )
            emit(ProgressStep.BACKEND_FAILED, f"Backend failed: {e}", backend=self.backend.name)
            return self.text_backend.analyze(content, document_type), str(e)

        emit(
            ProgressStep.BACKEND_COMPLETE,
            "Backend analysis complete",
            backend=self.backend.name,
            fields=len(response.structured_fields),
        )
        return response, None


__all__ = [
    "BACKEND_FIELD_ALIASES",
    "CANONICAL_FIELD_NAMES",
    "MONEY_FIELD_PATTERNS",
    "AMOUNT_BOUNDS",
    "DocumentExtractor",
    "ProgressCallback",
    "canonicalize_field_name",
    "extract_fallback_fields",
]

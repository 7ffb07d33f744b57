"""Row validation and type coercion against a form schema.

Validation never raises for bad data: every problem becomes a ``RowError``
and the offending row is left out of the typed output. Rows are all-or-
nothing, so a validated row never carries a partially coerced value set.
"""

import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Union

import structlog

from .exceptions import MappingError
from .field_mapper import FieldMapping
from .models.records import RawRow, RowError, ValidatedRow, ValidationResult
from .models.schema import FieldDefinition, FieldType, FormSchema

logger = structlog.get_logger()

TRUE_STRINGS = frozenset({"true", "yes", "1"})

DATE_FORMATS = [
    '%Y-%m-%d',
    '%m/%d/%Y',
    '%m-%d-%Y',
    '%Y/%m/%d',
    '%B %d, %Y',
    '%B %d %Y',
    '%b %d, %Y',
    '%b %d %Y',
]

# Currency symbols, thousands separators and whitespace
_DECIMAL_NOISE = re.compile(r'[$€£¥,\s]')


def is_empty(value: Any) -> bool:
    """None, or a string with nothing but whitespace."""
    return value is None or (isinstance(value, str) and not value.strip())


# =============================================================================
# COERCION
# =============================================================================

def _finite_decimal(value: Any) -> Decimal:
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidOperation(value)
    amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    if not amount.is_finite():
        raise InvalidOperation(value)
    return amount


def _to_number(value: Any, field: FieldDefinition) -> Union[int, Decimal]:
    if isinstance(value, bool):
        raise ValueError(f"'{field.label}' must be a number")
    try:
        amount = _finite_decimal(value)
    except (InvalidOperation, ValueError):
        raise ValueError(f"'{field.label}' must be a number") from None
    if amount == amount.to_integral_value():
        return int(amount)
    return amount


def _to_decimal(value: Any, field: FieldDefinition) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"'{field.label}' must be a valid decimal number")
    if isinstance(value, str):
        value = _DECIMAL_NOISE.sub('', value)
    try:
        return _finite_decimal(value)
    except (InvalidOperation, ValueError):
        raise ValueError(f"'{field.label}' must be a valid decimal number") from None


def _to_boolean(value: Any) -> bool:
    if value is True:
        return True
    return str(value).strip().lower() in TRUE_STRINGS


def _to_date(value: Any, field: FieldDefinition) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ValueError(f"'{field.label}' must be a valid date") from None


def coerce_value(value: Any, field: FieldDefinition) -> Any:
    """Convert a non-empty raw value to the field's declared type.

    Returns:
        ``int`` or ``Decimal`` for number, ``Decimal`` for decimal, ``bool``,
        ``datetime.date``, or a trimmed ``str`` for text and select fields.

    Raises:
        ValueError: With a user-facing message when the value cannot be
            converted.
    """
    if field.type == FieldType.NUMBER:
        return _to_number(value, field)
    if field.type == FieldType.DECIMAL:
        return _to_decimal(value, field)
    if field.type == FieldType.BOOLEAN:
        return _to_boolean(value)
    if field.type == FieldType.DATE:
        return _to_date(value, field)

    text = value.isoformat() if isinstance(value, date) else str(value)
    text = text.strip()
    if field.type == FieldType.SELECT and field.options and text not in field.options:
        logger.debug("select_value_not_in_options", field=field.name)
    return text


def check_constraints(value: Any, field: FieldDefinition) -> None:
    """Enforce the optional min/max and pattern constraints of a field.

    Raises:
        ValueError: If a constraint is violated.
    """
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        if field.min_value is not None and value < field.min_value:
            raise ValueError(f"'{field.label}' must be at least {field.min_value}")
        if field.max_value is not None and value > field.max_value:
            raise ValueError(f"'{field.label}' must be at most {field.max_value}")
    if field.pattern and isinstance(value, str) and not re.fullmatch(field.pattern, value):
        raise ValueError(f"'{field.label}' does not match the expected format")


# =============================================================================
# ROW VALIDATION
# =============================================================================

def _mapping_pairs(mapping: Union[FieldMapping, dict[str, str]]) -> dict[str, str]:
    """Source to target pairs, rejecting targets claimed by two columns."""
    if isinstance(mapping, FieldMapping):
        return mapping.as_dict()

    pairs = dict(mapping)
    holders: dict[str, str] = {}
    for source, target in pairs.items():
        holder = holders.setdefault(target, source)
        if holder != source:
            raise MappingError(
                f"Target field '{target}' is mapped from both '{holder}' and '{source}'",
                source=source,
                target=target,
                conflicting_source=holder,
            )
    return pairs


def validate_rows(
    rows: Iterable[RawRow],
    schema: FormSchema,
    mapping: Union[FieldMapping, dict[str, str]],
) -> ValidationResult:
    """Validate and coerce raw rows through a field mapping.

    Only mapped (source, target) pairs are examined; targets that are not
    schema fields are skipped. Row numbers are 1-based positions in ``rows``.

    Args:
        rows: Raw rows from a parser or the OCR extractor.
        schema: Target form schema.
        mapping: Source column to target field mapping.

    Returns:
        ValidationResult with the fully valid rows and every row error.

    Raises:
        MappingError: If two source columns map to the same target field.
    """
    pairs = _mapping_pairs(mapping)
    definitions = [(source, schema.get(target)) for source, target in pairs.items()]
    skipped = [pairs[source] for source, definition in definitions if definition is None]
    if skipped:
        logger.warning("unknown_targets_skipped", document_type=schema.document_type.value, targets=skipped)

    result = ValidationResult()
    for row_number, row in enumerate(rows, start=1):
        values: dict[str, Any] = {}
        row_errors: list[RowError] = []

        for source, definition in definitions:
            if definition is None:
                continue
            raw = row.get(source)

            if is_empty(raw):
                if definition.required:
                    row_errors.append(RowError(
                        row=row_number,
                        field=definition.name,
                        message=f"Required field '{definition.label}' is missing",
                        value=raw,
                    ))
                else:
                    values[definition.name] = None
                continue

            try:
                value = coerce_value(raw, definition)
                check_constraints(value, definition)
            except ValueError as e:
                row_errors.append(RowError(
                    row=row_number, field=definition.name, message=str(e), value=raw
                ))
                continue
            values[definition.name] = value

        if row_errors:
            result.errors.extend(row_errors)
        else:
            result.rows.append(ValidatedRow(row_number=row_number, values=values, source=row))

    logger.info(
        "rows_validated",
        document_type=schema.document_type.value,
        valid=len(result.rows),
        errors=len(result.errors),
    )
    return result


__all__ = [
    "coerce_value",
    "check_constraints",
    "is_empty",
    "validate_rows",
]

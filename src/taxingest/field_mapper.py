"""Source-column to target-field mapping for one form schema.

A ``FieldMapping`` belongs to a single mapping session. It enforces that
every target is a field of the schema and that no two source columns hold
the same target; violations raise ``MappingError`` when the change is made.
"""

import re
from typing import Iterable, Optional

import structlog

from .exceptions import MappingError
from .models.schema import FieldDefinition, FormSchema

logger = structlog.get_logger()


class FieldMapping:
    """Mapping of source column names to target field names.

    Example:
        mapping = FieldMapping(get_schema(DocumentType.W2))
        mapping.set("Employee Name", "employeeName")
        mapping.set("Box 1", "wages")
        mapping.unset("Box 1")
    """

    def __init__(self, schema: FormSchema, initial: Optional[dict[str, str]] = None) -> None:
        self.schema = schema
        self._targets: dict[str, str] = {}
        for source, target in (initial or {}).items():
            self.set(source, target)

    def set(self, source: str, target: str) -> None:
        """Map a source column to a target field, replacing its prior target.

        Raises:
            MappingError: If the target is not a schema field or is already
                held by another source column.
        """
        if target not in self.schema:
            raise MappingError(
                f"'{target}' is not a field of the {self.schema.document_type.value} schema",
                source=source,
                target=target,
            )

        holder = self.source_for(target)
        if holder is not None and holder != source:
            raise MappingError(
                f"Target field '{target}' is already mapped from column '{holder}'",
                source=source,
                target=target,
                conflicting_source=holder,
            )

        self._targets[source] = target

    def unset(self, source: str) -> Optional[str]:
        """Remove the mapping of a source column; returns its former target."""
        return self._targets.pop(source, None)

    def get(self, source: str) -> Optional[str]:
        return self._targets.get(source)

    def source_for(self, target: str) -> Optional[str]:
        """Source column currently mapped to a target field, if any."""
        for source, mapped in self._targets.items():
            if mapped == target:
                return source
        return None

    def as_dict(self) -> dict[str, str]:
        return dict(self._targets)

    def unmapped_targets(self) -> list[str]:
        """Schema fields no source column maps to, in schema order."""
        mapped = set(self._targets.values())
        return [name for name in self.schema.field_names if name not in mapped]

    def missing_required(self) -> list[str]:
        """Required schema fields no source column maps to."""
        mapped = set(self._targets.values())
        return [name for name in self.schema.required_fields if name not in mapped]

    def __contains__(self, source: object) -> bool:
        return source in self._targets

    def __len__(self) -> int:
        return len(self._targets)

    def __repr__(self) -> str:
        return f"FieldMapping({self.schema.document_type.value}, {self._targets!r})"


# =============================================================================
# SUGGESTION
# =============================================================================

def normalize_column(name: str) -> str:
    """Lower-case and drop every non-alphanumeric character."""
    return re.sub(r'[^a-z0-9]', '', name.lower())


def _matches(column: str, field: FieldDefinition) -> bool:
    for candidate in (normalize_column(field.name), normalize_column(field.label)):
        if candidate and (column in candidate or candidate in column):
            return True
    return False


def suggest_mapping(source_columns: Iterable[str], schema: FormSchema) -> FieldMapping:
    """Suggest a mapping by name containment.

    Each column is compared against every schema field's normalized name and
    label; the first field in schema order where either string contains the
    other is chosen. Fields already taken by an earlier column are skipped.
    The result depends only on the inputs.
    """
    mapping = FieldMapping(schema)
    for column in source_columns:
        normalized = normalize_column(column)
        if not normalized:
            continue
        for field in schema.fields:
            if mapping.source_for(field.name) is not None:
                continue
            if _matches(normalized, field):
                mapping.set(column, field.name)
                break

    logger.info(
        "mapping_suggested",
        document_type=schema.document_type.value,
        mapped=len(mapping),
        missing_required=mapping.missing_required(),
    )
    return mapping


__all__ = [
    "FieldMapping",
    "normalize_column",
    "suggest_mapping",
]

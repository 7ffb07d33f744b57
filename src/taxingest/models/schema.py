"""Target schema types for tax form imports.

A form schema is the fixed, ordered list of fields one tax document type can
carry. Schemas are data: they are loaded from the bundled catalogue file by
``taxingest.catalogue`` and are immutable once loaded.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DocumentType(str, Enum):
    """Tax document types recognised by the import pipeline."""

    W2 = "W2"
    W2_CORRECTED = "W2_CORRECTED"
    W3 = "W3"
    FORM_1099_INT = "FORM_1099_INT"
    FORM_1099_DIV = "FORM_1099_DIV"
    FORM_1099_MISC = "FORM_1099_MISC"
    FORM_1099_NEC = "FORM_1099_NEC"
    FORM_1099_R = "FORM_1099_R"
    FORM_1099_G = "FORM_1099_G"
    FORM_1099_K = "FORM_1099_K"
    FORM_1099_B = "FORM_1099_B"
    FORM_1099_S = "FORM_1099_S"
    FORM_1099_A = "FORM_1099_A"
    FORM_1099_C = "FORM_1099_C"
    FORM_1099_OID = "FORM_1099_OID"
    FORM_1099_PATR = "FORM_1099_PATR"
    FORM_1099_Q = "FORM_1099_Q"
    FORM_1099_SA = "FORM_1099_SA"
    FORM_1098 = "FORM_1098"
    FORM_1098_E = "FORM_1098_E"
    FORM_1098_T = "FORM_1098_T"
    FORM_5498 = "FORM_5498"
    SCHEDULE_K1 = "SCHEDULE_K1"
    OTHER_TAX_DOCUMENT = "OTHER_TAX_DOCUMENT"
    RECEIPT = "RECEIPT"
    STATEMENT = "STATEMENT"
    UNKNOWN = "UNKNOWN"

    @property
    def is_wage_statement(self) -> bool:
        """W-2 family documents report an employer rather than a payer."""
        return self in (DocumentType.W2, DocumentType.W2_CORRECTED, DocumentType.W3)

    @property
    def is_information_return(self) -> bool:
        """1099-family documents report a payer and a recipient."""
        return self.value.startswith("FORM_1099")


class FieldType(str, Enum):
    """Value types a form field can declare."""

    TEXT = "text"
    NUMBER = "number"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    SELECT = "select"


class FieldDefinition(BaseModel):
    """A single field of a tax form schema."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1, description="Field identifier, unique per schema")
    label: str = Field(min_length=1, description="Display label as printed on the form")
    type: FieldType = Field(description="Declared value type")
    required: bool = Field(default=False)
    box_number: Optional[str] = Field(
        default=None, alias="boxNumber", description="IRS box or ordinal reference"
    )
    description: Optional[str] = None
    options: Optional[tuple[str, ...]] = Field(
        default=None, description="Allowed choices for select fields (advisory)"
    )
    min_value: Optional[Decimal] = Field(default=None, alias="min")
    max_value: Optional[Decimal] = Field(default=None, alias="max")
    pattern: Optional[str] = Field(
        default=None, description="Regular expression a text value must fully match"
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "FieldDefinition":
        """Reject inverted numeric bounds."""
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(f"Field '{self.name}' has min greater than max")
        return self


class FormSchema(BaseModel):
    """Ordered field definitions for one document type."""

    model_config = ConfigDict(frozen=True)

    document_type: DocumentType
    description: str = ""
    fields: tuple[FieldDefinition, ...]
    permissive: bool = Field(
        default=False, description="Schema intentionally has no required field"
    )

    @field_validator("fields")
    @classmethod
    def unique_names(cls, v: tuple[FieldDefinition, ...]) -> tuple[FieldDefinition, ...]:
        """Field names must be unique within a schema."""
        seen: set[str] = set()
        for definition in v:
            if definition.name in seen:
                raise ValueError(f"Duplicate field name: {definition.name}")
            seen.add(definition.name)
        return v

    @model_validator(mode="after")
    def has_required_field(self) -> "FormSchema":
        """At least one field is required unless the schema is permissive."""
        if not self.permissive and not any(f.required for f in self.fields):
            raise ValueError(
                f"Schema {self.document_type.value} has no required field "
                "and is not marked permissive"
            )
        return self

    @property
    def field_names(self) -> list[str]:
        """Field names in declaration order."""
        return [f.name for f in self.fields]

    @property
    def required_fields(self) -> list[str]:
        """Names of required fields in declaration order."""
        return [f.name for f in self.fields if f.required]

    def get(self, name: str) -> Optional[FieldDefinition]:
        """Look up a field definition by name."""
        for definition in self.fields:
            if definition.name == name:
                return definition
        return None

    def __contains__(self, name: object) -> bool:
        return any(f.name == name for f in self.fields)

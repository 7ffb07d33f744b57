"""Target schema catalogue.

The catalogue is a versioned data table (``data/form_templates.json``) keyed
by document type. It is parsed and validated on first use and cached for the
lifetime of the process.
"""

import json
import re
from functools import lru_cache
from importlib import resources
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from .exceptions import CatalogueError
from .models.schema import DocumentType, FieldDefinition, FormSchema

logger = structlog.get_logger()

CATALOGUE_RESOURCE = "form_templates.json"


class SchemaCatalogue(BaseModel):
    """Immutable mapping of document type to form schema."""

    model_config = ConfigDict(frozen=True)

    version: str
    schemas: dict[DocumentType, FormSchema]
    descriptions: dict[DocumentType, str]

    def get(self, document_type: DocumentType) -> FormSchema:
        """Return the schema for a document type.

        Raises:
            CatalogueError: If the catalogue has no schema for the type.
        """
        try:
            return self.schemas[document_type]
        except KeyError:
            raise CatalogueError(
                f"No form schema defined for document type: {document_type.value}",
                details={"document_type": document_type.value, "version": self.version},
            ) from None

    @property
    def document_types(self) -> list[DocumentType]:
        """Document types that have a schema, in catalogue order."""
        return list(self.schemas)

    def describe(self, document_type: DocumentType) -> str:
        """Human-readable name of a document type."""
        return self.descriptions.get(document_type, document_type.value)


def parse_catalogue(raw: dict) -> SchemaCatalogue:
    """Validate catalogue data loaded from JSON.

    Raises:
        CatalogueError: If the data does not describe a valid catalogue.
    """
    try:
        version = str(raw["version"])
        schemas: dict[DocumentType, FormSchema] = {}
        for key, entry in raw["schemas"].items():
            document_type = DocumentType(key)
            schemas[document_type] = FormSchema(
                document_type=document_type,
                description=entry.get("description", ""),
                permissive=entry.get("permissive", False),
                fields=tuple(FieldDefinition.model_validate(f) for f in entry["fields"]),
            )
        descriptions = {
            DocumentType(key): text for key, text in raw.get("descriptions", {}).items()
        }
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise CatalogueError(f"Invalid schema catalogue: {e}") from e

    for document_type, schema in schemas.items():
        descriptions.setdefault(document_type, schema.description)

    return SchemaCatalogue(version=version, schemas=schemas, descriptions=descriptions)


@lru_cache(maxsize=1)
def load_catalogue() -> SchemaCatalogue:
    """Load the bundled schema catalogue once per process."""
    source = resources.files("taxingest.data").joinpath(CATALOGUE_RESOURCE)
    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogueError(f"Unable to read schema catalogue: {e}") from e

    catalogue = parse_catalogue(raw)
    logger.info(
        "catalogue_loaded",
        version=catalogue.version,
        document_types=[t.value for t in catalogue.document_types],
    )
    return catalogue


def get_schema(document_type: DocumentType) -> FormSchema:
    """Shortcut for ``load_catalogue().get(document_type)``."""
    return load_catalogue().get(document_type)


# =============================================================================
# DOCUMENT TYPE DETECTION
# =============================================================================

# Text indicators scored per document type; the highest score wins.
DOCUMENT_INDICATORS: dict[DocumentType, list[str]] = {
    DocumentType.W2: [
        r'(?i)form\s+w-?2\b',
        r'(?i)wage\s+and\s+tax\s+statement',
        r'(?i)employer\s+identification\s+number',
        r'(?i)wages,?\s+tips,?\s+other\s+comp',
    ],
    DocumentType.FORM_1099_NEC: [
        r'(?i)form\s+1099-?nec',
        r'(?i)nonemployee\s+compensation',
    ],
    DocumentType.FORM_1099_MISC: [
        r'(?i)form\s+1099-?misc',
        r'(?i)miscellaneous\s+(?:income|information)',
    ],
    DocumentType.FORM_1099_INT: [
        r'(?i)form\s+1099-?int',
        r'(?i)interest\s+income',
        r'(?i)early\s+withdrawal\s+penalty',
    ],
    DocumentType.FORM_1099_DIV: [
        r'(?i)form\s+1099-?div',
        r'(?i)(?:total\s+)?ordinary\s+dividends',
        r'(?i)qualified\s+dividends',
    ],
    DocumentType.FORM_1099_G: [
        r'(?i)form\s+1099-?g\b',
        r'(?i)unemployment\s+compensation',
        r'(?i)certain\s+government\s+payments',
    ],
    DocumentType.FORM_1099_R: [
        r'(?i)form\s+1099-?r\b',
        r'(?i)gross\s+distribution',
        r'(?i)distribution\s+code',
    ],
}

_FILENAME_1099_VARIANTS: list[tuple[str, DocumentType]] = [
    ("int", DocumentType.FORM_1099_INT),
    ("div", DocumentType.FORM_1099_DIV),
    ("nec", DocumentType.FORM_1099_NEC),
    ("misc", DocumentType.FORM_1099_MISC),
]


def detect_document_type(filename: Optional[str] = None, text: Optional[str] = None) -> DocumentType:
    """Guess a document type from its filename, then from its text.

    Filenames mentioning ``w2``/``w-2`` are wage statements; filenames
    mentioning ``1099`` are narrowed by ``int``/``div``/``nec``/``misc`` and
    default to 1099-MISC. Otherwise the text indicators are scored.
    """
    if filename:
        lower_name = filename.lower()
        if "w2" in lower_name or "w-2" in lower_name:
            return DocumentType.W2
        if "1099" in lower_name:
            for marker, document_type in _FILENAME_1099_VARIANTS:
                if marker in lower_name:
                    return document_type
            return DocumentType.FORM_1099_MISC

    if text:
        scores: dict[DocumentType, int] = {}
        for document_type, patterns in DOCUMENT_INDICATORS.items():
            score = sum(1 for pattern in patterns if re.search(pattern, text))
            if score > 0:
                scores[document_type] = score
        if scores:
            return max(scores, key=scores.__getitem__)

    return DocumentType.UNKNOWN


__all__ = [
    "SchemaCatalogue",
    "parse_catalogue",
    "load_catalogue",
    "get_schema",
    "detect_document_type",
]

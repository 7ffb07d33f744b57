"""End-to-end import pipeline.

Wires the stages together for one document at a time:

    upload bytes -> parse or extract -> field mapping -> validation -> ledger

The pipeline holds configuration and backends only; no per-document state
is kept between calls, so one instance can serve many independent imports.

Example:
    pipeline = ImportPipeline()
    parsed = pipeline.ingest(content, "w2_2024.csv")
    mapping = pipeline.suggest(parsed.columns, DocumentType.W2)
    result = pipeline.process(parsed.rows, DocumentType.W2, mapping)
"""

import re
from typing import Optional, Union

import structlog

from . import parsers
from .backends import ExtractionBackend, HttpDocumentBackend
from .catalogue import SchemaCatalogue, detect_document_type, load_catalogue
from .config import IngestSettings
from .exceptions import ExtractionError, InputError, MappingError, UnsupportedFileTypeError
from .field_mapper import FieldMapping, suggest_mapping
from .ledger import convert_rows
from .models.extraction import ExtractionResult
from .models.records import ParseResult, PipelineResult, RawRow
from .models.schema import DocumentType
from .ocr_extractor import DocumentExtractor, ProgressCallback
from .validator import validate_rows

logger = structlog.get_logger()

_MONEY_STRING = re.compile(r'^\$?[\d,]+\.?\d*$')


def clean_extracted_row(row: RawRow) -> RawRow:
    """Drop empty values and strip ``$`` and thousands separators from amounts."""
    cleaned: RawRow = {}
    for key, value in row.items():
        if value is None or value == "":
            continue
        if isinstance(value, str) and _MONEY_STRING.match(value):
            value = value.replace("$", "").replace(",", "")
        cleaned[key] = value
    return cleaned


class ImportPipeline:
    """Facade over parsing, extraction, mapping, validation and conversion.

    Args:
        settings: Pipeline settings; loaded from the environment when omitted.
        backend: Document-intelligence backend. When omitted, an HTTP backend
            is created if one is configured, otherwise documents are read
            through their embedded text only.
        text_backend: Backend used when the primary one fails.
    """

    def __init__(
        self,
        settings: Optional[IngestSettings] = None,
        backend: Optional[ExtractionBackend] = None,
        text_backend: Optional[ExtractionBackend] = None,
    ) -> None:
        self.settings = settings or IngestSettings()
        if backend is None and self.settings.backend.is_configured:
            backend = HttpDocumentBackend(self.settings.backend)
        self.extractor = DocumentExtractor(
            backend=backend,
            text_backend=text_backend,
            settings=self.settings,
        )

    @property
    def catalogue(self) -> SchemaCatalogue:
        return load_catalogue()

    def parse_upload(self, content: bytes, filename: Optional[str] = None) -> ParseResult:
        """Parse a CSV, spreadsheet or JSON upload; failures come back in the result."""
        return parsers.parse_upload(
            content,
            filename,
            max_bytes=self.settings.max_file_size,
            preview_rows=self.settings.preview_rows,
        )

    def extract_document(
        self,
        content: bytes,
        filename: Optional[str] = None,
        document_type: Optional[DocumentType] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ExtractionResult:
        """Extract fields from a scanned document.

        The document type is detected from the filename when not given.

        Raises:
            InputError: If the file is oversize, empty or not a document.
            ExtractionError: If no text or fields could be recovered.
        """
        parsers.check_size(content, self.settings.max_file_size, filename)
        kind = parsers.resolve_file_kind(filename, content)
        if kind != parsers.FileKind.DOCUMENT:
            raise UnsupportedFileTypeError(
                "Tabular files are parsed, not extracted",
                filename=filename,
                file_kind=kind.value,
            )

        if document_type is None:
            document_type = detect_document_type(filename=filename)
            logger.info("document_type_detected", filename=filename, document_type=document_type.value)

        return self.extractor.extract(
            content, document_type, filename=filename, progress=progress
        )

    def ingest(
        self,
        content: bytes,
        filename: Optional[str] = None,
        document_type: Optional[DocumentType] = None,
    ) -> ParseResult:
        """Turn any supported upload into raw rows.

        Tabular files are parsed; documents are extracted into a single row.
        Failures are reported in the result rather than raised.
        """
        try:
            kind = parsers.resolve_file_kind(filename, content)
        except InputError as e:
            logger.warning("upload_rejected", filename=filename, error=e.message)
            return ParseResult.failure(e.message)

        if kind != parsers.FileKind.DOCUMENT:
            return self.parse_upload(content, filename)

        try:
            extraction = self.extract_document(content, filename, document_type)
        except (InputError, ExtractionError) as e:
            logger.warning("document_rejected", filename=filename, error=e.message)
            return ParseResult.failure(e.message)

        row = clean_extracted_row(extraction.to_raw_row())
        return ParseResult.from_rows([row], list(row), self.settings.preview_rows)

    def suggest(self, columns: list[str], document_type: DocumentType) -> FieldMapping:
        """Suggest a field mapping for the document type's schema."""
        return suggest_mapping(columns, self.catalogue.get(document_type))

    def process(
        self,
        rows: list[RawRow],
        document_type: DocumentType,
        mapping: Union[FieldMapping, dict[str, str]],
    ) -> PipelineResult:
        """Validate mapped rows and convert the valid ones into ledger entries.

        Raises:
            CatalogueError: If the document type has no schema.
            MappingError: If the mapping was built for another document type
                or maps two source columns to one target field.
        """
        schema = self.catalogue.get(document_type)
        if isinstance(mapping, FieldMapping) and mapping.schema.document_type != document_type:
            raise MappingError(
                f"Mapping was built for {mapping.schema.document_type.value}, "
                f"not {document_type.value}"
            )

        validation = validate_rows(rows, schema, mapping)
        entries = convert_rows(validation.rows, document_type)

        logger.info(
            "import_processed",
            document_type=document_type.value,
            rows=len(rows),
            processed=validation.processed_count,
            errors=len(validation.errors),
        )
        return PipelineResult(
            success=validation.success,
            processed_count=validation.processed_count,
            errors=validation.errors,
            ledger_entries=entries,
        )


__all__ = [
    "ImportPipeline",
    "clean_extracted_row",
]

"""End-to-end tests for the import pipeline."""

import json
from decimal import Decimal

import pytest

from taxingest.backends import BackendResponse
from taxingest.config import BackendSettings, IngestSettings
from taxingest.exceptions import (
    CatalogueError,
    FileTooLargeError,
    MappingError,
    UnsupportedFileTypeError,
)
from taxingest.field_mapper import FieldMapping
from taxingest.models.extraction import ConfidenceLevel
from taxingest.models.records import LedgerCategory
from taxingest.models.schema import DocumentType
from taxingest.pipeline import ImportPipeline, clean_extracted_row


@pytest.fixture
def pipeline(settings) -> ImportPipeline:
    return ImportPipeline(settings=settings)


class TestCleanExtractedRow:
    """Test suite for extracted-row cleanup."""

    def test_money_strings_cleaned(self):
        row = clean_extracted_row({"wages": "$45,200.00", "name": "Jane", "empty": "", "none": None})

        assert row == {"wages": "45200.00", "name": "Jane"}

    def test_non_money_strings_untouched(self):
        row = clean_extracted_row({"ein": "12-3456789", "note": "$ see attached"})

        assert row == {"ein": "12-3456789", "note": "$ see attached"}


class TestIngest:
    """Test suite for ImportPipeline.ingest."""

    def test_csv_upload(self, pipeline):
        content = b'Name,Wages\nJane Doe,"$50,000.00"\n'

        result = pipeline.ingest(content, "wages.csv")

        assert result.success is True
        assert result.columns == ["Name", "Wages"]
        assert result.rows == [{"Name": "Jane Doe", "Wages": "$50,000.00"}]

    def test_json_upload(self, pipeline):
        content = json.dumps([{"payer": "Bank", "interest": 12.5}]).encode()

        result = pipeline.ingest(content, "interest.json")

        assert result.rows == [{"payer": "Bank", "interest": 12.5}]

    def test_spreadsheet_upload(self, pipeline, make_workbook):
        content = make_workbook([["Name", "Wages"], ["Jane Doe", 50000]])

        result = pipeline.ingest(content, "wages.xlsx")

        assert result.success is True
        assert result.rows == [{"Name": "Jane Doe", "Wages": 50000}]

    def test_document_becomes_single_row(self, pipeline, w2_text):
        """A document upload yields one row of extracted fields."""
        result = pipeline.ingest(w2_text.encode(), "w2_2024.txt")

        assert result.success is True
        assert result.total_row_count == 1
        row = result.rows[0]
        assert row["wages"] == "45200"
        assert row["employerEIN"] == "12-3456789"
        assert result.columns == list(row)

    def test_unsupported_extension(self, pipeline):
        result = pipeline.ingest(b"data", "return.docx")

        assert result.success is False
        assert "Unsupported file type" in result.error

    def test_empty_document(self, pipeline):
        result = pipeline.ingest(b"", "scan.pdf")

        assert result.success is False
        assert result.rows == []

    def test_image_without_backend_fails_softly(self, pipeline):
        """An image with no text source is reported, not raised."""
        result = pipeline.ingest(b"\x89PNG\r\n\x1a\n....", "w2.png")

        assert result.success is False
        assert result.error

    def test_oversize_upload(self):
        pipeline = ImportPipeline(IngestSettings(max_file_size=10, backend=BackendSettings()))

        result = pipeline.ingest(b"a,b\n" + b"1,2\n" * 10, "big.csv")

        assert result.success is False
        assert "limit" in result.error


class TestExtractDocument:
    """Test suite for ImportPipeline.extract_document."""

    def test_stub_backend_with_fallback(self, settings, stub_backend, w2_text):
        backend = stub_backend(BackendResponse(ocr_text=w2_text, structured_fields={}))
        pipeline = ImportPipeline(settings=settings, backend=backend)

        result = pipeline.extract_document(b"%PDF-1.4 scan", "w2_scan.pdf")

        assert result.document_type == DocumentType.W2
        assert result.extracted_fields["wages"] == "45200"
        assert result.extracted_fields["federalTaxWithheld"] == "5100"
        assert result.confidence.level == ConfidenceLevel.MEDIUM
        assert backend.calls == [(b"%PDF-1.4 scan", DocumentType.W2)]

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("1099-int-chase.pdf", DocumentType.FORM_1099_INT),
            ("1099_div.pdf", DocumentType.FORM_1099_DIV),
            ("1099-nec.png", DocumentType.FORM_1099_NEC),
            ("1099.pdf", DocumentType.FORM_1099_MISC),
            ("scan.pdf", DocumentType.UNKNOWN),
        ],
    )
    def test_type_detected_from_filename(self, settings, stub_backend, filename, expected):
        backend = stub_backend(BackendResponse(structured_fields={"a": "1", "b": "2", "c": "3"}))
        pipeline = ImportPipeline(settings=settings, backend=backend)

        result = pipeline.extract_document(b"%PDF-1.4", filename)

        assert result.document_type == expected

    def test_explicit_type_wins(self, settings, stub_backend):
        backend = stub_backend(BackendResponse(structured_fields={"a": "1", "b": "2", "c": "3"}))
        pipeline = ImportPipeline(settings=settings, backend=backend)

        result = pipeline.extract_document(b"%PDF-1.4", "w2.pdf", DocumentType.FORM_1099_R)

        assert result.document_type == DocumentType.FORM_1099_R

    def test_tabular_file_rejected(self, pipeline):
        with pytest.raises(UnsupportedFileTypeError):
            pipeline.extract_document(b"a,b\n1,2\n", "w2.csv")

    def test_oversize_rejected(self, stub_backend):
        backend = stub_backend()
        pipeline = ImportPipeline(
            IngestSettings(max_file_size=4, backend=BackendSettings()), backend=backend
        )

        with pytest.raises(FileTooLargeError):
            pipeline.extract_document(b"%PDF-1.4", "w2.pdf")

        assert backend.calls == []


class TestSuggest:
    """Test suite for ImportPipeline.suggest."""

    def test_suggest_for_schema(self, pipeline):
        mapping = pipeline.suggest(["Payer", "Interest Income"], DocumentType.FORM_1099_INT)

        assert mapping.get("Interest Income") == "interestIncome"
        assert mapping.schema.document_type == DocumentType.FORM_1099_INT

    def test_type_without_schema(self, pipeline):
        with pytest.raises(CatalogueError):
            pipeline.suggest(["Amount"], DocumentType.RECEIPT)


class TestProcess:
    """Test suite for ImportPipeline.process."""

    def test_wage_rows_to_ledger(self, pipeline):
        """A mapped wage row becomes a typed wage-income ledger entry."""
        rows = [{"EmpName": "Jane Doe", "EmpWages": "$50,000.00", "FedWH": "$6,000"}]
        mapping = {"EmpName": "employeeName", "EmpWages": "wages", "FedWH": "federalTaxWithheld"}

        result = pipeline.process(rows, DocumentType.W2, mapping)

        assert result.success is True
        assert result.processed_count == 1
        entry = result.ledger_entries[0]
        assert entry.category == LedgerCategory.WAGE_INCOME
        assert entry.category.value == "wage income"
        assert entry.amount == Decimal("50000.00")
        assert entry.row_number == 1

    def test_invalid_rows_reported(self, pipeline):
        rows = [
            {"Wages": "50000"},
            {"Wages": "not money"},
            {"Wages": ""},
        ]

        result = pipeline.process(rows, DocumentType.W2, {"Wages": "wages"})

        assert result.success is False
        assert result.processed_count == 1
        assert [e.row for e in result.errors] == [2, 3]
        assert len(result.ledger_entries) == 1

    def test_mapping_for_other_type_rejected(self, pipeline):
        mapping = FieldMapping(pipeline.catalogue.get(DocumentType.FORM_1099_INT))

        with pytest.raises(MappingError):
            pipeline.process([], DocumentType.W2, mapping)

    def test_dict_mapping_with_shared_target_rejected(self, pipeline):
        """A plain mapping that sends two columns to one field creates no entries."""
        rows = [{"A": "$1,000", "B": "$2,000"}]

        with pytest.raises(MappingError) as exc_info:
            pipeline.process(rows, DocumentType.W2, {"A": "wages", "B": "wages"})

        assert exc_info.value.conflicting_source == "A"

    def test_type_without_schema(self, pipeline):
        with pytest.raises(CatalogueError):
            pipeline.process([{"a": "1"}], DocumentType.STATEMENT, {})

    def test_document_to_ledger(self, settings, stub_backend, w2_text):
        """A scanned wage statement flows through to a ledger entry."""
        backend = stub_backend(BackendResponse(ocr_text=w2_text))
        pipeline = ImportPipeline(settings=settings, backend=backend)

        parsed = pipeline.ingest(b"%PDF-1.4 scan", "w2_scan.pdf")
        schema = pipeline.catalogue.get(DocumentType.W2)
        mapping = {column: column for column in parsed.columns if column in schema}
        result = pipeline.process(parsed.rows, DocumentType.W2, mapping)

        assert result.success is True
        entry = result.ledger_entries[0]
        assert entry.amount == Decimal("45200")
        assert entry.counterparty_name == "Acme Widgets Inc"
        assert entry.counterparty_tin == "12-3456789"


class TestConstruction:
    """Test suite for backend wiring."""

    def test_http_backend_created_when_configured(self):
        settings = IngestSettings(
            backend=BackendSettings(endpoint="https://docs.example.test", api_key="k")
        )

        pipeline = ImportPipeline(settings=settings)

        assert pipeline.extractor.backend.name == "document-intelligence"

    def test_no_http_backend_without_configuration(self, pipeline):
        assert pipeline.extractor.backend.name == "local-text"

"""Shared fixtures for the taxingest test suite."""

import io
import os
from typing import Any, Optional

import pytest
from openpyxl import Workbook

from taxingest.backends import BackendResponse
from taxingest.catalogue import get_schema
from taxingest.config import BackendSettings, IngestSettings
from taxingest.models.schema import DocumentType, FormSchema


W2_OCR_TEXT = """Form W-2 Wage and Tax Statement 2024
Employee Jane Doe
Employer Acme Widgets Inc
Employer identification number 12-3456789
Employee social security number 123-45-6789
1 Wages, tips, other compensation 45,200.00
2 Federal income tax withheld 5,100.00
"""


class StubBackend:
    """Backend returning a canned response, or raising a canned error."""

    def __init__(
        self,
        response: Optional[BackendResponse] = None,
        error: Optional[Exception] = None,
        name: str = "stub",
    ):
        self.name = name
        self.response = response or BackendResponse()
        self.error = error
        self.calls: list[tuple[bytes, DocumentType]] = []

    def analyze(self, content: bytes, document_type: DocumentType) -> BackendResponse:
        self.calls.append((content, document_type))
        if self.error is not None:
            raise self.error
        return self.response


def build_workbook(rows: list[list[Any]]) -> bytes:
    """Build an .xlsx file in memory with the given rows on the first sheet."""
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep developer environment variables out of the settings under test."""
    for key in list(os.environ):
        if key.startswith("TAXINGEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings() -> IngestSettings:
    return IngestSettings(backend=BackendSettings())


@pytest.fixture
def w2_schema() -> FormSchema:
    return get_schema(DocumentType.W2)


@pytest.fixture
def w2_text() -> str:
    return W2_OCR_TEXT


@pytest.fixture
def stub_backend():
    """Factory for canned extraction backends."""
    return StubBackend


@pytest.fixture
def make_workbook():
    """Factory for in-memory .xlsx files."""
    return build_workbook

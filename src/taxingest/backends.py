"""Document-intelligence backends for scanned tax documents.

A backend turns document bytes into OCR text plus, when it can, structured
field guesses. The extractor only depends on the ``ExtractionBackend``
protocol, so any service can be plugged in.

Two implementations ship with the package:
- ``HttpDocumentBackend``: REST document-intelligence service (analyze, then
  poll the operation until it finishes)
- ``LocalTextBackend``: reads the embedded text layer of PDFs and decodes
  plain-text files; it never returns structured fields
"""

import base64
import io
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable

import httpx
import pdfplumber
import structlog
from PyPDF2 import PdfReader

from .config import BackendSettings
from .exceptions import BackendTimeoutError, ConfigurationError, ExtractionError, MalformedFileError
from .models.schema import DocumentType

logger = structlog.get_logger()


@dataclass
class BackendResponse:
    """What a backend recovered from one document.

    ``structured_fields`` uses the backend's own field identifiers; the
    extractor renames them to canonical names.
    """
    ocr_text: str = ""
    structured_fields: dict[str, str] = field(default_factory=dict)
    confidence: Optional[float] = None


@runtime_checkable
class ExtractionBackend(Protocol):
    """Contract for document-intelligence backends.

    Implementations may raise ``ExtractionError`` (or let ``httpx.HTTPError``
    escape); the extractor treats both as a degraded backend, not a fatal
    failure.
    """

    name: str

    def analyze(self, content: bytes, document_type: DocumentType) -> BackendResponse:
        """Analyze document bytes with a document-type hint."""
        ...


# =============================================================================
# HTTP DOCUMENT-INTELLIGENCE BACKEND
# =============================================================================

W2_MODEL = "prebuilt-tax.us.w2"
GENERAL_MODEL = "prebuilt-document"


def model_for(document_type: DocumentType) -> str:
    """Analysis model used for a document type."""
    if document_type == DocumentType.W2:
        return W2_MODEL
    return GENERAL_MODEL


def _field_value(raw: dict[str, Any]) -> str:
    """Pick the string form of a backend field value."""
    if raw.get("valueString"):
        return str(raw["valueString"])
    if raw.get("valueNumber") is not None:
        return str(raw["valueNumber"])
    currency = raw.get("valueCurrency")
    if isinstance(currency, dict) and currency.get("amount") is not None:
        return str(currency["amount"])
    if raw.get("content"):
        return str(raw["content"])
    return ""


def parse_analyze_result(result: dict[str, Any]) -> BackendResponse:
    """Convert an ``analyzeResult`` payload into a ``BackendResponse``.

    Only the first recognized document is read. Fields without a usable
    value are dropped; confidence is the mean of the positive field
    confidences, or None when there are none.
    """
    fields: dict[str, str] = {}
    confidences: list[float] = []

    documents = result.get("documents") or []
    if isinstance(documents, list) and documents and isinstance(documents[0], dict):
        raw_fields = documents[0].get("fields") or {}
        if not isinstance(raw_fields, dict):
            raw_fields = {}
        for key, raw in raw_fields.items():
            if not isinstance(raw, dict):
                continue
            value = _field_value(raw).strip()
            if value:
                fields[key] = value
            score = raw.get("confidence")
            if isinstance(score, (int, float)) and not isinstance(score, bool) and score > 0:
                confidences.append(float(score))

    confidence = sum(confidences) / len(confidences) if confidences else None
    content = result.get("content")
    return BackendResponse(
        ocr_text=content if isinstance(content, str) else "",
        structured_fields=fields,
        confidence=confidence,
    )


class HttpDocumentBackend:
    """REST client for a document-intelligence analysis service.

    The document is posted as base64 to the analyze endpoint; the service
    answers with an ``Operation-Location`` header that is polled at a fixed
    interval until the analysis succeeds, fails, or the attempt budget is
    exhausted.

    Example:
        backend = HttpDocumentBackend(BackendSettings())
        response = backend.analyze(pdf_bytes, DocumentType.W2)
    """

    name = "document-intelligence"

    def __init__(
        self,
        settings: BackendSettings,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not settings.is_configured:
            raise ConfigurationError(
                "Document-intelligence backend requires an endpoint and an API key",
                config_key="backend.endpoint",
                expected="TAXINGEST_BACKEND_ENDPOINT and TAXINGEST_BACKEND_API_KEY",
            )
        self.settings = settings
        self._client = client or httpx.Client(timeout=settings.timeout)
        self._owns_client = client is None
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpDocumentBackend":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def _headers(self) -> dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": self.settings.api_key or ""}

    def analyze(self, content: bytes, document_type: DocumentType) -> BackendResponse:
        """Submit a document and wait for its analysis.

        Raises:
            ExtractionError: If the service rejects the request or answers with
                a failed or malformed analysis.
            BackendTimeoutError: If polling runs out of attempts.
        """
        model_id = model_for(document_type)
        url = (
            f"{self.settings.endpoint}/formrecognizer/documentModels/"
            f"{model_id}:analyze"
        )

        logger.info(
            "backend_analyze_started",
            model=model_id,
            document_type=document_type.value,
            size=len(content),
        )
        response = self._client.post(
            url,
            params={"api-version": self.settings.api_version},
            headers=self._headers,
            json={"base64Source": base64.b64encode(content).decode("ascii")},
        )
        if response.is_error:
            raise ExtractionError(
                f"Analyze request failed: {response.status_code} {response.reason_phrase}",
                backend=self.name,
                document_type=document_type.value,
                status_code=response.status_code,
            )

        operation_location = response.headers.get("Operation-Location")
        if not operation_location:
            raise ExtractionError(
                "No operation location returned by the backend",
                backend=self.name,
                document_type=document_type.value,
            )

        result = self._poll(operation_location, document_type)
        parsed = parse_analyze_result(result)
        logger.info(
            "backend_analyze_completed",
            model=model_id,
            fields=len(parsed.structured_fields),
            text_chars=len(parsed.ocr_text),
            confidence=parsed.confidence,
        )
        return parsed

    def _poll_payload(self, response: httpx.Response, document_type: DocumentType) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ExtractionError(
                f"Backend returned a non-JSON poll response: {e}",
                backend=self.name,
                document_type=document_type.value,
                status_code=response.status_code,
            ) from e
        if not isinstance(payload, dict):
            raise ExtractionError(
                "Backend poll response is not a JSON object",
                backend=self.name,
                document_type=document_type.value,
                status_code=response.status_code,
            )
        return payload

    def _poll(self, operation_location: str, document_type: DocumentType) -> dict[str, Any]:
        attempts = self.settings.poll_max_attempts
        for attempt in range(1, attempts + 1):
            response = self._client.get(operation_location, headers=self._headers)
            if response.is_error:
                raise ExtractionError(
                    f"Polling error: {response.status_code}",
                    backend=self.name,
                    document_type=document_type.value,
                    status_code=response.status_code,
                )

            payload = self._poll_payload(response, document_type)
            status = payload.get("status")
            if status == "succeeded":
                result = payload.get("analyzeResult") or {}
                if not isinstance(result, dict):
                    raise ExtractionError(
                        "Malformed analyzeResult in backend response",
                        backend=self.name,
                        document_type=document_type.value,
                    )
                return result
            if status == "failed":
                error = payload.get("error")
                message = error.get("message") if isinstance(error, dict) else None
                raise ExtractionError(
                    f"Analysis failed: {message or 'Unknown error'}",
                    backend=self.name,
                    document_type=document_type.value,
                )

            logger.debug("backend_poll_pending", attempt=attempt, max_attempts=attempts, status=status)
            if attempt < attempts:
                self._sleep(self.settings.poll_interval)

        raise BackendTimeoutError(
            f"Analysis did not complete after {attempts} polling attempts",
            backend=self.name,
            document_type=document_type.value,
            details={"attempts": attempts, "interval": self.settings.poll_interval},
        )


# =============================================================================
# LOCAL TEXT-LAYER BACKEND
# =============================================================================

PDF_SIGNATURE = b"%PDF"

IMAGE_SIGNATURES = (
    b"\x89PNG",
    b"\xff\xd8\xff",
    b"II*\x00",
    b"MM\x00*",
    b"BM",
)

# PyPDF2 output shorter than this triggers a pdfplumber attempt
MIN_PDF_TEXT_CHARS = 100


def extract_pdf_text(content: bytes) -> str:
    """Read the text layer of a PDF, falling back to pdfplumber.

    Raises:
        MalformedFileError: If PyPDF2 cannot open the document at all.
    """
    try:
        reader = PdfReader(io.BytesIO(content))
    except Exception as e:
        raise MalformedFileError(f"Failed to read PDF: {e}", file_kind="document") from e

    pages: list[str] = []
    for page_num, page in enumerate(reader.pages, start=1):
        try:
            pages.append(page.extract_text() or "")
        except Exception as e:
            logger.warning("page_extraction_failed", page=page_num, error=str(e))
            pages.append("")
    text = "\n".join(pages)

    if len(text.strip()) < MIN_PDF_TEXT_CHARS:
        logger.info("pypdf2_fallback_pdfplumber", pypdf2_chars=len(text.strip()))
        try:
            with pdfplumber.open(io.BytesIO(content)) as pdf:
                plumber_text = "\n".join(page.extract_text() or "" for page in pdf.pages)
        except Exception as e:
            logger.warning("pdfplumber_fallback_failed", error=str(e))
        else:
            if len(plumber_text.strip()) > len(text.strip()):
                text = plumber_text

    return text


class LocalTextBackend:
    """Backend that reads whatever text is embedded in the file itself.

    PDFs are read through their text layer; plain text is decoded as UTF-8.
    Images carry no text layer and yield an empty response.
    """

    name = "local-text"

    def __init__(self, pdf_reader: Callable[[bytes], str] = extract_pdf_text) -> None:
        self._pdf_reader = pdf_reader

    def analyze(self, content: bytes, document_type: DocumentType) -> BackendResponse:
        if content.startswith(PDF_SIGNATURE):
            text = self._pdf_reader(content)
        elif content.startswith(IMAGE_SIGNATURES):
            logger.info("local_text_unavailable", reason="image without text layer")
            text = ""
        else:
            try:
                text = content.decode("utf-8-sig")
            except UnicodeDecodeError:
                logger.info("local_text_unavailable", reason="undecodable content")
                text = ""

        return BackendResponse(ocr_text=text)


def load_document(path: Union[str, Path]) -> bytes:
    """Read document bytes from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Document not found: {path}")
    return path.read_bytes()


__all__ = [
    "BackendResponse",
    "ExtractionBackend",
    "HttpDocumentBackend",
    "LocalTextBackend",
    "extract_pdf_text",
    "load_document",
    "model_for",
    "parse_analyze_result",
]

"""Custom exceptions for the taxingest pipeline.

All exceptions inherit from TaxIngestError, so callers can catch every
pipeline-specific failure with a single clause. Row-level validation problems
are not exceptions; they are collected as ``RowError`` records instead.

Example:
    try:
        result = pipeline.extract_document(content, "w2_2024.pdf")
    except ExtractionError as e:
        if e.recoverable:
            # Retry later or route to manual entry
            ...
        else:
            raise
    except TaxIngestError as e:
        logger.error("import_failed", error=str(e))
"""

from typing import Any, Optional


class TaxIngestError(Exception):
    """Base exception for all taxingest errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
        recoverable: Whether the error is potentially recoverable.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        """Initialize TaxIngestError.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context about the error.
            recoverable: Whether the error is potentially recoverable through
                retry or alternative approaches. Defaults to False.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message

    def __repr__(self) -> str:
        """Return detailed representation of the error."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable!r})"
        )


class InputError(TaxIngestError):
    """Error raised when an input file cannot be accepted or decoded.

    Input errors are fatal for the document they concern: the file is
    rejected as a whole and no partial rows are returned.

    Attributes:
        filename: Name of the offending file (if known).
        file_kind: Detected or declared kind of the file (if known).
    """

    def __init__(
        self,
        message: str,
        *,
        filename: Optional[str] = None,
        file_kind: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.filename = filename
        self.file_kind = file_kind

        if filename:
            self.details["filename"] = filename
        if file_kind:
            self.details["file_kind"] = file_kind


class UnsupportedFileTypeError(InputError):
    """The file extension or content is not one of the supported formats."""


class FileTooLargeError(InputError):
    """The file exceeds the configured size ceiling."""

    def __init__(
        self,
        message: str,
        *,
        size: int,
        limit: int,
        filename: Optional[str] = None,
    ) -> None:
        super().__init__(message, filename=filename, details={"size": size, "limit": limit})
        self.size = size
        self.limit = limit


class MalformedFileError(InputError):
    """The file could not be decoded (bad encoding, bad structure, empty)."""


class ExtractionError(TaxIngestError):
    """Error raised when the document-intelligence backend fails.

    Extraction errors are recoverable by default: the extractor degrades to
    pattern extraction over whatever text is still available.

    Attributes:
        backend: Identifier of the backend that failed.
        document_type: Type of document being processed (if known).
        status_code: HTTP status code returned by the backend (if any).
    """

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        document_type: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.backend = backend
        self.document_type = document_type
        self.status_code = status_code

        if backend:
            self.details["backend"] = backend
        if document_type:
            self.details["document_type"] = document_type
        if status_code is not None:
            self.details["status_code"] = status_code


class BackendTimeoutError(ExtractionError):
    """The backend did not finish analysis within the polling budget."""


class MappingError(TaxIngestError):
    """Error raised when a field mapping change would break its invariants.

    Attributes:
        source: Source column being mapped.
        target: Target field requested.
        conflicting_source: Source column already holding the target (if any).
    """

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        target: Optional[str] = None,
        conflicting_source: Optional[str] = None,
    ) -> None:
        super().__init__(message, recoverable=True)
        self.source = source
        self.target = target
        self.conflicting_source = conflicting_source

        if source is not None:
            self.details["source"] = source
        if target is not None:
            self.details["target"] = target
        if conflicting_source is not None:
            self.details["conflicting_source"] = conflicting_source


class CatalogueError(TaxIngestError):
    """The schema catalogue is malformed or lacks the requested document type."""


class ConfigurationError(TaxIngestError):
    """Error raised when configuration is invalid or missing.

    Attributes:
        config_key: The configuration key that is problematic.
        expected: Description of the expected value or format.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: Optional[str] = None,
        expected: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.config_key = config_key
        self.expected = expected

        if config_key:
            self.details["config_key"] = config_key
        if expected:
            self.details["expected"] = expected


__all__ = [
    "TaxIngestError",
    "InputError",
    "UnsupportedFileTypeError",
    "FileTooLargeError",
    "MalformedFileError",
    "ExtractionError",
    "BackendTimeoutError",
    "MappingError",
    "CatalogueError",
    "ConfigurationError",
]

"""Error taxonomy for ingestion, catalog and search operations."""

from typing import Any, Dict, Optional


class DocIngestError(Exception):
    """Base exception for all docingest errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(DocIngestError):
    """Raised when caller input is rejected before any side effect."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        self.field = field
        super().__init__(message, details)


class ParseError(DocIngestError):
    """Raised when document bytes cannot be turned into text."""


class CollaboratorError(DocIngestError):
    """Raised when the splitter, embedding client or vector store fails mid-pipeline."""


class CatalogSchemaError(DocIngestError):
    """Raised when the persisted catalog structure does not match the expected one."""


class NotFoundError(DocIngestError):
    """Raised when a document id is not present in the catalog."""

    def __init__(self, document_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        details = details or {}
        details["document_id"] = document_id
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}", details)


class ConfigurationError(DocIngestError):
    """Raised when settings cannot be turned into working services."""

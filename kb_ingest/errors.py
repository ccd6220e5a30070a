"""
Knowledge-Base Exceptions
--------------------------
One small hierarchy shared by every stage of the ingestion core.

    KnowledgeBaseError
      +-- ValidationError        empty text, bad chunking bounds, bad source input
      |     +-- DocumentNotFoundError
      +-- LimitExceededError     tenant document quota reached
      +-- UpstreamError          embedding provider / document store failure
      +-- ConfigurationError     missing credentials or unusable settings

Chunking and sizing are pure and only ever raise ValidationError for bad
configuration.  All fallible I/O lives in the ingestion orchestrator, which
wraps provider and store failures in UpstreamError.
"""
from __future__ import annotations

from typing import Any, Optional


class KnowledgeBaseError(Exception):
    """Base class for every error raised by kb_ingest."""

    error_code = "KNOWLEDGE_BASE_ERROR"

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form for CLI output and API layers."""
        payload: dict[str, Any] = {
            "status": "error",
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(KnowledgeBaseError):
    error_code = "VALIDATION_ERROR"


class DocumentNotFoundError(ValidationError):
    error_code = "DOCUMENT_NOT_FOUND"


class LimitExceededError(KnowledgeBaseError):
    error_code = "LIMIT_EXCEEDED"

    def __init__(self, message: str, limit: int, current: int) -> None:
        super().__init__(message, details=f"current={current} limit={limit}")
        self.limit = limit
        self.current = current


class UpstreamError(KnowledgeBaseError):
    """
    An embedding-provider or document-store call failed.

    `inserted_ids` lists documents a multi-chunk ingestion already wrote
    before the failure.  They are not rolled back.
    """

    error_code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        inserted_ids: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, details=repr(cause) if cause else None)
        self.cause = cause
        self.inserted_ids: list[str] = list(inserted_ids or [])

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.inserted_ids:
            payload["inserted_ids"] = self.inserted_ids
        return payload


class ConfigurationError(KnowledgeBaseError):
    error_code = "CONFIGURATION_ERROR"

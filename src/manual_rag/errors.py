"""Exception taxonomy for ingestion and query paths."""

from __future__ import annotations


class ManualRagError(Exception):
    """Base class for all manual_rag errors."""


class ExternalToolFailure(ManualRagError):
    """Page counting, text extraction, or rasterization failed."""


class RecognitionFailure(ManualRagError):
    """The OCR engine could not recognize a rendered page."""


class EmbeddingShapeError(ManualRagError):
    """The embedding backend returned an unexpected shape or vector count."""


class CollectionSchemaError(ManualRagError):
    """An existing collection does not match the configured vector size."""


class CompletionError(ManualRagError):
    """The completion service answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Completion request failed (HTTP {status_code}): {body}")
        self.status_code = status_code
        self.body = body


class RequestValidationError(ManualRagError):
    """A request was missing a required field."""


class ConfigError(ManualRagError, ValueError):
    """Configuration could not be loaded or parsed."""

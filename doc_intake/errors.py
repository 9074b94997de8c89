"""Domain errors raised by the intake pipeline.

Mapping to HTTP status codes happens in the orchestrator and the app layer.
"""

from __future__ import annotations


class IntakeError(Exception):
    """Base error for document intake failures."""


class MalformedRequest(IntakeError):
    """Raised when the upload has no usable multipart boundary."""


class NoFileInRequest(IntakeError):
    """Raised when no multipart part declares a filename."""


class ExternalToolFailure(IntakeError):
    """Raised when the page rasterizer or the OCR engine fails."""


class ExternalServiceFailure(IntakeError):
    """Raised when document conversion or the model-serving endpoint fails."""


class MalformedModelOutput(IntakeError):
    """Raised when the model answer is not valid JSON or violates the schema."""


class TaxonomyIOFailure(IntakeError):
    """Raised when the taxonomy file cannot be read or written."""

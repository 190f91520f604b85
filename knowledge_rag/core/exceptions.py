"""
Custom exception classes for unified error handling.
"""

from fastapi import HTTPException


class AppBaseError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidTokenError(AppBaseError):
    """Raised when JWT token is invalid or expired."""
    def __init__(self):
        super().__init__(
            message="Invalid or expired token",
            detail="Please sign in again.",
        )


# ── Capability errors ────────────────────────────────────

class StructuredOutputError(AppBaseError):
    """Raised when the model's structured output does not match the schema."""
    def __init__(self, schema_name: str, original_error: str):
        super().__init__(
            message=f"Structured generation for '{schema_name}' returned invalid output",
            detail=original_error,
        )


class EmbeddingDimensionError(AppBaseError):
    """Raised when the embedding capability breaks the configured vector size or count."""
    def __init__(self, expected: int, got: int, what: str = "dimensions"):
        super().__init__(
            message=f"Embedding {what} mismatch: expected {expected}, got {got}",
        )


# ── Pipeline errors ──────────────────────────────────────

class PipelineError(AppBaseError):
    """A fatal error raised by one pipeline stage, tagged with the stage name."""
    def __init__(self, stage: str, original: BaseException | str):
        self.stage = stage
        self.original = original if isinstance(original, BaseException) else None
        super().__init__(
            message=f"Pipeline stage '{stage}' failed",
            detail=str(original),
        )


class NoContentError(PipelineError):
    """Raised when a document yields no extractable text."""
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(stage="extract", original="No text content found in document")
        self.message = "No content found"


class DocumentBusyError(AppBaseError):
    """Raised when a document is already being processed by another pipeline run."""
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(
            message="Document is already being processed",
            detail=f"document_id={document_id}",
        )


class DocumentNotFoundError(AppBaseError):
    """Raised when a document does not exist or belongs to another owner."""
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(
            message="Document not found",
            detail=f"document_id={document_id}",
        )


# ── Utility: convert to HTTPException ────────────────────

def app_error_to_http(
    error: AppBaseError, status_code: int = 400, headers: dict[str, str] | None = None
) -> HTTPException:
    """Convert an AppBaseError to an HTTPException with consistent JSON body."""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.message,
            "detail": error.detail,
            "type": type(error).__name__,
        },
        headers=headers,
    )

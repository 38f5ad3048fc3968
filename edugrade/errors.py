"""Error taxonomy for the evaluation pipeline.

Every failure surfaced by the pipeline is an ``EvaluationError`` carrying the
stage it came from, one human-readable message, and structured details for
diagnostics. ``retryable`` marks failures where re-running the same input may
succeed; the pipeline itself never retries.
"""

from typing import Any, Dict, List, Optional, Sequence


class EvaluationError(Exception):
    """Base class for all evaluation pipeline failures.

    Attributes:
        stage: Pipeline stage that failed (collect, encode, credential,
            inference, normalize, persist, submit)
        message: Human-readable description of the failure
        details: Structured diagnostic fields (filename, field names, status)
        retryable: Whether the caller may re-run the pipeline unchanged
    """

    stage = "evaluation"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API responses and logs."""
        return {
            "type": type(self).__name__,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            **self.details,
        }


# =============================================================================
# DOCUMENT ERRORS (per file, user removes or replaces the file)
# =============================================================================

class DocumentRejected(EvaluationError):
    """A single document failed an acceptance gate."""

    stage = "encode"

    def __init__(self, display_name: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"display_name": display_name, **(details or {})})
        self.display_name = display_name


class DocumentTooLarge(DocumentRejected):
    """Document exceeds the byte limit."""

    def __init__(self, display_name: str, byte_size: int, limit_bytes: int):
        super().__init__(
            display_name,
            f'"{display_name}" exceeds the {_format_limit(limit_bytes)} limit',
            {"byte_size": byte_size, "limit_bytes": limit_bytes},
        )
        self.byte_size = byte_size
        self.limit_bytes = limit_bytes


class UnsupportedDocumentType(DocumentRejected):
    """Document content is neither an image nor a PDF."""

    def __init__(self, display_name: str, mime_type: str):
        super().__init__(
            display_name,
            f'"{display_name}" has unsupported type {mime_type}. '
            "Expected an image or application/pdf",
            {"mime_type": mime_type},
        )
        self.mime_type = mime_type


class EmptyDocument(DocumentRejected):
    """Document has no content."""

    def __init__(self, display_name: str):
        super().__init__(display_name, f'"{display_name}" is empty')


# =============================================================================
# SUBMISSION ERRORS
# =============================================================================

class ValidationError(EvaluationError):
    """Submission is missing a required document group."""

    stage = "collect"

    def __init__(
        self,
        message: str,
        missing_groups: Sequence[str] = (),
        rejected: Sequence[DocumentRejected] = (),
    ):
        details: Dict[str, Any] = {"missing_groups": list(missing_groups)}
        if rejected:
            details["rejected"] = [r.to_dict() for r in rejected]
        super().__init__(message, details)
        self.missing_groups: List[str] = list(missing_groups)
        self.rejected: List[DocumentRejected] = list(rejected)


class EvaluationInProgress(EvaluationError):
    """A second submission arrived while one is still running."""

    stage = "submit"

    def __init__(self) -> None:
        super().__init__("An evaluation is already in progress. Wait for it to finish.")


# =============================================================================
# INFERENCE ERRORS
# =============================================================================

class MissingCredential(EvaluationError):
    """No API key is configured, the request was never attempted."""

    stage = "credential"

    def __init__(self, lookup: Sequence[str]):
        super().__init__(
            "No Gemini API key configured. Set GEMINI_API_KEY in your environment "
            "or .env file (get a key from https://ai.google.dev/).",
            {"lookup": list(lookup)},
        )


class AuthRejected(EvaluationError):
    """API key is present but the service refused it."""

    stage = "inference"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            "The Gemini API rejected the configured API key. Check that "
            f"GEMINI_API_KEY is valid and enabled for this model. ({message})",
            {"status_code": status_code},
        )
        self.status_code = status_code


class TransportFailure(EvaluationError):
    """Network or service-level failure unrelated to response content."""

    stage = "inference"
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            f"Gemini API request failed: {message}",
            {"status_code": status_code},
        )
        self.status_code = status_code


class EmptyResponse(EvaluationError):
    """The call succeeded but returned no text."""

    stage = "inference"
    retryable = True

    def __init__(self) -> None:
        super().__init__("Gemini API returned an empty response")


# =============================================================================
# RESPONSE CONTRACT ERRORS
# =============================================================================

class MalformedResponse(EvaluationError):
    """Response text is not a single JSON object."""

    stage = "normalize"
    retryable = True

    def __init__(self, reason: str):
        super().__init__(f"Model response is not a valid JSON object: {reason}")


class SchemaViolation(EvaluationError):
    """Response JSON does not match the output contract."""

    stage = "normalize"
    retryable = True

    def __init__(self, fields: Sequence[str], reason: str = "missing required field(s)"):
        field_list = list(fields)
        super().__init__(
            f"Model response violates the report schema, {reason}: {', '.join(field_list)}",
            {"fields": field_list},
        )
        self.fields = field_list


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class HistoryPersistenceError(EvaluationError):
    """The history log could not be written."""

    stage = "persist"

    def __init__(self, reason: str):
        super().__init__(f"Failed to save evaluation history: {reason}")


def _format_limit(limit_bytes: int) -> str:
    mib = limit_bytes / (1024 * 1024)
    if mib >= 1 and mib == int(mib):
        return f"{int(mib)}MB"
    return f"{limit_bytes} byte"

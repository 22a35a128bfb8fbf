"""Error taxonomy for the consulting generation pipeline.

Only `FallbackInvocationError` ever reaches a caller. The other exceptions
describe intermediate failures (stream interruption, empty stream, extraction
failure) that the pipeline absorbs and converts into a single non-streaming
retry. Each exception carries a stable `error_code` for log and metrics
tagging.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


@dataclass(slots=True, eq=False)
class ConsultingPipelineError(Exception):
    """Base class for consulting pipeline errors."""

    message: str
    error_code: str

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class StreamTransportError(ConsultingPipelineError):
    def __init__(self, message: str = "Generation stream was interrupted") -> None:
        super().__init__(message=message, error_code="stream_interrupted")

    @classmethod
    def from_exception(cls, exc: BaseException) -> StreamTransportError:
        error = cls(f"{exc.__class__.__name__}: {exc}")
        error.__cause__ = exc
        return error


class EmptyStreamError(ConsultingPipelineError):
    def __init__(self, message: str = "Generation stream produced no text") -> None:
        super().__init__(message=message, error_code="empty_stream")


class JsonExtractionFailure(ConsultingPipelineError):
    def __init__(self, message: str = "No JSON structure found") -> None:
        super().__init__(message=message, error_code="extraction_failed")


class FallbackErrorKind(StrEnum):
    """Terminal failure kinds surfaced to the caller."""

    RATE_LIMITED = "rate-limited"
    CREDENTIAL_INVALID = "credential-invalid"
    MODEL_TIER_FORBIDDEN = "model-tier-forbidden"
    UNKNOWN_UPSTREAM_FAILURE = "unknown-upstream-failure"


# User-facing copy and remediation hint per terminal kind
FALLBACK_ERROR_MESSAGES: dict[FallbackErrorKind, tuple[str, str]] = {
    FallbackErrorKind.RATE_LIMITED: (
        "The AI service is handling too many requests right now. "
        "Please try again in a moment.",
        "retry_later",
    ),
    FallbackErrorKind.CREDENTIAL_INVALID: (
        "The registered API key is not valid. Please check your API key settings.",
        "fix_credential",
    ),
    FallbackErrorKind.MODEL_TIER_FORBIDDEN: (
        "The current API key does not support the selected Pro model. "
        "Switch to a Flash model or check the key's permissions.",
        "switch_model",
    ),
    FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE: (
        "Something went wrong during the AI analysis. Please try again shortly.",
        "retry_later",
    ),
}


class FallbackInvocationError(ConsultingPipelineError):
    """The non-streaming retry failed; terminal for the session."""

    kind: FallbackErrorKind

    def __init__(self, kind: FallbackErrorKind, message: str | None = None) -> None:
        default_message, _ = FALLBACK_ERROR_MESSAGES[kind]
        super().__init__(message=message or default_message, error_code=kind.value)
        self.kind = kind

    @property
    def remediation(self) -> str:
        return FALLBACK_ERROR_MESSAGES[self.kind][1]

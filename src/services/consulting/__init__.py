"""Streaming consulting generation with JSON reconciliation and fallback."""

from .exceptions import (
    ConsultingPipelineError,
    EmptyStreamError,
    FallbackErrorKind,
    FallbackInvocationError,
    JsonExtractionFailure,
    StreamTransportError,
)
from .json_extractor import extract_json
from .models import (
    ConsultingEvent,
    FinalResult,
    GenerationPayload,
    InlineAttachment,
    PartialText,
    TerminalError,
)
from .pipeline import (
    ConsultingPipeline,
    resolve_consulting_request,
    run_consulting_request,
)


__all__ = [
    "ConsultingEvent",
    "ConsultingPipeline",
    "ConsultingPipelineError",
    "EmptyStreamError",
    "FallbackErrorKind",
    "FallbackInvocationError",
    "FinalResult",
    "GenerationPayload",
    "InlineAttachment",
    "JsonExtractionFailure",
    "PartialText",
    "StreamTransportError",
    "TerminalError",
    "extract_json",
    "resolve_consulting_request",
    "run_consulting_request",
]

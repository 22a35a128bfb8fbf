"""Non-streaming retry used when a streaming attempt yields nothing usable."""

from __future__ import annotations

import logging

from core.observability import get_tracer
from services.consulting.exceptions import (
    FallbackErrorKind,
    FallbackInvocationError,
)
from services.consulting.interfaces import GenerationServiceProtocol
from services.consulting.json_extractor import extract_json
from services.consulting.models import GenerationPayload, ParseSuccess


__all__ = ["FallbackInvoker", "classify_upstream_error", "is_pro_model"]


logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def is_pro_model(model_identifier: str) -> bool:
    return "pro" in model_identifier.lower()


def _status_code(exc: BaseException) -> int | None:
    # google-genai APIError exposes `code`; httpx-style errors use `status_code`
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_upstream_error(
    exc: BaseException, payload: GenerationPayload
) -> FallbackErrorKind:
    """Map an upstream generation failure to a terminal error kind.

    Credential problems are only attributed to the caller when the caller
    supplied its own key; a broken server-side key is not something the user
    can fix, so it stays an unknown upstream failure.
    """
    code = _status_code(exc)
    message = str(exc)

    if code == 429 or "429" in message or "RESOURCE_EXHAUSTED" in message:
        return FallbackErrorKind.RATE_LIMITED

    forbidden = code == 403 or "PERMISSION_DENIED" in message or "403" in message
    if forbidden and is_pro_model(payload.model_identifier):
        return FallbackErrorKind.MODEL_TIER_FORBIDDEN

    if payload.uses_custom_credential and (
        forbidden or code == 401 or "API_KEY_INVALID" in message
    ):
        return FallbackErrorKind.CREDENTIAL_INVALID

    return FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE


class FallbackInvoker:
    """Re-issue a payload as one non-streaming call and parse the reply."""

    def __init__(self, generation_service: GenerationServiceProtocol) -> None:
        self._service = generation_service

    async def invoke(self, payload: GenerationPayload, *, reason: str) -> ParseSuccess:
        """Return the parsed canonical result or raise FallbackInvocationError."""
        logger.info(
            "Running non-streaming generation for model=%s (%s)",
            payload.model_identifier,
            reason,
        )
        with tracer.start_as_current_span("consulting.fallback_generate") as span:
            span.set_attribute("consulting.model", payload.model_identifier)
            span.set_attribute("consulting.fallback_reason", reason)
            span.set_attribute(
                "consulting.custom_credential", payload.uses_custom_credential
            )
            try:
                text = await self._service.generate(payload)
            except Exception as exc:
                kind = classify_upstream_error(exc, payload)
                span.record_exception(exc)
                span.set_attribute("consulting.error_kind", kind.value)
                logger.error(
                    "Fallback generation failed for model=%s: kind=%s (%s)",
                    payload.model_identifier,
                    kind.value,
                    exc.__class__.__name__,
                )
                raise FallbackInvocationError(kind) from exc

            outcome = extract_json(text)
            if not isinstance(outcome, ParseSuccess):
                span.set_attribute(
                    "consulting.error_kind",
                    FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE.value,
                )
                logger.error(
                    "Fallback reply was not usable JSON (%d chars): %s",
                    len(text),
                    outcome.reason,
                )
                raise FallbackInvocationError(
                    FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE
                )

            span.set_attribute("consulting.extraction_strategy", outcome.strategy)
            return outcome

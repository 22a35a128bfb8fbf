"""Consulting request pipeline: stream, reconcile, fall back.

The caller subscribes to an async sequence of events. It receives one
`PartialText` per streamed fragment, then exactly one terminal event: a
`FinalResult` (parsed from the stream, or from the non-streaming fallback)
or a `TerminalError` carrying a typed `FallbackInvocationError`.
Intermediate failures (interrupted stream, empty stream, unparseable buffer)
never reach the caller as errors; they only trigger the fallback.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from services.consulting.exceptions import (
    ConsultingPipelineError,
    EmptyStreamError,
    FallbackErrorKind,
    FallbackInvocationError,
    JsonExtractionFailure,
)
from services.consulting.fallback import FallbackInvoker
from services.consulting.interfaces import GenerationServiceProtocol
from services.consulting.json_extractor import extract_json
from services.consulting.models import (
    ConsultingEvent,
    FinalResult,
    GenerationPayload,
    ParseAttemptResult,
    ParseSuccess,
    PartialText,
    StreamSession,
    StreamState,
    TerminalError,
)
from services.consulting.session import guard_stream


__all__ = [
    "ConsultingPipeline",
    "resolve_consulting_request",
    "run_consulting_request",
]


logger = logging.getLogger(__name__)


def _describe(result: Any) -> str:
    if isinstance(result, dict):
        return f"object keys={sorted(result)}"
    return type(result).__name__


class ConsultingPipeline:
    """Reconcile a streamed JSON generation into one canonical result.

    Args:
        generation_service: Upstream adapter; defaults to the Gemini client.
        accept_interrupted_salvage: When a stream is interrupted but the
            buffer already holds a parseable object, use it instead of
            retrying. Disable to always retry after an interruption.
    """

    def __init__(
        self,
        generation_service: GenerationServiceProtocol | None = None,
        *,
        accept_interrupted_salvage: bool = True,
    ) -> None:
        if generation_service is None:
            from services.consulting.gemini_client import GeminiGenerationClient

            generation_service = GeminiGenerationClient()
        self._service = generation_service
        self._fallback = FallbackInvoker(generation_service)
        self._accept_interrupted_salvage = accept_interrupted_salvage

    async def run(self, payload: GenerationPayload) -> AsyncIterator[ConsultingEvent]:
        session = StreamSession(payload=payload)
        stream = guard_stream(session, self._service.stream_generate(payload))
        try:
            async for fragment in stream:
                yield PartialText(
                    delta=fragment, accumulated_text=session.accumulated_text
                )
        finally:
            await stream.aclose()

        if session.state is StreamState.CANCELLED:
            return

        outcome = extract_json(session.accumulated_text)
        if isinstance(outcome, ParseSuccess) and self._usable(session):
            logger.info(
                "Consulting result parsed from stream: state=%s strategy=%s %s",
                session.state,
                outcome.strategy,
                _describe(outcome.value),
            )
            yield FinalResult(
                result=outcome.value, source="stream", strategy=outcome.strategy
            )
            return

        failure = self._failure_for(session, outcome)
        logger.warning(
            "Streaming attempt unusable (%s); retrying without streaming",
            failure,
        )
        try:
            parsed = await self._fallback.invoke(payload, reason=str(failure))
        except FallbackInvocationError as exc:
            yield TerminalError(error=exc)
            return
        logger.info(
            "Consulting result parsed from fallback: strategy=%s %s",
            parsed.strategy,
            _describe(parsed.value),
        )
        yield FinalResult(result=parsed.value, source="fallback", strategy=parsed.strategy)

    async def generate_once(self, payload: GenerationPayload) -> FinalResult:
        """Non-streaming variant; raises FallbackInvocationError on failure."""
        parsed = await self._fallback.invoke(payload, reason="non-streaming request")
        return FinalResult(result=parsed.value, source="fallback", strategy=parsed.strategy)

    def _usable(self, session: StreamSession) -> bool:
        if session.state is StreamState.COMPLETE:
            return True
        return (
            session.state is StreamState.INTERRUPTED
            and self._accept_interrupted_salvage
        )

    @staticmethod
    def _failure_for(
        session: StreamSession, outcome: ParseAttemptResult
    ) -> ConsultingPipelineError:
        if session.state is StreamState.EMPTY:
            return EmptyStreamError()
        if session.state is StreamState.INTERRUPTED and isinstance(
            session.error_state, ConsultingPipelineError
        ):
            return session.error_state
        reason = getattr(outcome, "reason", "parsed result discarded")
        return JsonExtractionFailure(reason)


def run_consulting_request(
    payload: GenerationPayload,
    generation_service: GenerationServiceProtocol | None = None,
) -> AsyncIterator[ConsultingEvent]:
    """Entry point: lazy event sequence for one consulting request."""
    return ConsultingPipeline(generation_service).run(payload)


async def resolve_consulting_request(
    payload: GenerationPayload,
    generation_service: GenerationServiceProtocol | None = None,
) -> FinalResult:
    """Drain the event sequence; return the result or raise the typed error."""
    final: FinalResult | None = None
    async for event in run_consulting_request(payload, generation_service):
        if isinstance(event, TerminalError):
            raise event.error
        if isinstance(event, FinalResult):
            final = event
    if final is None:  # pragma: no cover - run() always ends with a terminal event
        raise FallbackInvocationError(FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE)
    return final

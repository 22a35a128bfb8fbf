"""End-to-end pipeline tests against a scripted generation service."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from services.consulting.exceptions import FallbackErrorKind, FallbackInvocationError
from services.consulting.models import (
    FinalResult,
    GenerationPayload,
    PartialText,
    TerminalError,
)
from services.consulting.pipeline import (
    ConsultingPipeline,
    resolve_consulting_request,
    run_consulting_request,
)
from tests.fixtures.generation import FakeGenerationService, UpstreamError, make_payload


async def _collect(pipeline: ConsultingPipeline, payload: GenerationPayload) -> list:
    return [event async for event in pipeline.run(payload)]


class BlockingGenerationService(FakeGenerationService):
    """Yields its fragments, then waits on upstream forever."""

    async def stream_generate(self, payload: GenerationPayload) -> AsyncIterator[str]:
        self.stream_calls.append(payload)
        try:
            for fragment in self.fragments:
                yield fragment
            await asyncio.Event().wait()
        finally:
            self.stream_closed = True


class TestStreamingPath:
    @pytest.mark.asyncio
    async def test_two_fragments_parse_without_fallback(
        self, fake_service: FakeGenerationService, payload: GenerationPayload
    ) -> None:
        events = await _collect(ConsultingPipeline(fake_service), payload)

        assert events == [
            PartialText(delta='{"a":', accumulated_text='{"a":'),
            PartialText(delta="1}", accumulated_text='{"a":1}'),
            FinalResult(result={"a": 1}, source="stream", strategy="strict"),
        ]
        assert fake_service.generate_calls == []

    @pytest.mark.asyncio
    async def test_fenced_stream_is_unwrapped(self, payload: GenerationPayload) -> None:
        service = FakeGenerationService(["```json\n", '{"ok": true}', "\n```"])

        events = await _collect(ConsultingPipeline(service), payload)

        assert events[-1] == FinalResult(
            result={"ok": True}, source="stream", strategy="fenced"
        )
        assert service.generate_calls == []

    @pytest.mark.asyncio
    async def test_exactly_one_terminal_event(self, payload: GenerationPayload) -> None:
        service = FakeGenerationService(['{"a": 1}'])

        events = await _collect(ConsultingPipeline(service), payload)

        terminal = [e for e in events if isinstance(e, FinalResult | TerminalError)]
        assert len(terminal) == 1
        assert events[-1] is terminal[0]


class TestFallbackPath:
    @pytest.mark.asyncio
    async def test_interruption_triggers_single_fallback(
        self, payload: GenerationPayload
    ) -> None:
        service = FakeGenerationService(
            ['{"a": 1, "b": ', "2}"], fail_after=1, replies=['{"a": 1, "b": 2}']
        )

        events = await _collect(ConsultingPipeline(service), payload)

        assert events == [
            PartialText(delta='{"a": 1, "b": ', accumulated_text='{"a": 1, "b": '),
            FinalResult(result={"a": 1, "b": 2}, source="fallback", strategy="strict"),
        ]
        assert len(service.generate_calls) == 1
        assert service.generate_calls[0] is payload

    @pytest.mark.asyncio
    async def test_interrupted_but_parseable_buffer_is_salvaged(
        self, payload: GenerationPayload
    ) -> None:
        service = FakeGenerationService(['{"a": 1}', " and then"], fail_after=2)

        events = await _collect(ConsultingPipeline(service), payload)

        assert events[-1] == FinalResult(
            result={"a": 1}, source="stream", strategy="brace_salvage"
        )
        assert service.generate_calls == []

    @pytest.mark.asyncio
    async def test_salvage_can_be_disabled(self, payload: GenerationPayload) -> None:
        service = FakeGenerationService(
            ['{"a": 1}'], fail_after=1, replies=['{"a": 2}']
        )
        pipeline = ConsultingPipeline(service, accept_interrupted_salvage=False)

        events = await _collect(pipeline, payload)

        assert events[-1] == FinalResult(
            result={"a": 2}, source="fallback", strategy="strict"
        )

    @pytest.mark.asyncio
    async def test_empty_stream_falls_back(self, payload: GenerationPayload) -> None:
        service = FakeGenerationService(["", ""], replies=['{"a": 1}'])

        events = await _collect(ConsultingPipeline(service), payload)

        assert events == [
            FinalResult(result={"a": 1}, source="fallback", strategy="strict")
        ]

    @pytest.mark.asyncio
    async def test_unparseable_complete_stream_falls_back(
        self, payload: GenerationPayload
    ) -> None:
        service = FakeGenerationService(
            ["Here is ", "your plan"], replies=['{"plan": "x"}']
        )

        events = await _collect(ConsultingPipeline(service), payload)

        assert [type(e) for e in events] == [PartialText, PartialText, FinalResult]
        assert events[-1].source == "fallback"

    @pytest.mark.asyncio
    async def test_double_credential_failure_yields_one_error(self) -> None:
        bad_key = UpstreamError(400, "API_KEY_INVALID")
        service = FakeGenerationService(
            [], fail_after=0, stream_error=bad_key, replies=[bad_key]
        )
        payload = make_payload(credential_override="user-key")

        events = await _collect(ConsultingPipeline(service), payload)

        assert len(events) == 1
        assert isinstance(events[0], TerminalError)
        assert events[0].kind is FallbackErrorKind.CREDENTIAL_INVALID
        assert len(service.generate_calls) == 1

    @pytest.mark.asyncio
    async def test_pro_model_forbidden(self) -> None:
        forbidden = UpstreamError(403, "PERMISSION_DENIED")
        service = FakeGenerationService(
            [], fail_after=0, stream_error=forbidden, replies=[forbidden]
        )
        payload = make_payload(model_identifier="gemini-1.5-pro")

        events = await _collect(ConsultingPipeline(service), payload)

        assert events[-1].kind is FallbackErrorKind.MODEL_TIER_FORBIDDEN

    @pytest.mark.asyncio
    async def test_deeply_nested_output_ends_in_terminal_error(
        self, payload: GenerationPayload
    ) -> None:
        service = FakeGenerationService(["[" * 100_000], replies=["{" * 100_000])

        events = await _collect(ConsultingPipeline(service), payload)

        assert isinstance(events[-1], TerminalError)
        assert events[-1].kind is FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE
        assert len(service.generate_calls) == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_closing_consumer_stops_without_fallback(
        self, payload: GenerationPayload
    ) -> None:
        service = FakeGenerationService(["{", '"a": 1', "}"], replies=["{}"])
        events = ConsultingPipeline(service).run(payload)

        first = await anext(events)
        await events.aclose()

        assert first == PartialText(delta="{", accumulated_text="{")
        assert service.stream_closed is True
        assert service.generate_calls == []

    @pytest.mark.asyncio
    async def test_task_cancellation_stops_without_fallback(
        self, payload: GenerationPayload
    ) -> None:
        service = BlockingGenerationService(["{"], replies=["{}"])
        first_event = asyncio.Event()
        events: list = []

        async def consume() -> None:
            async for event in ConsultingPipeline(service).run(payload):
                events.append(event)
                first_event.set()

        task = asyncio.create_task(consume())
        await first_event.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert events == [PartialText(delta="{", accumulated_text="{")]
        assert service.stream_closed is True
        assert service.generate_calls == []


class TestEntryPoints:
    @pytest.mark.asyncio
    async def test_run_consulting_request(
        self, fake_service: FakeGenerationService, payload: GenerationPayload
    ) -> None:
        events = [e async for e in run_consulting_request(payload, fake_service)]

        assert isinstance(events[-1], FinalResult)

    @pytest.mark.asyncio
    async def test_resolve_returns_final_result(
        self, fake_service: FakeGenerationService, payload: GenerationPayload
    ) -> None:
        final = await resolve_consulting_request(payload, fake_service)

        assert final == FinalResult(result={"a": 1}, source="stream", strategy="strict")

    @pytest.mark.asyncio
    async def test_resolve_raises_typed_error(self, payload: GenerationPayload) -> None:
        service = FakeGenerationService(
            [], replies=[UpstreamError(429, "RESOURCE_EXHAUSTED")]
        )

        with pytest.raises(FallbackInvocationError) as exc_info:
            await resolve_consulting_request(payload, service)

        assert exc_info.value.kind is FallbackErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_generate_once_skips_streaming(
        self, payload: GenerationPayload
    ) -> None:
        service = FakeGenerationService(["{}"], replies=['{"a": 1}'])

        final = await ConsultingPipeline(service).generate_once(payload)

        assert final.source == "fallback"
        assert final.result == {"a": 1}
        assert service.stream_calls == []

"""Consulting endpoints: streaming analysis, one-shot analysis, key check."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from core.config import Settings, get_settings
from core.exceptions import UpgradeRequiredError
from core.ratelimit import check_rate_limit
from schemas.api import ApiResponse
from schemas.consulting import (
    ApiKeyTestRequest,
    ApiKeyTestResponse,
    ConsultingRequest,
    ConsultingResponse,
    ConsultingSseEvent,
)
from services.consulting.gemini_client import GeminiGenerationClient
from services.consulting.models import (
    FinalResult,
    GenerationPayload,
    PartialText,
    TerminalError,
)
from services.consulting.pipeline import ConsultingPipeline
from services.consulting.prompts import build_generation_payload


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consulting", tags=["consulting"])


def get_generation_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> GeminiGenerationClient:
    return GeminiGenerationClient(settings)


def get_consulting_pipeline(
    client: Annotated[GeminiGenerationClient, Depends(get_generation_client)],
) -> ConsultingPipeline:
    return ConsultingPipeline(client)


def enforce_tier_policy(request: ConsultingRequest) -> None:
    """Reject attachments the caller's grade does not cover.

    Raises:
        UpgradeRequiredError: a free-tier caller attached a non-image file.
    """
    if request.file is None:
        return
    if request.grade == "free" and not request.file.is_image:
        raise UpgradeRequiredError(
            "Document and data file analysis requires a paid membership. "
            "Upgrade to analyze this file."
        )


def _prepare_payload(request: ConsultingRequest, settings: Settings) -> GenerationPayload:
    enforce_tier_policy(request)
    return build_generation_payload(request, settings)


@router.post(
    "/stream",
    response_class=StreamingResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def stream_consulting(
    body: ConsultingRequest,
    request: Request,
    pipeline: Annotated[ConsultingPipeline, Depends(get_consulting_pipeline)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse:
    """Stream a consulting analysis as server-sent events."""
    payload = _prepare_payload(body, settings)
    correlation_id = getattr(request.state, "correlation_id", None)

    async def event_stream() -> AsyncGenerator[str, None]:
        yield ConsultingSseEvent(
            event="status", data={"status": "analyzing"}
        ).to_sse()

        events = pipeline.run(payload)
        try:
            async for event in events:
                if isinstance(event, PartialText):
                    yield ConsultingSseEvent(
                        event="message.delta", data={"delta": event.delta}
                    ).to_sse()
                elif isinstance(event, FinalResult):
                    yield ConsultingSseEvent(
                        event="result",
                        data={"result": event.result, "source": event.source},
                    ).to_sse()
                elif isinstance(event, TerminalError):
                    yield ConsultingSseEvent(
                        event="error",
                        data={
                            "kind": event.kind.value,
                            "message": event.error.message,
                            "remediation": event.error.remediation,
                        },
                    ).to_sse()
        except Exception:
            logger.exception(
                "Consulting stream failed unexpectedly (correlation_id=%s)",
                correlation_id,
            )
            yield ConsultingSseEvent(
                event="error",
                data={
                    "kind": "unknown-upstream-failure",
                    "message": "Something went wrong during the AI analysis. "
                    "Please try again shortly.",
                    "remediation": "retry_later",
                },
            ).to_sse()
        finally:
            await events.aclose()

        yield ConsultingSseEvent(event="done").to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "",
    response_model=ApiResponse[ConsultingResponse],
    dependencies=[Depends(check_rate_limit)],
)
async def create_consulting(
    body: ConsultingRequest,
    pipeline: Annotated[ConsultingPipeline, Depends(get_consulting_pipeline)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ApiResponse[ConsultingResponse]:
    """Run a consulting analysis without streaming.

    Typed generation failures propagate to the global exception handler,
    which maps them to 429, 400, 403 or 502.
    """
    payload = _prepare_payload(body, settings)
    final = await pipeline.generate_once(payload)
    return ApiResponse(
        data=ConsultingResponse(result=final.result, source=final.source),
        message="Consulting analysis completed",
    )


@router.post(
    "/api-key/test",
    response_model=ApiResponse[ApiKeyTestResponse],
    dependencies=[Depends(check_rate_limit)],
)
async def test_api_key(
    body: ApiKeyTestRequest,
    client: Annotated[GeminiGenerationClient, Depends(get_generation_client)],
) -> ApiResponse[ApiKeyTestResponse]:
    """Check whether a caller-supplied Gemini key works."""
    valid = await client.test_api_key(body.api_key)
    return ApiResponse(
        data=ApiKeyTestResponse(valid=valid),
        message="API key is valid" if valid else "API key could not be verified",
    )

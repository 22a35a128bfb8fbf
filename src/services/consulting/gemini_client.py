"""Gemini adapter for consulting generation.

Implements ``GenerationServiceProtocol`` on top of google-genai. The adapter
does no parsing or classification of its own; upstream exceptions propagate
to the pipeline, which decides how to recover.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types

from core.config import Settings, get_settings
from schemas.consulting import ConsultingResult
from services.consulting.models import GenerationPayload
from services.consulting.prompts import API_KEY_PROBE_PROMPT, SYSTEM_INSTRUCTION


logger = logging.getLogger(__name__)

API_KEY_PROBE_MAX_TOKENS = 10


class GeminiGenerationClient:
    """Streaming and non-streaming Gemini calls for one configured backend."""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def _get_client(self, api_key: str | None = None) -> Any:
        return genai.Client(api_key=api_key or self._settings.GEMINI_API_KEY)

    def _build_contents(self, payload: GenerationPayload) -> list[types.Content]:
        parts = [types.Part.from_text(text=payload.prompt_content)]
        if payload.attachment is not None:
            parts.append(
                types.Part.from_bytes(
                    data=payload.attachment.data,
                    mime_type=payload.attachment.mime_type,
                )
            )
        return [types.Content(role="user", parts=parts)]

    def _build_config(self, *, structured: bool) -> types.GenerateContentConfig:
        # Streaming stays schema-free so partial output arrives as plain text
        return types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            temperature=self._settings.GENERATION_TEMPERATURE,
            top_p=self._settings.GENERATION_TOP_P,
            top_k=self._settings.GENERATION_TOP_K,
            max_output_tokens=self._settings.GENERATION_MAX_OUTPUT_TOKENS,
            response_mime_type="application/json",
            response_schema=ConsultingResult if structured else None,
        )

    async def stream_generate(self, payload: GenerationPayload) -> AsyncIterator[str]:
        """Yield text fragments as Gemini produces them."""
        client = self._get_client(payload.credential_override)
        stream = await client.aio.models.generate_content_stream(
            model=payload.model_identifier,
            contents=self._build_contents(payload),
            config=self._build_config(structured=False),
        )
        try:
            async for chunk in stream:
                text = chunk.text
                if text:
                    yield text
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def generate(self, payload: GenerationPayload) -> str:
        """Return the complete reply text of one non-streaming call."""
        client = self._get_client(payload.credential_override)
        response = await client.aio.models.generate_content(
            model=payload.model_identifier,
            contents=self._build_contents(payload),
            config=self._build_config(structured=True),
        )
        if not response.text:
            logger.warning(
                "Empty Gemini response for model=%s", payload.model_identifier
            )
            return ""
        text: str = response.text
        return text

    async def test_api_key(self, api_key: str) -> bool:
        """Check that a caller-supplied key can reach the test model."""
        client = self._get_client(api_key)
        try:
            response = await client.aio.models.generate_content(
                model=self._settings.API_KEY_TEST_MODEL,
                contents=API_KEY_PROBE_PROMPT,
                config=types.GenerateContentConfig(
                    max_output_tokens=API_KEY_PROBE_MAX_TOKENS,
                ),
            )
        except Exception as e:
            logger.info("API key test failed: %s", e.__class__.__name__)
            return False
        return bool(response.text)

"""Tests for the Gemini adapter with a mocked google-genai client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.config import get_settings
from services.consulting.gemini_client import GeminiGenerationClient
from services.consulting.models import InlineAttachment
from tests.fixtures.generation import make_payload


def _chunk(text: str | None) -> MagicMock:
    chunk = MagicMock()
    chunk.text = text
    return chunk


class _ChunkStream:
    """Async iterator standing in for the SDK's streaming response."""

    def __init__(self, texts: list[str | None]) -> None:
        self._chunks = iter([_chunk(t) for t in texts])
        self.closed = False

    def __aiter__(self) -> _ChunkStream:
        return self

    async def __anext__(self) -> MagicMock:
        try:
            return next(self._chunks)
        except StopIteration:
            raise StopAsyncIteration from None

    async def aclose(self) -> None:
        self.closed = True


def _mock_client() -> MagicMock:
    mock_client = MagicMock()
    mock_client.aio = MagicMock()
    mock_client.aio.models = MagicMock()
    return mock_client


class TestStreamGenerate:
    @pytest.mark.asyncio
    async def test_yields_non_empty_chunk_text(self) -> None:
        stream = _ChunkStream(['{"a":', None, "", "1}"])
        mock_client = _mock_client()
        mock_client.aio.models.generate_content_stream = AsyncMock(return_value=stream)

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ):
            client = GeminiGenerationClient(get_settings())
            got = [t async for t in client.stream_generate(make_payload())]

        assert got == ['{"a":', "1}"]
        assert stream.closed is True

        kwargs = mock_client.aio.models.generate_content_stream.call_args.kwargs
        assert kwargs["model"] == "gemini-1.5-flash"
        config = kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.response_schema is None
        assert config.temperature == 0.7
        assert config.top_p == 0.95
        assert config.top_k == 40
        assert config.max_output_tokens == 2048

    @pytest.mark.asyncio
    async def test_uses_credential_override(self) -> None:
        mock_client = _mock_client()
        mock_client.aio.models.generate_content_stream = AsyncMock(
            return_value=_ChunkStream([])
        )

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ) as client_cls:
            client = GeminiGenerationClient(get_settings())
            payload = make_payload(credential_override="user-key")
            _ = [t async for t in client.stream_generate(payload)]

        client_cls.assert_called_once_with(api_key="user-key")

    @pytest.mark.asyncio
    async def test_attachment_sent_inline(self) -> None:
        mock_client = _mock_client()
        mock_client.aio.models.generate_content_stream = AsyncMock(
            return_value=_ChunkStream(["{}"])
        )
        payload = make_payload(
            attachment=InlineAttachment(mime_type="image/png", data=b"\x89PNG")
        )

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ):
            client = GeminiGenerationClient(get_settings())
            _ = [t async for t in client.stream_generate(payload)]

        contents = mock_client.aio.models.generate_content_stream.call_args.kwargs[
            "contents"
        ]
        parts = contents[0].parts
        assert parts[0].text == payload.prompt_content
        assert parts[1].inline_data.mime_type == "image/png"
        assert parts[1].inline_data.data == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_upstream_errors_propagate(self) -> None:
        mock_client = _mock_client()
        mock_client.aio.models.generate_content_stream = AsyncMock(
            side_effect=RuntimeError("boom")
        )

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ):
            client = GeminiGenerationClient(get_settings())
            with pytest.raises(RuntimeError, match="boom"):
                _ = [t async for t in client.stream_generate(make_payload())]


class TestGenerate:
    @pytest.mark.asyncio
    async def test_returns_response_text_with_schema(self) -> None:
        mock_response = MagicMock()
        mock_response.text = '{"a": 1}'
        mock_client = _mock_client()
        mock_client.aio.models.generate_content = AsyncMock(return_value=mock_response)

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ):
            client = GeminiGenerationClient(get_settings())
            text = await client.generate(make_payload())

        assert text == '{"a": 1}'
        config = mock_client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.response_schema is not None

    @pytest.mark.asyncio
    async def test_empty_response_returns_empty_string(self) -> None:
        mock_response = MagicMock()
        mock_response.text = None
        mock_client = _mock_client()
        mock_client.aio.models.generate_content = AsyncMock(return_value=mock_response)

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ):
            client = GeminiGenerationClient(get_settings())
            assert await client.generate(make_payload()) == ""


class TestApiKeyProbe:
    @pytest.mark.asyncio
    async def test_valid_key(self) -> None:
        mock_response = MagicMock()
        mock_response.text = "OK"
        mock_client = _mock_client()
        mock_client.aio.models.generate_content = AsyncMock(return_value=mock_response)

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ) as client_cls:
            client = GeminiGenerationClient(get_settings())
            assert await client.test_api_key("user-key") is True

        client_cls.assert_called_once_with(api_key="user-key")
        config = mock_client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.max_output_tokens == 10

    @pytest.mark.asyncio
    async def test_rejected_key(self) -> None:
        mock_client = _mock_client()
        mock_client.aio.models.generate_content = AsyncMock(
            side_effect=RuntimeError("API_KEY_INVALID")
        )

        with patch(
            "services.consulting.gemini_client.genai.Client", return_value=mock_client
        ):
            client = GeminiGenerationClient(get_settings())
            assert await client.test_api_key("bad-key") is False

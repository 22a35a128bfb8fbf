"""Schemas for consulting requests, results and SSE streaming.

`ConsultingResult` documents the JSON document the model is asked to
produce. The pipeline itself treats results as opaque JSON; the model is
used as the response schema for non-streaming generation and in the OpenAPI
docs.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


MAX_SSE_EVENT_BYTES: int = 65_536
MAX_ATTACHMENT_BYTES: int = 10 * 1024 * 1024

UserGrade = Literal["free", "basic", "premium", "admin"]

_DATA_URL_PREFIX = re.compile(r"^data:.*?;base64,")


class FileAttachment(BaseModel):
    """File uploaded with a consulting request, base64 encoded."""

    name: str | None = Field(default=None, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=255)
    data: str = Field(..., min_length=1, description="Base64 payload or data URL")

    model_config = ConfigDict(extra="forbid")

    @field_validator("data")
    @classmethod
    def strip_data_url(cls, v: str) -> str:
        """Accept `data:<mime>;base64,<payload>` as well as bare base64."""
        payload = _DATA_URL_PREFIX.sub("", v.strip(), count=1)
        try:
            decoded = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("File data must be valid base64") from e
        if len(decoded) > MAX_ATTACHMENT_BYTES:
            raise ValueError("File exceeds the maximum supported size")
        return payload

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)


class ConsultingRequest(BaseModel):
    """Request payload for a consulting analysis."""

    user_request: str = Field(default="", max_length=8000)
    category: str = Field(default="general", max_length=100)
    preferred_platform: str = Field(default="auto", max_length=100)
    grade: UserGrade = "free"
    file: FileAttachment | None = None
    custom_api_key: str | None = Field(
        default=None,
        max_length=200,
        description="Caller-owned Gemini API key used instead of the server key",
    )
    selected_model: str | None = Field(default=None, max_length=100)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _require_request_or_file(self) -> ConsultingRequest:
        if not self.user_request.strip() and self.file is None:
            raise ValueError("Either user_request or file must be provided")
        return self


class FileAnalysis(BaseModel):
    insights: str
    strategicImprovements: str


class Diagnosis(BaseModel):
    selectedPlatform: str
    pipelineStrategy: str


class RoiEstimate(BaseModel):
    savedHours: str
    economicValue: str
    architectComment: str


class ConsultingResult(BaseModel):
    """Shape of the consulting artifact requested from the model."""

    isClarificationNeeded: bool
    clarificationMessage: str | None = None
    fileAnalysis: FileAnalysis | None = None
    diagnosis: Diagnosis
    masterPrompt: str | None = None
    roi: RoiEstimate | None = None


class ConsultingResponse(BaseModel):
    """Response for the non-streaming consulting endpoint."""

    result: Any = Field(
        ..., description="Parsed consulting artifact as returned by the model"
    )
    source: Literal["stream", "fallback"]

    model_config = ConfigDict(extra="forbid")


class ApiKeyTestRequest(BaseModel):
    api_key: str = Field(..., min_length=1, max_length=200)

    model_config = ConfigDict(extra="forbid")


class ApiKeyTestResponse(BaseModel):
    valid: bool


class ConsultingSseEvent(BaseModel):
    """SSE envelope for consulting streams.

    Event order: one `status`, any number of `message.delta`, then one of
    `result` or `error`, and always a final `done`.
    """

    event: Literal["status", "message.delta", "result", "error", "done"]
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def to_sse(self) -> str:
        """Serialize event to SSE format with size validation.

        ``result`` events are exempt from the cap: the parsed result is
        already bounded by the output token limit.
        """
        payload = self.model_dump_json()
        if (
            self.event != "result"
            and len(payload.encode("utf-8")) > MAX_SSE_EVENT_BYTES
        ):
            raise ValueError("SSE payload exceeded MAX_SSE_EVENT_BYTES")
        return f"data: {payload}\n\n"

"""Typed values flowing through the consulting generation pipeline.

* GenerationPayload - immutable request contract shared by the streaming and
  non-streaming upstream calls.
* StreamSession     - per-request accumulation buffer and state machine.
* ParseSuccess / ParseFailure - tagged outcome of a JSON extraction attempt.
* PartialText / FinalResult / TerminalError - events yielded to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from services.consulting.exceptions import FallbackErrorKind, FallbackInvocationError


@dataclass(frozen=True, slots=True)
class InlineAttachment:
    """File content sent inline alongside the prompt text."""

    mime_type: str
    data: bytes
    name: str | None = None


@dataclass(frozen=True, slots=True)
class GenerationPayload:
    """Logical request sent to the generation service.

    Frozen so the model and credential cannot change mid-session; a different
    model or key means a new session.
    """

    prompt_content: str
    model_identifier: str
    credential_override: str | None = None
    tier: str | None = None
    attachment: InlineAttachment | None = None

    @property
    def uses_custom_credential(self) -> bool:
        return bool(self.credential_override)


class StreamState(StrEnum):
    STREAMING = "streaming"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"
    EMPTY = "empty"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class StreamSession:
    """Accumulation buffer for a single streaming attempt.

    `accumulated_text` is append-only: fragments are added while the session
    is streaming and the buffer is never truncated afterwards.
    """

    payload: GenerationPayload
    accumulated_text: str = ""
    state: StreamState = StreamState.STREAMING
    error_state: BaseException | None = None
    fragment_count: int = 0

    @property
    def is_complete(self) -> bool:
        return self.state is StreamState.COMPLETE

    @property
    def is_terminal(self) -> bool:
        return self.state is not StreamState.STREAMING

    def append(self, fragment: str) -> None:
        if self.state is not StreamState.STREAMING:
            raise RuntimeError(f"Cannot append to a session in state {self.state}")
        self.accumulated_text += fragment
        self.fragment_count += 1

    def mark_finished(self) -> None:
        """Record a clean end of the upstream sequence."""
        self.state = (
            StreamState.COMPLETE if self.fragment_count else StreamState.EMPTY
        )

    def mark_interrupted(self, error: BaseException) -> None:
        self.error_state = error
        self.state = StreamState.INTERRUPTED

    def mark_cancelled(self) -> None:
        self.state = StreamState.CANCELLED


@dataclass(frozen=True, slots=True)
class ParseSuccess:
    value: Any
    strategy: str


@dataclass(frozen=True, slots=True)
class ParseFailure:
    reason: str


ParseAttemptResult = ParseSuccess | ParseFailure


@dataclass(frozen=True, slots=True)
class PartialText:
    """One fragment as received, plus the buffer after appending it."""

    delta: str
    accumulated_text: str


@dataclass(frozen=True, slots=True)
class FinalResult:
    """Canonical parsed result of a session."""

    result: Any
    source: Literal["stream", "fallback"]
    strategy: str | None = None


@dataclass(frozen=True, slots=True)
class TerminalError:
    """Explicit terminal failure; wraps the typed fallback error."""

    error: FallbackInvocationError

    @property
    def kind(self) -> FallbackErrorKind:
        return self.error.kind


ConsultingEvent = PartialText | FinalResult | TerminalError

"""Service interfaces for the consulting pipeline.

The pipeline only depends on these protocols so the Gemini adapter can be
swapped for fakes in tests or another provider later.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from services.consulting.models import GenerationPayload


class GenerationServiceProtocol(Protocol):
    """Upstream text generation with a streaming and a one-shot variant."""

    def stream_generate(self, payload: GenerationPayload) -> AsyncIterator[str]:
        """Return a lazy, finite, non-restartable sequence of text fragments.

        Implementations should be async generator functions so that no
        network I/O happens until the caller starts iterating.
        """
        ...

    async def generate(self, payload: GenerationPayload) -> str:
        """Run the same request without streaming and return the full text."""
        ...

"""Stream consumption and interruption handling for a single session."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from services.consulting.exceptions import StreamTransportError
from services.consulting.models import StreamSession, StreamState


__all__ = ["consume_stream", "guard_stream"]


logger = logging.getLogger(__name__)


async def consume_stream(
    session: StreamSession, fragments: AsyncIterator[str]
) -> AsyncIterator[str]:
    """Append each non-empty fragment to the session buffer and re-yield it.

    Transport exceptions propagate unchanged; whatever was appended before
    the failure stays in ``session.accumulated_text``.
    """
    async for fragment in fragments:
        if not fragment:
            continue
        session.append(fragment)
        yield fragment


async def guard_stream(
    session: StreamSession, fragments: AsyncIterator[str]
) -> AsyncIterator[str]:
    """Consume ``fragments`` and settle the session state instead of raising.

    A transport failure moves the session to ``interrupted`` and keeps the
    partial buffer for salvage. Cancellation (the caller closing this
    generator, or task cancellation) moves it to ``cancelled`` and closes the
    upstream iterator; nothing is salvaged in that case.
    """
    consumer = consume_stream(session, fragments)
    finished = False
    try:
        async for fragment in consumer:
            yield fragment
        finished = True
    except Exception as exc:  # noqa: BLE001
        session.mark_interrupted(StreamTransportError.from_exception(exc))
        logger.warning(
            "Generation stream interrupted after %d fragments (%d chars) "
            "for model=%s: %s",
            session.fragment_count,
            len(session.accumulated_text),
            session.payload.model_identifier,
            exc.__class__.__name__,
        )
        return
    finally:
        if not finished and session.state is StreamState.STREAMING:
            session.mark_cancelled()
            logger.info(
                "Generation stream cancelled after %d fragments",
                session.fragment_count,
            )
            await consumer.aclose()
            await _close(fragments)

    session.mark_finished()
    logger.debug(
        "Generation stream finished: state=%s fragments=%d chars=%d",
        session.state,
        session.fragment_count,
        len(session.accumulated_text),
    )


async def _close(fragments: AsyncIterator[str]) -> None:
    aclose = getattr(fragments, "aclose", None)
    if aclose is not None:
        await aclose()

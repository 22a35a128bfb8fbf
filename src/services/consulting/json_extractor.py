"""Best-effort JSON extraction from model output.

Streamed generations are not guaranteed to be well formed: the buffer may be
truncated, wrapped in a Markdown code fence, or surrounded by conversational
text. `extract_json` tries an ordered list of strategies, strictest first, and
stops at the first success so well-formed responses never hit the salvage
heuristics.

Each strategy is a pure function ``str -> ParseAttemptResult`` and can be
tested on its own.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence

from services.consulting.models import ParseAttemptResult, ParseFailure, ParseSuccess


__all__ = [
    "EXTRACTION_STRATEGIES",
    "extract_json",
    "parse_brace_slice",
    "parse_fenced",
    "parse_strict",
    "strip_code_fences",
]


ExtractionStrategy = Callable[[str], ParseAttemptResult]

REASON_EMPTY = "empty buffer"
REASON_NOT_JSON = "not valid JSON"
REASON_NO_FENCE = "no code fence found"
REASON_NO_STRUCTURE = "no JSON structure found"
REASON_MALFORMED = "malformed JSON within detected braces"

_LEADING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")


def _loads(text: str, strategy: str, failure_reason: str) -> ParseAttemptResult:
    try:
        return ParseSuccess(value=json.loads(text), strategy=strategy)
    except (ValueError, RecursionError):
        return ParseFailure(reason=failure_reason)


def parse_strict(text: str) -> ParseAttemptResult:
    """Parse the raw buffer as-is."""
    return _loads(text, "strict", REASON_NOT_JSON)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang line and a trailing ``` marker, if present.

    Each side is handled independently so a truncated stream that opened a
    fence but never closed it is still unwrapped.
    """
    stripped = _LEADING_FENCE.sub("", text, count=1)
    return _TRAILING_FENCE.sub("", stripped, count=1)


def parse_fenced(text: str) -> ParseAttemptResult:
    """Strip Markdown code fences, then parse strictly."""
    unwrapped = strip_code_fences(text)
    if unwrapped == text:
        return ParseFailure(reason=REASON_NO_FENCE)
    return _loads(unwrapped, "fenced", REASON_NOT_JSON)


def parse_brace_slice(text: str) -> ParseAttemptResult:
    """Parse the substring from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return ParseFailure(reason=REASON_NO_STRUCTURE)
    return _loads(text[start : end + 1], "brace_salvage", REASON_MALFORMED)


EXTRACTION_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    parse_strict,
    parse_fenced,
    parse_brace_slice,
)


def extract_json(
    text: str, strategies: Sequence[ExtractionStrategy] = EXTRACTION_STRATEGIES
) -> ParseAttemptResult:
    """Return the first successful strategy outcome, or the last failure.

    An empty buffer fails immediately without running any strategy.
    """
    if not text:
        return ParseFailure(reason=REASON_EMPTY)

    outcome: ParseAttemptResult = ParseFailure(reason=REASON_NO_STRUCTURE)
    for strategy in strategies:
        outcome = strategy(text)
        if isinstance(outcome, ParseSuccess):
            return outcome
    return outcome

"""Pull a JSON object or array out of raw model text.

Models wrap JSON in markdown fences, prepend chatter, leave trailing commas,
or get cut off at the token limit. ``extract_json`` handles the first three;
a truncated response yields ``None`` so the caller can ask for a repair.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_CLOSERS = {"{": "}", "[": "]"}

JsonValue = dict | list


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    fenced = _FENCE_RE.match(stripped)
    return fenced.group(1).strip() if fenced else stripped


def _loads(candidate: str) -> JsonValue | None:
    for attempt in (candidate, _TRAILING_COMMA_RE.sub(r"\1", candidate)):
        try:
            parsed = json.loads(attempt)
        except ValueError:
            continue
        # bare scalars ("x", 42) are not a usable record
        return parsed if isinstance(parsed, (dict, list)) else None
    return None


def _balanced_spans(text: str) -> Iterator[str]:
    """Yield every top-level ``{...}`` / ``[...]`` span, left to right.

    Brackets inside string literals are ignored; a span whose brackets do not
    pair up is skipped.
    """
    stack: list[str] = []
    start = -1
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"' and stack:
            in_string = True
        elif ch in _CLOSERS:
            if not stack:
                start = i
            stack.append(_CLOSERS[ch])
        elif stack and ch in ("}", "]"):
            if ch != stack.pop():
                stack.clear()
                continue
            if not stack:
                yield text[start : i + 1]


def extract_json(text: str | None) -> JsonValue | None:
    """First JSON object or array found in *text*, or ``None``."""
    if not text or not text.strip():
        return None

    body = strip_code_fence(text)
    parsed = _loads(body)
    if parsed is not None:
        return parsed

    for span in _balanced_spans(body):
        parsed = _loads(span)
        if parsed is not None:
            logger.debug("Recovered JSON span of %d chars from %d chars of text", len(span), len(body))
            return parsed
    return None

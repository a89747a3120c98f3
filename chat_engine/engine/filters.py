"""Strip reasoning/thinking spans from model output."""

from __future__ import annotations

import re

MAX_PASSES = 10

# Title extraction checks tags in this order.
_TAG_PRIORITY = ("think", "redacted_reasoning", "thinking", "reasoning")

_SPAN_PATTERNS = {
    tag: re.compile(rf"<{tag}>(.*?)</{tag}>", re.IGNORECASE | re.DOTALL)
    for tag in _TAG_PRIORITY
}


def filter_for_display(text: str) -> str:
    """Remove every well-formed reasoning span.

    Runs repeatedly (at most ``MAX_PASSES`` times) so that spans exposed by a
    previous removal are caught too. Unterminated tags are left as-is.
    """
    result = text
    for _ in range(MAX_PASSES):
        previous = result
        for pattern in _SPAN_PATTERNS.values():
            result = pattern.sub("", result)
        if result == previous:
            break
    return result


def filter_for_title(text: str) -> str:
    """Pick text suitable for a chat title.

    Returns the trimmed *inner* content of the first matching reasoning span,
    so ``"<think>a</think>b"`` yields ``"a"`` rather than the visible ``"b"``.
    NOTE: this looks like an upstream quirk (the intent may have been the text
    after the tags) and is kept deliberately.

    Without any span, falls back to the display filter. An empty string means
    the caller has to supply its own default title.
    """
    for tag in _TAG_PRIORITY:
        match = _SPAN_PATTERNS[tag].search(text)
        if match:
            return match.group(1).strip()
    return filter_for_display(text).strip()

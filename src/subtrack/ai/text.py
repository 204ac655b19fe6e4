"""
Message text preparation for the remote model.

- Truncation never cuts mid-word and appends a visible marker
- Known prompt-injection phrases are replaced before anything leaves the process
"""

import re

TRUNCATION_MARKER = "... [truncated]"
REDACTION_MARKER = "[REDACTED]"

INJECTION_PHRASES = (
    "ignore all previous instructions",
    "ignore previous instructions",
    "disregard previous instructions",
    "forget your instructions",
    "new instructions",
    "system prompt",
    "you are now",
)

# Longest phrases first so "ignore all previous instructions" wins over its parts
_INJECTION_RE = re.compile(
    "|".join(
        r"\s+".join(re.escape(word) for word in phrase.split())
        for phrase in sorted(INJECTION_PHRASES, key=len, reverse=True)
    ),
    re.IGNORECASE,
)


def sanitize(text: str | None) -> str:
    """Replace injection trigger phrases (any case, any spacing) with a redaction marker."""
    if not text:
        return ""
    return _INJECTION_RE.sub(REDACTION_MARKER, text)


def truncate_at_word_boundary(
    text: str | None, limit: int, marker: str = TRUNCATION_MARKER
) -> str:
    """
    Cut text to at most `limit` characters at the nearest preceding word boundary.

    Text within the limit is returned unchanged. A truncated result is the
    kept prefix plus `marker`, and is always shorter than the input.
    """
    if not text:
        return ""
    if len(text) <= limit:
        return text

    budget = max(0, min(limit, len(text) - len(marker) - 1))
    cut = text[:budget]

    if budget < len(text) and not text[budget].isspace():
        boundary = max(cut.rfind(" "), cut.rfind("\n"), cut.rfind("\t"))
        if boundary > 0:
            cut = cut[:boundary]

    return cut.rstrip() + marker

"""Post-processing for story continuations returned by the model."""

from __future__ import annotations

import re

_LEAK_PATTERNS = [
    # Echoed prompt labels.
    re.compile(r"^(?:prompt|story content|提示|小说内容)\s*[:：].*?$", re.IGNORECASE | re.MULTILINE),
    # The assistant introducing itself.
    re.compile(
        r"^(?:as a creative (?:fiction|writing) assistant|i am a creative (?:fiction|writing) assistant"
        r"|作为一个创意小说写作助手|我是一个创意小说写作助手).*?$",
        re.IGNORECASE | re.MULTILINE,
    ),
    # Lead-ins before the actual prose.
    re.compile(
        r"^(?:continuing the story|here is the next part(?: of the story)?|the story continues"
        r"|继续撰写故事|请继续|下面是故事的下一部分)\s*[:：]?",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(
        r"^(?:sure|okay|ok|of course|好的|没问题)[,，!！.]?\s*(?:here(?:'s| is)|based on|根据|基于).*?[:：]\s*$",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(r"```[\s\S]*?```"),
]

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

MIN_OVERLAP = 5
MAX_OVERLAP = 20


def sanitize_generated_content(content: str) -> str:
    """Strip prompt leakage and assistant chatter from generated prose."""

    if not content:
        return ""

    sanitized = content
    for pattern in _LEAK_PATTERNS:
        sanitized = pattern.sub("", sanitized)

    sanitized = _EXCESS_BLANK_LINES.sub("\n\n", sanitized)
    return sanitized.strip()


def strip_repeated_overlap(existing: str, generated: str) -> str:
    """Drop the start of ``generated`` when it repeats the end of ``existing``.

    Looks for the longest run of 5 to 20 characters that ends ``existing`` and
    also begins ``generated``. This is a heuristic; short coincidental matches
    inside that window are removed too.
    """

    tail = (existing or "").rstrip()
    head = (generated or "").lstrip()
    if not tail or not head:
        return generated or ""

    upper = min(MAX_OVERLAP, len(tail), len(head))
    for size in range(upper, MIN_OVERLAP - 1, -1):
        if tail[-size:] == head[:size]:
            return head[size:].lstrip()
    return generated

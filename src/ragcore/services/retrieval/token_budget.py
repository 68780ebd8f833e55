from __future__ import annotations

import math
import re
from typing import Any, Callable, Sequence, TypeVar

T = TypeVar("T")

CHARS_PER_TOKEN = 4

_SENTENCE_END = re.compile(r"[.!?](?=\s)")
_WHITESPACE = re.compile(r"\s")


def estimate_tokens(text: str | None) -> int:
    """~1 token per 4 characters; depends on length only."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def total_tokens(texts: Sequence[str]) -> int:
    return sum(estimate_tokens(text) for text in texts)


def hard_cap(text: str | None, max_tokens: int) -> str:
    """Return a prefix of ``text`` whose estimate fits ``max_tokens``.

    The cut prefers the last sentence end, then the last whitespace, as long as
    that keeps at least half of the allowed characters. Otherwise the prefix is
    cut at the exact character limit.
    """
    source = text or ""
    if max_tokens <= 0 or not source:
        return ""
    if estimate_tokens(source) <= max_tokens:
        return source

    max_chars = max_tokens * CHARS_PER_TOKEN
    window = source[:max_chars]
    floor = max_chars // 2

    sentence_ends = [match.end() for match in _SENTENCE_END.finditer(window)]
    if sentence_ends and sentence_ends[-1] >= floor:
        return window[: sentence_ends[-1]]

    spaces = [match.start() for match in _WHITESPACE.finditer(window)]
    if spaces and spaces[-1] >= floor:
        return window[: spaces[-1]]

    return window


def prune_to_budget(
    items: Sequence[T],
    get_text: Callable[[T], str],
    keep_key: Callable[[T], Any],
    max_tokens: int,
) -> list[T]:
    """Greedily keep items in ``keep_key`` order until the budget is spent.

    Items are visited in ascending ``keep_key`` order (stable for ties); the
    first item that does not fit ends the scan. Kept items are returned in
    their original relative order.
    """
    ranked = sorted(range(len(items)), key=lambda position: keep_key(items[position]))
    kept: set[int] = set()
    used = 0
    for position in ranked:
        cost = estimate_tokens(get_text(items[position]))
        if used + cost > max_tokens:
            break
        kept.add(position)
        used += cost
    return [item for position, item in enumerate(items) if position in kept]

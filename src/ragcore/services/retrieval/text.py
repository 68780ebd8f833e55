from __future__ import annotations

import json
import re
from typing import Any

from ragcore.services.retrieval.token_budget import estimate_tokens, hard_cap

BASE_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "of", "to", "in", "on", "for", "with",
        "as", "by", "is", "are", "was", "were", "be", "been", "it", "this", "that",
        "from", "at", "which", "will", "can", "would", "should", "could", "about",
        "into", "over", "than", "then", "so", "if", "we", "you", "they", "i",
    }
)

HISTORY_STOP_WORDS = frozenset(
    {
        "visited", "visit", "today", "yesterday", "last", "week", "weeks", "month",
        "months", "days", "day", "recent", "show", "history", "what", "did", "my",
    }
)

INDEX_STOP_WORDS = BASE_STOP_WORDS | HISTORY_STOP_WORDS
QUERY_STOP_WORDS = BASE_STOP_WORDS | {"what", "how", "why", "when", "where", "show", "give", "tell"}

_NON_WORD = re.compile(r"[^\w\s-]+")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE_RUN = re.compile(r"\s+")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def tokenize(text: str | None) -> list[str]:
    cleaned = _NON_WORD.sub(" ", (text or "").lower())
    tokens: list[str] = []
    for raw in cleaned.split():
        token = raw.strip("-_")
        if token:
            tokens.append(token)
    return tokens


def content_tokens(text: str | None, stop_words: frozenset[str] = QUERY_STOP_WORDS) -> list[str]:
    return [token for token in tokenize(text) if token not in stop_words]


def split_sentences(text: str | None) -> list[str]:
    normalized = _WHITESPACE_RUN.sub(" ", (text or "").strip())
    if not normalized:
        return []
    return _SENTENCE_SPLIT.split(normalized)


def leading_sentences(text: str | None, max_tokens: int) -> str:
    picked: list[str] = []
    used = 0
    for sentence in split_sentences(text):
        cost = estimate_tokens(sentence) + (1 if picked else 0)
        if used + cost > max_tokens:
            break
        picked.append(sentence)
        used += cost

    joined = " ".join(picked).strip()
    if joined:
        return joined
    return hard_cap(_WHITESPACE_RUN.sub(" ", (text or "").strip()), max_tokens)


def extract_key_terms(text: str | None, limit: int) -> list[str]:
    counts: dict[str, int] = {}
    for token in tokenize(text):
        if token in INDEX_STOP_WORDS or len(token) <= 2:
            continue
        counts[token] = counts.get(token, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [term for term, _ in ranked[:limit]]


def parse_json_reply(reply: str) -> Any:
    """Decode a model reply that should be JSON, tolerating a fenced code block."""
    cleaned = _CODE_FENCE.sub("", (reply or "").strip())
    return json.loads(cleaned)

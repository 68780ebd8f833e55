from __future__ import annotations

from datetime import date
import re

from ragcore.services.retrieval.types import Index, Intent, QueryClassification

_INTENT_PATTERNS: tuple[tuple[Intent, re.Pattern[str]], ...] = (
    ("definition", re.compile(r"\b(?:define|definition|meaning of)\b")),
    ("howto", re.compile(r"\bhow\b")),
    ("comparison", re.compile(r"\b(?:compare|comparison|versus|vs\.?|difference)\b")),
    ("quote", re.compile(r"\b(?:quote|exact words|citation|cite)\b")),
)

_LAST_N_DAYS = re.compile(r"\b(?:last|past)\s+(\d{1,3})\s+days?\b")
_LAST_WEEK = re.compile(r"\b(?:last|past|this)\s+week\b")
_LAST_MONTH = re.compile(r"\b(?:last|past|this)\s+month\b")
_TODAY = re.compile(r"\btoday\b")
_YESTERDAY = re.compile(r"\byesterday\b")
_SEARCHES_ONLY = re.compile(r"\b(?:searches|searched|search queries|searching)\b")
_LIMIT = re.compile(
    r"\b(?:top|first|last|show|latest)\s+(\d{1,4})\b(?!\s+(?:days?|weeks?|months?)\b)"
)
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")


def _intent(lowered: str) -> Intent:
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(lowered):
            return intent
    return "fact"


def _time_window(lowered: str) -> tuple[str | None, int | None]:
    match = _LAST_N_DAYS.search(lowered)
    if match:
        days = max(1, int(match.group(1)))
        return f"last{days}", days
    if _YESTERDAY.search(lowered):
        return "yesterday", 1
    if _TODAY.search(lowered):
        return "today", 1
    if _LAST_WEEK.search(lowered):
        return "last7", 7
    if _LAST_MONTH.search(lowered):
        return "last30", 30
    return None, None


def _explicit_date(lowered: str) -> date | None:
    match = _ISO_DATE.search(lowered)
    if match is None:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def _mentioned_heading(lowered: str, index: Index | None) -> str | None:
    if index is None:
        return None
    for section in index.sections:
        # Corpus headings carry a "<title>: " prefix.
        heading = section.heading.rsplit(": ", 1)[-1].strip().lower()
        if len(heading) >= 3 and re.search(rf"\b{re.escape(heading)}\b", lowered):
            return section.heading
    return None


def classify_query(query: str, index: Index | None = None) -> QueryClassification:
    """Advisory flags for a query; pure string heuristics, never a model call."""
    lowered = (query or "").lower()
    intent = _intent(lowered)
    time_range, days = _time_window(lowered)
    limit_match = _LIMIT.search(lowered)

    return QueryClassification(
        intent=intent,
        breadth="wide" if intent == "comparison" else "narrow",
        time_range=time_range,
        days=days,
        searches_only=bool(_SEARCHES_ONLY.search(lowered)),
        limit=int(limit_match.group(1)) if limit_match else None,
        explicit_date=_explicit_date(lowered),
        mentions_heading=_mentioned_heading(lowered, index),
    )

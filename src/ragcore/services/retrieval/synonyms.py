from __future__ import annotations

import logging

from ragcore.errors import AbortedError
from ragcore.llm import PromptClient
from ragcore.services.retrieval.text import content_tokens, parse_json_reply
from ragcore.services.retrieval.types import Index

logger = logging.getLogger(__name__)

STATIC_SYNONYMS: dict[str, tuple[str, ...]] = {
    "results": ("findings", "outcomes", "observations"),
    "methods": ("methodology", "approach", "procedure", "technique"),
    "discussion": ("analysis", "interpretation", "insights"),
    "conclusion": ("summary", "wrap-up", "closing"),
    "limitation": ("constraints", "drawbacks", "weaknesses"),
    "performance": ("accuracy", "efficiency"),
    "compare": ("versus", "difference"),
}

MIN_SHARED_CHARS = 3
MAX_PROMPT_TOPICS = 40


def _trigrams(token: str) -> set[str]:
    return {token[i : i + MIN_SHARED_CHARS] for i in range(len(token) - MIN_SHARED_CHARS + 1)}


def _index_terms(index: Index) -> list[str]:
    terms: list[str] = []
    for summary in index.summaries:
        for term in summary.key_terms:
            lowered = term.lower()
            if lowered not in terms:
                terms.append(lowered)
    return terms


def _matching_index_terms(query_tokens: list[str], index: Index) -> list[str]:
    grams: set[str] = set()
    for token in query_tokens:
        grams |= _trigrams(token)
    if not grams:
        return []
    return [term for term in _index_terms(index) if grams & _trigrams(term)]


def _build_prompt(query_tokens: list[str], topics: list[str], limit: int) -> str:
    return (
        "Given the user's question tokens and the document topic terms, propose up to "
        f"{limit} short synonyms or closely related terms from the topic set only. "
        "Return JSON array of strings.\n\n"
        f"Question tokens: {', '.join(query_tokens)}\n"
        f"Topic terms: {', '.join(topics)}"
    )


async def _model_terms(
    prompt_client: PromptClient,
    query_tokens: list[str],
    index: Index,
    limit: int,
) -> list[str]:
    topics = _index_terms(index)[:MAX_PROMPT_TOPICS]
    try:
        reply = await prompt_client.send_prompt(_build_prompt(query_tokens, topics, limit))
        parsed = parse_json_reply(reply)
    except AbortedError:
        raise
    except Exception as exc:
        logger.warning("model synonym expansion failed, using index terms only: %s", exc)
        return []

    if not isinstance(parsed, list):
        logger.warning("model synonym expansion returned %s, expected a list", type(parsed).__name__)
        return []
    return [item.strip().lower() for item in parsed if isinstance(item, str) and item.strip()]


async def expand_query_terms(
    query: str,
    index: Index,
    *,
    use_llm: bool = False,
    limit: int = 8,
    prompt_client: PromptClient | None = None,
) -> list[str]:
    """Extra lowercase terms for ``query``; never repeats the query's own tokens."""
    limit = max(1, limit)
    query_tokens = content_tokens(query)
    seen = set(query_tokens)

    proposed = _matching_index_terms(query_tokens, index)
    for token in query_tokens:
        proposed.extend(STATIC_SYNONYMS.get(token, ()))
    if use_llm and prompt_client is not None:
        proposed.extend(await _model_terms(prompt_client, query_tokens, index, limit))

    expanded: list[str] = []
    for term in proposed:
        if term in seen:
            continue
        seen.add(term)
        expanded.append(term)
        if len(expanded) >= limit:
            break
    return expanded

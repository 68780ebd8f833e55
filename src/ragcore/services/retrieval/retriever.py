from __future__ import annotations

from collections import Counter
import logging
import math
from typing import Sequence

from ragcore.errors import AbortedError
from ragcore.llm import PromptClient
from ragcore.services.retrieval.text import content_tokens, parse_json_reply, tokenize
from ragcore.services.retrieval.types import Index, RerankResult, RetrievalCandidate, Summary

logger = logging.getLogger(__name__)

KEY_TERM_BONUS = 0.5
HEADING_BONUS = 0.3
RERANK_SNIPPET_CHARS = 300


def _query_terms(query: str) -> list[str]:
    terms: list[str] = []
    for token in content_tokens(query):
        if token not in terms:
            terms.append(token)
    return terms


def _scorable(index: Index) -> list[Summary]:
    # Global synopses are never readable refs.
    return [summary for summary in index.summaries if summary.kind != "global"]


def lexical_retrieve(index: Index, query: str, *, top_m: int = 12) -> list[RetrievalCandidate]:
    """Score summaries by tf * log(1 + N / df) plus key-term and heading bonuses."""
    terms = _query_terms(query)
    summaries = _scorable(index)
    if not terms or not summaries:
        return []

    term_counts = [Counter(tokenize(summary.text)) for summary in summaries]
    total = len(summaries)
    document_frequency = {
        term: sum(1 for counts in term_counts if counts[term]) for term in terms
    }

    best: dict[str, RetrievalCandidate] = {}
    for summary, counts in zip(summaries, term_counts):
        key_terms = {term.lower() for term in summary.key_terms}
        heading_tokens: set[str] = set()
        if summary.kind == "section":
            section = index.section_by_id(summary.ref_id)
            if section is not None:
                heading_tokens = set(tokenize(section.heading))

        score = 0.0
        for term in terms:
            df = document_frequency[term]
            if df:
                score += counts[term] * math.log(1 + total / df)
            if term in key_terms:
                score += KEY_TERM_BONUS
            if term in heading_tokens:
                score += HEADING_BONUS

        if score <= 0:
            continue
        previous = best.get(summary.ref_id)
        if previous is None or score > previous.score:
            best[summary.ref_id] = RetrievalCandidate(
                ref_id=summary.ref_id,
                score=score,
                summary=summary,
            )

    ranked = sorted(best.values(), key=lambda candidate: (-candidate.score, candidate.ref_id))
    return ranked[: max(1, top_m)]


def lexical_ref_ids(candidates: Sequence[RetrievalCandidate], k: int) -> list[str]:
    return [candidate.ref_id for candidate in candidates[: max(1, k)]]


def _rerank_prompt(query: str, candidates: Sequence[RetrievalCandidate], k: int) -> str:
    lines = []
    for position, candidate in enumerate(candidates, start=1):
        kind = candidate.summary.kind if candidate.summary else "unknown"
        snippet = candidate.summary.text[:RERANK_SNIPPET_CHARS] if candidate.summary else ""
        lines.append(f"{position}. {candidate.ref_id} [{kind}] :: {snippet}")
    return (
        "You are selecting the most relevant sections to answer the user's question. "
        f"Return ONLY a JSON object {{\"refIds\": [...], \"rationale\": \"...\"}} where refIds "
        f"holds up to {k} refIds from the candidates ordered by priority and rationale is one line.\n\n"
        f"Question: {query}\n"
        "Candidates:\n" + "\n".join(lines)
    )


def _parse_rerank(reply: str) -> tuple[list[object], str]:
    parsed = parse_json_reply(reply)
    if isinstance(parsed, list):
        return parsed, ""
    if isinstance(parsed, dict) and isinstance(parsed.get("refIds"), list):
        rationale = parsed.get("rationale")
        return parsed["refIds"], rationale.strip() if isinstance(rationale, str) else ""
    raise ValueError("rerank reply is not a refId list")


async def rerank_with_llm(
    query: str,
    candidates: Sequence[RetrievalCandidate],
    *,
    rerank_k: int,
    prompt_client: PromptClient,
) -> RerankResult:
    """Ask the model for an ordered subset of ``candidates``; lexical order on any failure."""
    k = max(1, rerank_k)
    fallback = RerankResult(ref_ids=lexical_ref_ids(candidates, k))
    allowed = {candidate.ref_id for candidate in candidates}

    try:
        reply = await prompt_client.send_prompt(_rerank_prompt(query, candidates, k))
        proposed, rationale = _parse_rerank(reply)
    except AbortedError:
        raise
    except Exception as exc:
        logger.warning("rerank failed, using lexical order: %s", exc)
        return fallback

    ref_ids: list[str] = []
    for item in proposed:
        if isinstance(item, str) and item in allowed and item not in ref_ids:
            ref_ids.append(item)
        if len(ref_ids) >= k:
            break

    if not ref_ids:
        logger.warning("rerank returned no known refIds, using lexical order")
        return fallback
    return RerankResult(ref_ids=ref_ids, rationale=rationale)

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Sequence

from ragcore.config import IndexBudget
from ragcore.services.retrieval.text import extract_key_terms, leading_sentences
from ragcore.services.retrieval.token_budget import estimate_tokens, hard_cap, prune_to_budget
from ragcore.services.retrieval.types import (
    Chunk,
    Document,
    Index,
    IndexMeta,
    Section,
    Summary,
    TocEntry,
)

logger = logging.getLogger(__name__)

CHUNK_KEY_TERMS = 10
SECTION_KEY_TERMS = 12
GLOBAL_KEY_TERMS = 20
MAX_CORPUS_TITLES = 12
CORPUS_TITLE = "Notes Corpus"

_KIND_RANK = {"global": 0, "section": 1, "chunk": 2}


def _keep_key(summary: Summary) -> tuple[int, int]:
    return _KIND_RANK[summary.kind], estimate_tokens(summary.text)


def group_sections(chunks: Sequence[Chunk]) -> list[Section]:
    sections: list[Section] = []
    current: Section | None = None
    for chunk in chunks:
        heading = (chunk.heading or "").strip() or f"Section {chunk.index or len(sections) + 1}"
        if current is None or current.heading != heading:
            current = Section(id=f"sec-{len(sections) + 1}", heading=heading, chunk_ids=[])
            sections.append(current)
        current.chunk_ids.append(chunk.id)
    return sections


def build_toc(sections: Sequence[Section]) -> list[TocEntry]:
    return [
        TocEntry(heading=section.heading, level=2, chunk_ids=list(section.chunk_ids))
        for section in sections
    ]


def _chunk_summaries(
    chunks: Sequence[Chunk],
    budget: IndexBudget,
    *,
    id_prefix: str = "",
) -> list[Summary]:
    summaries: list[Summary] = []
    for position, chunk in enumerate(chunks, start=1):
        text = hard_cap(
            leading_sentences(chunk.content, budget.per_chunk_summary_tokens),
            budget.per_chunk_summary_tokens,
        )
        summaries.append(
            Summary(
                id=f"{id_prefix}sum-ch-{position}",
                ref_id=chunk.id,
                kind="chunk",
                text=text,
                key_terms=extract_key_terms(text, CHUNK_KEY_TERMS),
            )
        )
    return summaries


def _section_summaries(
    sections: Sequence[Section],
    chunk_summaries: Sequence[Summary],
    budget: IndexBudget,
) -> list[Summary]:
    by_chunk = {summary.ref_id: summary.text for summary in chunk_summaries}
    summaries: list[Summary] = []
    for position, section in enumerate(sections, start=1):
        merged = " ".join(by_chunk[cid] for cid in section.chunk_ids if by_chunk.get(cid))
        text = hard_cap(
            leading_sentences(merged, budget.per_section_tokens),
            budget.per_section_tokens,
        )
        summaries.append(
            Summary(
                id=f"sum-sec-{position}",
                ref_id=section.id,
                kind="section",
                text=text,
                key_terms=extract_key_terms(text, SECTION_KEY_TERMS),
            )
        )
    return summaries


def _topic_union(section_summaries: Sequence[Summary]) -> list[str]:
    topics: list[str] = []
    for summary in section_summaries:
        for term in summary.key_terms:
            if term not in topics:
                topics.append(term)
    return topics[:GLOBAL_KEY_TERMS]


def _compose(
    global_summary: Summary,
    section_summaries: Sequence[Summary],
    chunk_summaries: Sequence[Summary],
    budget: IndexBudget,
) -> list[Summary]:
    cap = min(budget.global_synopsis_tokens, budget.max_tokens)
    global_summary = global_summary.model_copy(update={"text": hard_cap(global_summary.text, cap)})
    ordered = [
        global_summary,
        *section_summaries[: budget.max_sections],
        *chunk_summaries[: budget.max_chunk_summaries],
    ]
    return prune_to_budget(ordered, lambda summary: summary.text, _keep_key, budget.max_tokens)


def build_index(
    doc: Document,
    chunks: Sequence[Chunk],
    *,
    content_hash: str,
    budget: IndexBudget | None = None,
    clock: Callable[[], float] = time.time,
) -> Index:
    budget = budget or IndexBudget()
    sections = group_sections(chunks)
    chunk_summaries = _chunk_summaries(chunks, budget)
    section_summaries = _section_summaries(sections, chunk_summaries, budget)

    topics = _topic_union(section_summaries)
    synopsis = f"{doc.title or 'Document'} — Topics: {', '.join(topics)}"
    global_summary = Summary(
        id="sum-global-1",
        ref_id=doc.id,
        kind="global",
        text=hard_cap(synopsis, budget.global_synopsis_tokens),
        key_terms=topics,
    )

    summaries = _compose(global_summary, section_summaries, chunk_summaries, budget)
    index = Index(
        meta=IndexMeta(
            url=doc.url or None,
            title=doc.title or None,
            language=doc.language,
            created_at=clock(),
            content_hash=content_hash,
        ),
        toc=build_toc(sections),
        summaries=summaries,
        sections=sections,
    )
    logger.info(
        "index built title=%r chunks=%d sections=%d summaries=%d",
        doc.title,
        len(chunks),
        len(sections),
        len(summaries),
    )
    return index


def build_corpus_index(
    docs: Sequence[Document],
    chunks_by_doc: Mapping[str, Sequence[Chunk]],
    *,
    content_hash: str,
    budget: IndexBudget | None = None,
    clock: Callable[[], float] = time.time,
) -> Index:
    budget = budget or IndexBudget()
    sections: list[Section] = []
    chunk_summaries: list[Summary] = []

    for doc in docs:
        chunks = chunks_by_doc.get(doc.id, [])
        for section in group_sections(chunks):
            sections.append(
                Section(
                    id=f"{doc.id}::{section.id}",
                    heading=f"{doc.title}: {section.heading}",
                    chunk_ids=list(section.chunk_ids),
                )
            )
        chunk_summaries.extend(_chunk_summaries(chunks, budget, id_prefix=f"{doc.id}::"))

    section_summaries = _section_summaries(sections, chunk_summaries, budget)
    topics = _topic_union(section_summaries)
    titles = " · ".join((doc.title or "Untitled") for doc in docs[:MAX_CORPUS_TITLES])
    synopsis = f"{CORPUS_TITLE} — {titles} — Topics: {', '.join(topics)}"
    global_summary = Summary(
        id="sum-global-1",
        ref_id="corpus",
        kind="global",
        text=hard_cap(synopsis, budget.global_synopsis_tokens),
        key_terms=topics,
    )

    summaries = _compose(global_summary, section_summaries, chunk_summaries, budget)
    index = Index(
        meta=IndexMeta(title=CORPUS_TITLE, created_at=clock(), content_hash=content_hash),
        toc=build_toc(sections),
        summaries=summaries,
        sections=sections,
    )
    logger.info(
        "corpus index built docs=%d sections=%d summaries=%d",
        len(docs),
        len(sections),
        len(summaries),
    )
    return index

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Sequence

from ragcore.config import RetrievalConfig
from ragcore.errors import AbortedError
from ragcore.llm import PromptClient
from ragcore.services.retrieval.adapters.base import AdapterContext, SourceAdapter
from ragcore.services.retrieval.cancellation import CancellationToken, check_cancelled
from ragcore.services.retrieval.token_budget import hard_cap
from ragcore.services.retrieval.types import Answer, Chunk, Confidence, Document, Index, UsedRef

logger = logging.getLogger(__name__)

NO_SECTIONS_TEXT = "insufficient evidence (no readable sections)"
MODEL_UNAVAILABLE_TEXT = "insufficient evidence (model unavailable)"
NAMESPACE_SEPARATOR = "::"

_SENTENCE_BREAK = re.compile(r"[.!?]\s+")


@dataclass(frozen=True)
class SelectedChunk:
    doc: Document
    chunk: Chunk
    text: str


def map_refs_to_chunk_ids(index: Index, ref_ids: Sequence[str]) -> list[str]:
    sections = {section.id: section.chunk_ids for section in index.sections}
    chunk_ids: list[str] = []
    for ref_id in ref_ids:
        for chunk_id in sections.get(ref_id, [ref_id]):
            if chunk_id not in chunk_ids:
                chunk_ids.append(chunk_id)
    return chunk_ids


def owning_doc_id(chunk_id: str) -> str | None:
    doc_id, separator, local_id = chunk_id.rpartition(NAMESPACE_SEPARATOR)
    if not separator or not local_id.startswith("chunk-"):
        return None
    return doc_id


def estimate_confidence(text: str) -> Confidence:
    answer = (text or "").strip()
    if not answer:
        return "low"
    sentences = len(_SENTENCE_BREAK.split(answer))
    if len(answer) > 600 and sentences >= 3:
        return "high"
    if len(answer) > 200:
        return "medium"
    return "low"


def build_reader_prompt(
    *,
    title: str,
    url: str,
    query: str,
    selected: Sequence[SelectedChunk],
) -> str:
    sections = "\n\n".join(
        f"SECTION {position}: {item.chunk.heading or ''}\n{item.text}"
        for position, item in enumerate(selected, start=1)
    )
    return (
        "You are answering a question using ONLY the provided page sections. "
        "Quote exactly when appropriate. At the end include a Sources list with the "
        "section headings used. If the answer is not present, respond: "
        '"insufficient evidence in these sections".\n\n'
        f"PAGE: {title}\n"
        f"URL: {url}\n\n"
        f"{sections}\n\n"
        f"QUESTION: {query}"
    )


async def select_chunks(
    adapter: SourceAdapter,
    context: AdapterContext,
    index: Index,
    ref_ids: Sequence[str],
    *,
    config: RetrievalConfig,
    token: CancellationToken | None = None,
) -> list[SelectedChunk]:
    """Materialize up to ``k_max`` chunks for ``ref_ids``, each hard-capped."""
    chunk_ids = map_refs_to_chunk_ids(index, ref_ids)
    if not chunk_ids:
        return []

    check_cancelled(token)
    docs = await adapter.list_documents(context)
    check_cancelled(token)
    if not docs:
        return []

    docs_by_id = {doc.id: doc for doc in docs}
    chunk_cache: dict[str, dict[str, Chunk]] = {}
    reading = config.reading
    selected: list[SelectedChunk] = []

    for chunk_id in chunk_ids:
        check_cancelled(token)
        doc_id = owning_doc_id(chunk_id)
        doc = docs_by_id.get(doc_id) if doc_id is not None else docs[0]
        if doc is None:
            continue

        chunks = chunk_cache.get(doc.id)
        if chunks is None:
            materialized = await adapter.chunk_document(doc, config.chunking)
            check_cancelled(token)
            chunks = {chunk.id: chunk for chunk in materialized}
            chunk_cache[doc.id] = chunks

        chunk = chunks.get(chunk_id)
        if chunk is None:
            continue
        selected.append(
            SelectedChunk(
                doc=doc,
                chunk=chunk,
                text=hard_cap(chunk.content, reading.per_chunk_token_cap),
            )
        )
        if len(selected) >= reading.k_max:
            break

    return selected


async def progressive_read(
    adapter: SourceAdapter,
    context: AdapterContext,
    query: str,
    index: Index,
    ref_ids: Sequence[str],
    *,
    config: RetrievalConfig,
    prompt_client: PromptClient,
    token: CancellationToken | None = None,
) -> Answer:
    check_cancelled(token)
    selected = await select_chunks(adapter, context, index, ref_ids, config=config, token=token)
    if not selected:
        return Answer(text=NO_SECTIONS_TEXT, confidence="low")

    used_refs = [
        UsedRef(doc_id=item.doc.id, chunk_id=item.chunk.id, heading=item.chunk.heading)
        for item in selected
    ]
    disclaimers: list[str] = []
    for item in selected:
        for disclaimer in adapter.capture_disclaimers(item.doc):
            if disclaimer not in disclaimers:
                disclaimers.append(disclaimer)

    first_doc = selected[0].doc
    prompt = build_reader_prompt(
        title=index.meta.title or first_doc.title or "",
        url=index.meta.url or first_doc.url or "",
        query=query,
        selected=selected,
    )

    check_cancelled(token)
    try:
        text = await prompt_client.send_prompt(prompt, max_tokens=config.reading.reserve_answer_tokens)
    except AbortedError:
        raise
    except Exception as exc:
        logger.warning("reader model unavailable: %s", exc)
        return Answer(text=MODEL_UNAVAILABLE_TEXT, confidence="low", disclaimers=disclaimers)
    check_cancelled(token)

    return Answer(
        text=text,
        confidence=estimate_confidence(text),
        used_refs=used_refs,
        disclaimers=disclaimers,
    )

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Sequence

from ragcore.config import RetrievalConfig
from ragcore.errors import AbortedError, NoDocumentsError
from ragcore.llm import PromptClient
from ragcore.services.retrieval.adapters.base import AdapterContext, SourceAdapter
from ragcore.services.retrieval.cancellation import (
    CancellationToken,
    SharedCancellation,
    check_cancelled,
)
from ragcore.services.retrieval.classifier import classify_query
from ragcore.services.retrieval.events import (
    RETRIEVAL_PROGRESS,
    RETRIEVAL_TELEMETRY,
    EventEmitter,
)
from ragcore.services.retrieval.hashing import combine_hashes
from ragcore.services.retrieval.index_store import IndexStore
from ragcore.services.retrieval.indexer import build_corpus_index, build_index
from ragcore.services.retrieval.memory import SessionMemory
from ragcore.services.retrieval.reader import progressive_read
from ragcore.services.retrieval.retriever import lexical_ref_ids, lexical_retrieve, rerank_with_llm
from ragcore.services.retrieval.synonyms import expand_query_terms
from ragcore.services.retrieval.types import (
    Answer,
    Chunk,
    CorpusIndexResult,
    Document,
    Index,
    RetrievalResult,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]

PHASE_PERCENT = {
    "start": 0,
    "chunking": 25,
    "buildingIndex": 60,
    "saving": 85,
    "done": 100,
}


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


def store_key_for(base_key: str, content_hash: str) -> str:
    return f"{base_key}:{content_hash}"


@dataclass
class _InflightBuild:
    cancellation: SharedCancellation = field(default_factory=SharedCancellation)
    task: asyncio.Future[CorpusIndexResult] = field(init=False)


class RetrievalEngine:
    """Ensures an index per corpus, retrieves refs and answers from them.

    The engine owns the in-flight build map and session memory; the store owns
    persisted indexes. ``close()`` tears all three down.
    """

    def __init__(
        self,
        *,
        store: IndexStore,
        prompt_client: PromptClient,
        config: RetrievalConfig | None = None,
        emitter: EventEmitter | None = None,
        session_memory: SessionMemory | None = None,
    ) -> None:
        self._store = store
        self._prompt_client = prompt_client
        self._config = config or RetrievalConfig()
        self._emitter = emitter or EventEmitter()
        self._sessions = session_memory or SessionMemory()
        self._inflight: dict[str, _InflightBuild] = {}

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    @property
    def sessions(self) -> SessionMemory:
        return self._sessions

    @property
    def store(self) -> IndexStore:
        return self._store

    def inflight_keys(self) -> list[str]:
        return list(self._inflight)

    async def ask_whole_corpus(
        self,
        adapter: SourceAdapter,
        context: AdapterContext,
        *,
        config: RetrievalConfig | None = None,
        session_id: str | None = None,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> CorpusIndexResult:
        cfg = config or self._config
        check_cancelled(token)
        await self._store.cleanup()

        docs = await adapter.list_documents(context)
        check_cancelled(token)
        if not docs:
            raise NoDocumentsError()

        hashes = [adapter.compute_content_hash(doc) for doc in docs]
        content_hash = hashes[0] if len(hashes) == 1 else combine_hashes(hashes)
        store_key = store_key_for(adapter.get_index_key(context), content_hash)

        while True:
            build = self._inflight.get(store_key)
            if build is not None and build.task.done():
                build = None
            if build is None:
                cached = await self._store.load_index(store_key)
                check_cancelled(token)
                if cached is not None:
                    if cfg.debug:
                        logger.info("index cache hit key=%s", store_key)
                    self._progress(store_key, "done", on_progress)
                    self._remember(session_id, cached)
                    return CorpusIndexResult(index=cached, built=False)
                build = self._inflight.get(store_key)

            if build is None:
                build = _InflightBuild()
                build.task = asyncio.ensure_future(
                    self._build(
                        adapter,
                        docs,
                        store_key=store_key,
                        content_hash=content_hash,
                        config=cfg,
                        on_progress=on_progress,
                        cancellation=build.cancellation,
                    )
                )
                self._inflight[store_key] = build
                build.task.add_done_callback(lambda task: self._settle(store_key, task))
            elif cfg.debug:
                logger.info("joining in-flight build key=%s", store_key)

            build.cancellation.join(token)
            try:
                result = await asyncio.shield(build.task)
            except AbortedError:
                # Every earlier waiter cancelled; rebuild unless this caller did too.
                check_cancelled(token)
                continue
            break

        check_cancelled(token)
        self._remember(session_id, result.index)
        return result

    async def retrieve_refs(
        self,
        adapter: SourceAdapter,
        context: AdapterContext,
        query: str,
        *,
        config: RetrievalConfig | None = None,
        session_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> RetrievalResult:
        cfg = config or self._config
        options = cfg.retrieval
        started = time.perf_counter()

        corpus = await self.ask_whole_corpus(
            adapter,
            context,
            config=cfg,
            session_id=session_id,
            token=token,
        )
        index = corpus.index

        cls_started = time.perf_counter()
        classification = classify_query(query, index)
        cls_ms = _elapsed_ms(cls_started)
        if cfg.debug:
            logger.info("query classified %s", classification)

        syn_started = time.perf_counter()
        expanded: list[str] = []
        if options.expand_synonyms:
            expanded = await expand_query_terms(
                query,
                index,
                use_llm=options.use_llm,
                limit=options.synonym_limit,
                prompt_client=self._prompt_client,
            )
            check_cancelled(token)
        syn_ms = _elapsed_ms(syn_started)
        expanded_query = f"{query} {' '.join(expanded)}" if expanded else query

        lex_started = time.perf_counter()
        candidates = lexical_retrieve(index, expanded_query, top_m=options.top_m)
        lex_ms = _elapsed_ms(lex_started)

        rr_started = time.perf_counter()
        rationale = ""
        if options.use_llm and len(candidates) > options.rerank_k:
            reranked = await rerank_with_llm(
                expanded_query,
                candidates,
                rerank_k=options.rerank_k,
                prompt_client=self._prompt_client,
            )
            check_cancelled(token)
            ref_ids, rationale = reranked.ref_ids, reranked.rationale
        else:
            ref_ids = lexical_ref_ids(candidates, options.rerank_k)
        rr_ms = _elapsed_ms(rr_started)

        if cfg.debug:
            self._emitter.emit(
                RETRIEVAL_TELEMETRY,
                {
                    "key": index.key,
                    "clsMs": cls_ms,
                    "synMs": syn_ms,
                    "lexMs": lex_ms,
                    "rrMs": rr_ms,
                    "totalMs": _elapsed_ms(started),
                    "expanded": list(expanded),
                    "candidateCount": len(candidates),
                },
            )

        self._sessions.remember(session_id, ref_ids=ref_ids)
        return RetrievalResult(
            ref_ids=ref_ids,
            candidates=candidates,
            index=index,
            rationale=rationale,
            expanded=expanded,
            classification=classification,
        )

    async def answer_with_retrieval(
        self,
        adapter: SourceAdapter,
        context: AdapterContext,
        query: str,
        *,
        config: RetrievalConfig | None = None,
        session_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> Answer:
        cfg = config or self._config
        retrieval = await self.retrieve_refs(
            adapter,
            context,
            query,
            config=cfg,
            session_id=session_id,
            token=token,
        )
        return await progressive_read(
            adapter,
            context,
            query,
            retrieval.index,
            retrieval.ref_ids,
            config=cfg,
            prompt_client=self._prompt_client,
            token=token,
        )

    def close(self) -> None:
        for build in self._inflight.values():
            build.task.cancel()
        self._inflight.clear()
        self._sessions.clear_all()
        self._emitter.clear()
        self._store.close()

    async def _build(
        self,
        adapter: SourceAdapter,
        docs: Sequence[Document],
        *,
        store_key: str,
        content_hash: str,
        config: RetrievalConfig,
        on_progress: ProgressCallback | None,
        cancellation: SharedCancellation,
    ) -> CorpusIndexResult:
        started = time.perf_counter()
        self._progress(store_key, "start", on_progress)

        self._progress(store_key, "chunking", on_progress)
        chunks_by_doc: dict[str, list[Chunk]] = {}
        for doc in docs:
            chunks_by_doc[doc.id] = await adapter.chunk_document(doc, config.chunking)
            check_cancelled(cancellation)

        self._progress(store_key, "buildingIndex", on_progress)
        index: Index
        if len(docs) == 1:
            index = build_index(
                docs[0],
                chunks_by_doc[docs[0].id],
                content_hash=content_hash,
                budget=config.index,
            )
        else:
            index = build_corpus_index(
                docs,
                chunks_by_doc,
                content_hash=content_hash,
                budget=config.index,
            )
        index.key = store_key

        check_cancelled(cancellation)
        self._progress(store_key, "saving", on_progress)
        await self._store.save_index(store_key, index)

        self._progress(store_key, "done", on_progress)
        if config.debug:
            logger.info("index build key=%s took %dms", store_key, _elapsed_ms(started))
        return CorpusIndexResult(index=index, built=True)

    def _settle(self, store_key: str, task: asyncio.Task[CorpusIndexResult]) -> None:
        build = self._inflight.get(store_key)
        if build is not None and build.task is task:
            del self._inflight[store_key]

    def _progress(
        self,
        store_key: str,
        phase: str,
        on_progress: ProgressCallback | None,
    ) -> None:
        payload = {"key": store_key, "phase": phase, "percent": PHASE_PERCENT[phase]}
        self._emitter.emit(RETRIEVAL_PROGRESS, payload)
        if on_progress is None:
            return
        try:
            on_progress(payload)
        except Exception:
            logger.exception("progress callback failed")

    def _remember(self, session_id: str | None, index: Index) -> None:
        synopsis = next(
            (summary.text for summary in index.summaries if summary.kind == "global"),
            "",
        )
        self._sessions.remember(session_id, synopsis=synopsis)

from ragcore.config import ChunkingOptions, IndexBudget
from ragcore.services.retrieval.chunker import chunk_text
from ragcore.services.retrieval.indexer import (
    CORPUS_TITLE,
    build_corpus_index,
    build_index,
    group_sections,
)
from ragcore.services.retrieval.token_budget import total_tokens
from ragcore.services.retrieval.types import Chunk, Document

ARTICLE = (
    "Overview\nCaching keeps recent responses close to the client. "
    "A cache lowers latency and saves bandwidth for repeated requests.\n"
    "Expiry\nEach cached entry carries an expiry time. "
    "Expired entries are revalidated with the origin server before reuse.\n"
    "Invalidation\nWrites invalidate cached entries for the same resource. "
    "Invalidation keeps readers from seeing stale data after an update.\n"
)
HEADINGS = ("Overview", "Expiry", "Invalidation")


def _fixed_clock() -> float:
    return 1_700_000_000.0


def _article() -> tuple[Document, list[Chunk]]:
    doc = Document(id="p1", title="HTTP Caching", source_kind="page", url="https://example.test/cache")
    chunks = chunk_text(
        ARTICLE,
        doc_id=doc.id,
        headings=HEADINGS,
        options=ChunkingOptions(max_chunk_chars=140, overlap_chars=10, min_chunk_chars=40),
    )
    return doc, chunks


def test_group_sections_follows_heading_runs() -> None:
    chunks = [
        Chunk(id="chunk-1", doc_id="d", content="a", size_chars=1, index=1, heading="Intro"),
        Chunk(id="chunk-2", doc_id="d", content="b", size_chars=1, index=2, heading="Intro"),
        Chunk(id="chunk-3", doc_id="d", content="c", size_chars=1, index=3, heading="Usage"),
    ]

    sections = group_sections(chunks)

    assert [section.id for section in sections] == ["sec-1", "sec-2"]
    assert sections[0].chunk_ids == ["chunk-1", "chunk-2"]
    assert sections[1].heading == "Usage"


def test_build_index_has_one_global_summary_first() -> None:
    doc, chunks = _article()

    index = build_index(doc, chunks, content_hash="abc", clock=_fixed_clock)

    kinds = [summary.kind for summary in index.summaries]
    assert kinds[0] == "global"
    assert kinds.count("global") == 1
    assert index.summaries[0].ref_id == "p1"
    assert index.summaries[0].text.startswith("HTTP Caching — Topics: ")
    assert index.meta.content_hash == "abc"
    assert index.meta.created_at == _fixed_clock()
    assert index.meta.url == "https://example.test/cache"
    assert [entry.heading for entry in index.toc] == [section.heading for section in index.sections]


def test_build_index_references_existing_sections_and_chunks() -> None:
    doc, chunks = _article()

    index = build_index(doc, chunks, content_hash="abc", clock=_fixed_clock)

    section_ids = {section.id for section in index.sections}
    chunk_ids = {chunk.id for chunk in chunks}
    for summary in index.summaries:
        if summary.kind == "section":
            assert summary.ref_id in section_ids
        elif summary.kind == "chunk":
            assert summary.ref_id in chunk_ids


def test_build_index_is_deterministic() -> None:
    doc, chunks = _article()

    first = build_index(doc, chunks, content_hash="abc", clock=_fixed_clock)
    second = build_index(doc, chunks, content_hash="abc", clock=_fixed_clock)

    assert first.model_dump() == second.model_dump()


def test_build_index_respects_token_budget() -> None:
    doc, chunks = _article()
    budget = IndexBudget(
        max_tokens=60,
        global_synopsis_tokens=20,
        per_section_tokens=15,
        per_chunk_summary_tokens=15,
    )

    index = build_index(doc, chunks, content_hash="abc", budget=budget, clock=_fixed_clock)

    assert total_tokens([summary.text for summary in index.summaries]) <= budget.max_tokens
    assert index.summaries[0].kind == "global"


def test_global_synopsis_survives_a_budget_smaller_than_itself() -> None:
    doc, chunks = _article()
    budget = IndexBudget(max_tokens=10)

    index = build_index(doc, chunks, content_hash="abc", budget=budget, clock=_fixed_clock)

    kinds = [summary.kind for summary in index.summaries]
    assert kinds[0] == "global"
    assert kinds.count("global") == 1
    assert index.summaries[0].text.startswith("HTTP Caching")
    assert total_tokens([summary.text for summary in index.summaries]) <= budget.max_tokens


def test_build_index_caps_section_and_chunk_counts() -> None:
    doc, chunks = _article()
    budget = IndexBudget(max_sections=1, max_chunk_summaries=1)

    index = build_index(doc, chunks, content_hash="abc", budget=budget, clock=_fixed_clock)

    kinds = [summary.kind for summary in index.summaries]
    assert kinds.count("section") <= 1
    assert kinds.count("chunk") <= 1


def test_build_corpus_index_namespaces_ids() -> None:
    docs = [
        Document(id="n1", title="Groceries", source_kind="note", text="Buy apples and pears."),
        Document(id="n2", title="Project", source_kind="note", text="The deadline moved to Friday."),
    ]
    chunks_by_doc = {
        doc.id: chunk_text(doc.text, doc_id=doc.id, id_prefix=f"{doc.id}::") for doc in docs
    }

    index = build_corpus_index(docs, chunks_by_doc, content_hash="h", clock=_fixed_clock)

    assert [section.id for section in index.sections] == ["n1::sec-1", "n2::sec-1"]
    assert index.sections[1].heading == "Project: Section 1"
    assert index.sections[1].chunk_ids == ["n2::chunk-1"]
    assert index.meta.title == CORPUS_TITLE

    global_summary = index.summaries[0]
    assert global_summary.kind == "global"
    assert global_summary.ref_id == "corpus"
    assert "Groceries · Project" in global_summary.text

    chunk_summary_ids = [summary.id for summary in index.summaries if summary.kind == "chunk"]
    assert chunk_summary_ids == ["n1::sum-ch-1", "n2::sum-ch-1"]

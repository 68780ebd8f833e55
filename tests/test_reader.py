import pytest

from ragcore.config import ChunkingOptions, ReadingOptions, RetrievalConfig
from ragcore.errors import AbortedError
from ragcore.llm import PromptClientError
from ragcore.services.retrieval.adapters import PageAdapter
from ragcore.services.retrieval.cancellation import CancellationToken
from ragcore.services.retrieval.reader import (
    MODEL_UNAVAILABLE_TEXT,
    NO_SECTIONS_TEXT,
    estimate_confidence,
    map_refs_to_chunk_ids,
    owning_doc_id,
    progressive_read,
    select_chunks,
)
from ragcore.services.retrieval.token_budget import estimate_tokens
from ragcore.services.retrieval.types import Index, IndexMeta, Section

URL = "https://example.test/guide"
PAGE_TEXT = (
    "Setup\n" + "Install the tool with the package manager. " * 8 + "\n"
    "Usage\n" + "Run the tool against a folder of notes. " * 8 + "\n"
    "Limits\n" + "Large folders take longer to index. " * 8 + "\n"
)


class FakePromptClient:
    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []
        self.max_tokens: list[int | None] = []

    async def send_prompt(self, prompt: str, *, max_tokens: int | None = None) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        if self.error is not None:
            raise self.error
        return self.reply


def _config(**reading: int) -> RetrievalConfig:
    return RetrievalConfig(
        chunking=ChunkingOptions(max_chunk_chars=400, overlap_chars=40, min_chunk_chars=100),
        reading=ReadingOptions(**reading),
    )


def _context() -> dict[str, object]:
    return {
        "url": URL,
        "cached": {
            "url": URL,
            "title": "Tool Guide",
            "text": PAGE_TEXT,
            "headings": ["Setup", "Usage", "Limits"],
        },
    }


def _index(sections: list[Section]) -> Index:
    return Index(
        meta=IndexMeta(url=URL, title="Tool Guide", created_at=0.0, content_hash="h"),
        sections=sections,
    )


async def _chunk_ids(config: RetrievalConfig) -> list[str]:
    adapter = PageAdapter()
    docs = await adapter.list_documents(_context())
    return [chunk.id for chunk in await adapter.chunk_document(docs[0], config.chunking)]


def test_map_refs_expands_sections_and_keeps_chunk_ids() -> None:
    index = _index([Section(id="sec-1", heading="Setup", chunk_ids=["chunk-1", "chunk-2"])])

    assert map_refs_to_chunk_ids(index, ["sec-1", "chunk-2", "chunk-3"]) == [
        "chunk-1",
        "chunk-2",
        "chunk-3",
    ]


def test_owning_doc_id_reads_namespace() -> None:
    assert owning_doc_id("n2::chunk-1") == "n2"
    assert owning_doc_id("chunk-1") is None


def test_owning_doc_id_keeps_separators_inside_the_doc_id() -> None:
    assert owning_doc_id("http://[::1]/x::chunk-3") == "http://[::1]/x"
    assert owning_doc_id("http://[::1]/x") is None


def test_estimate_confidence_by_length_and_sentences() -> None:
    assert estimate_confidence("") == "low"
    assert estimate_confidence("Short answer.") == "low"
    assert estimate_confidence("x" * 201) == "medium"
    assert estimate_confidence("One sentence here. " * 40) == "high"
    assert estimate_confidence("y" * 700) == "medium"


@pytest.mark.asyncio
async def test_select_chunks_respects_k_max_and_cap() -> None:
    config = _config(k_max=2, per_chunk_token_cap=30)
    chunk_ids = await _chunk_ids(config)
    index = _index([Section(id="sec-all", heading="All", chunk_ids=chunk_ids)])

    selected = await select_chunks(PageAdapter(), _context(), index, ["sec-all"], config=config)

    assert [item.chunk.id for item in selected] == chunk_ids[:2]
    assert all(estimate_tokens(item.text) <= 30 for item in selected)
    assert sum(estimate_tokens(item.text) for item in selected) <= 2 * 30


@pytest.mark.asyncio
async def test_progressive_read_answers_from_selected_chunks() -> None:
    config = _config(k_max=1)
    index = _index([Section(id="sec-2", heading="Usage", chunk_ids=["chunk-2"])])
    client = FakePromptClient(reply="Run the tool against a folder of notes.")

    answer = await progressive_read(
        PageAdapter(),
        _context(),
        "how do I run it?",
        index,
        ["sec-2"],
        config=config,
        prompt_client=client,
    )

    assert answer.text == "Run the tool against a folder of notes."
    assert answer.confidence == "low"
    assert [(ref.doc_id, ref.chunk_id) for ref in answer.used_refs] == [(URL, "chunk-2")]
    assert client.max_tokens == [config.reading.reserve_answer_tokens]
    prompt = client.prompts[0]
    assert "PAGE: Tool Guide" in prompt
    assert f"URL: {URL}" in prompt
    assert "QUESTION: how do I run it?" in prompt
    assert "SECTION 1:" in prompt


@pytest.mark.asyncio
async def test_progressive_read_without_sections_skips_the_model() -> None:
    client = FakePromptClient(reply="unused")

    answer = await progressive_read(
        PageAdapter(),
        _context(),
        "anything",
        _index([]),
        ["sec-404"],
        config=_config(),
        prompt_client=client,
    )

    assert answer.text == NO_SECTIONS_TEXT
    assert answer.confidence == "low"
    assert answer.used_refs == []
    assert client.prompts == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [PromptClientError("offline"), RuntimeError("model crashed")])
async def test_progressive_read_reports_model_unavailable(error: Exception) -> None:
    index = _index([Section(id="sec-1", heading="Setup", chunk_ids=["chunk-1"])])

    answer = await progressive_read(
        PageAdapter(),
        _context(),
        "how to install",
        index,
        ["sec-1"],
        config=_config(),
        prompt_client=FakePromptClient(error=error),
    )

    assert answer.text == MODEL_UNAVAILABLE_TEXT
    assert answer.confidence == "low"


@pytest.mark.asyncio
async def test_progressive_read_honours_cancellation() -> None:
    token = CancellationToken()
    token.cancel()
    client = FakePromptClient(reply="unused")

    with pytest.raises(AbortedError):
        await progressive_read(
            PageAdapter(),
            _context(),
            "how to install",
            _index([Section(id="sec-1", heading="Setup", chunk_ids=["chunk-1"])]),
            ["sec-1"],
            config=_config(),
            prompt_client=client,
            token=token,
        )

    assert client.prompts == []

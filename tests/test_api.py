from typing import Any

from fastapi.testclient import TestClient

from ragcore.config import ChunkingOptions, ReadingOptions, RetrievalConfig, RetrievalOptions
from ragcore.main import app, get_retrieval_engine
from ragcore.services.retrieval import IndexStore, RetrievalEngine

URL = "https://example.test/cache"
PAGE_TEXT = (
    "Overview\nA cache keeps recent responses close to the client and lowers latency.\n"
    "Expiry\nEvery cached entry has an expiry time. Expired entries are revalidated "
    "with the origin server before they are served again.\n"
)


class FakePromptClient:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def send_prompt(self, prompt: str, *, max_tokens: int | None = None) -> str:
        self.prompts.append(prompt)
        return "Expired entries are revalidated with the origin server."


def _install_engine() -> tuple[RetrievalEngine, FakePromptClient]:
    prompt_client = FakePromptClient()
    engine = RetrievalEngine(
        store=IndexStore(),
        prompt_client=prompt_client,
        config=RetrievalConfig(
            chunking=ChunkingOptions(max_chunk_chars=120, overlap_chars=10),
            retrieval=RetrievalOptions(rerank_k=1),
            reading=ReadingOptions(k_max=1),
        ),
    )
    app.dependency_overrides[get_retrieval_engine] = lambda: engine
    return engine, prompt_client


def _page_body(**extra: Any) -> dict[str, Any]:
    return {
        "source": "page",
        "context": {
            "url": URL,
            "cached": {
                "url": URL,
                "title": "Caching",
                "text": PAGE_TEXT,
                "headings": ["Overview", "Expiry"],
            },
        },
        **extra,
    }


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_index_endpoint_builds_then_reuses(client: TestClient) -> None:
    _install_engine()

    first = client.post("/retrieval/index", json=_page_body())
    second = client.post("/retrieval/index", json=_page_body())

    assert first.status_code == 200
    payload = first.json()
    assert payload["built"] is True
    assert payload["key"].startswith(f"page:{URL}:")
    assert payload["sections"] >= 2
    assert payload["summaries"] >= 3
    assert isinstance(payload["createdAt"], float)
    assert second.json()["built"] is False
    assert second.json()["key"] == payload["key"]


def test_refs_endpoint_returns_ranked_candidates(client: TestClient) -> None:
    _install_engine()

    response = client.post(
        "/retrieval/refs",
        json=_page_body(query="when do expired entries get revalidated?"),
    )

    assert response.status_code == 200
    payload = response.json()
    assert len(payload["refIds"]) == 1
    assert payload["candidates"][0]["refId"] == payload["refIds"][0]
    assert {"refId", "score", "kind"} == set(payload["candidates"][0])
    assert payload["expanded"] == []


def test_ask_endpoint_returns_answer_with_used_refs(client: TestClient) -> None:
    _, prompt_client = _install_engine()

    response = client.post(
        "/ask",
        json=_page_body(query="when do expired entries get revalidated?", sessionId="s1"),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["text"] == "Expired entries are revalidated with the origin server."
    assert payload["confidence"] == "low"
    assert payload["usedRefs"][0]["docId"] == URL
    assert payload["usedRefs"][0]["heading"] == "Expiry"
    assert payload["disclaimers"] == []
    assert len(prompt_client.prompts) == 1


def test_ask_endpoint_without_documents_returns_404(client: TestClient) -> None:
    _, prompt_client = _install_engine()

    response = client.post("/ask", json={"source": "note", "query": "anything?"})

    assert response.status_code == 404
    assert response.json()["detail"] == "No documents available for indexing"
    assert prompt_client.prompts == []


def test_unknown_source_returns_400(client: TestClient) -> None:
    _install_engine()

    response = client.post("/retrieval/index", json={"source": "mail"})

    assert response.status_code == 400
    assert "Unknown source kind: mail" in response.json()["detail"]
    assert "page" in response.json()["detail"]


def test_invalid_config_override_returns_422(client: TestClient) -> None:
    _install_engine()

    bad_value = client.post("/retrieval/index", json=_page_body(config={"retrieval": {"topM": 0}}))
    bad_group = client.post("/retrieval/index", json=_page_body(config={"cache": {}}))

    assert bad_value.status_code == 422
    assert "top_m must be > 0" in bad_value.json()["detail"]
    assert bad_group.status_code == 422


def test_request_validation(client: TestClient) -> None:
    _install_engine()

    assert client.post("/ask", json={"source": "page"}).status_code == 422
    assert client.post("/ask", json=_page_body(query="q", timeoutSeconds=0)).status_code == 422
    assert client.post("/retrieval/index", json=_page_body(extra=True)).status_code == 422

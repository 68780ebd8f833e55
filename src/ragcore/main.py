from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ragcore.config import RetrievalConfig, get_settings
from ragcore.db import get_engine
from ragcore.errors import AbortedError, NoDocumentsError
from ragcore.llm import OllamaPromptClient, PromptClient
from ragcore.services.retrieval import CancellationToken, IndexStore, RetrievalEngine
from ragcore.services.retrieval.adapters import SourceAdapter, available_sources, get_adapter

app = FastAPI(title="ragcore retrieval API", version="0.1.0")


class IndexRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    source: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, Any] | None = Field(default=None, alias="config")
    session_id: str | None = Field(default=None, alias="sessionId")


class RefsRequest(IndexRequest):
    query: str = Field(min_length=1)


class AskRequest(RefsRequest):
    timeout_seconds: float | None = Field(default=None, gt=0, alias="timeoutSeconds")


def get_prompt_client() -> PromptClient:
    settings = get_settings()
    return OllamaPromptClient(
        base_url=settings.ollama_base_url,
        default_model=settings.ollama_model,
        fallback_model=settings.ollama_fallback_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


@lru_cache
def get_retrieval_engine() -> RetrievalEngine:
    settings = get_settings()
    return RetrievalEngine(
        store=IndexStore(engine=get_engine(), options=settings.retrieval.store),
        prompt_client=get_prompt_client(),
        config=settings.retrieval,
    )


@app.on_event("shutdown")
def shutdown() -> None:
    if get_retrieval_engine.cache_info().currsize:
        get_retrieval_engine().close()
        get_retrieval_engine.cache_clear()


def _adapter(source: str) -> SourceAdapter:
    try:
        return get_adapter(source)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"{exc}; available: {', '.join(available_sources())}",
        ) from exc


def _config(engine: RetrievalEngine, overrides: dict[str, Any] | None) -> RetrievalConfig:
    try:
        return engine.config.with_overrides(overrides)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _retrieval_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NoDocumentsError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AbortedError):
        return HTTPException(status_code=504, detail="retrieval aborted")
    return HTTPException(status_code=422, detail=str(exc))


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/retrieval/index")
async def build_retrieval_index(
    request: IndexRequest,
    engine: Annotated[RetrievalEngine, Depends(get_retrieval_engine)],
) -> dict[str, Any]:
    adapter = _adapter(request.source)
    config = _config(engine, request.overrides)

    try:
        result = await engine.ask_whole_corpus(
            adapter,
            request.context,
            config=config,
            session_id=request.session_id,
        )
    except (NoDocumentsError, AbortedError, ValueError) as exc:
        raise _retrieval_http_error(exc) from exc

    index = result.index
    return {
        "key": index.key,
        "built": result.built,
        "sections": len(index.sections),
        "summaries": len(index.summaries),
        "createdAt": index.meta.created_at,
    }


@app.post("/retrieval/refs")
async def retrieval_refs(
    request: RefsRequest,
    engine: Annotated[RetrievalEngine, Depends(get_retrieval_engine)],
) -> dict[str, Any]:
    adapter = _adapter(request.source)
    config = _config(engine, request.overrides)

    try:
        result = await engine.retrieve_refs(
            adapter,
            request.context,
            request.query,
            config=config,
            session_id=request.session_id,
        )
    except (NoDocumentsError, AbortedError, ValueError) as exc:
        raise _retrieval_http_error(exc) from exc

    return {
        "refIds": result.ref_ids,
        "rationale": result.rationale,
        "candidates": [
            {
                "refId": candidate.ref_id,
                "score": round(candidate.score, 6),
                "kind": candidate.summary.kind if candidate.summary else None,
            }
            for candidate in result.candidates
        ],
        "expanded": result.expanded,
        "key": result.index.key,
    }


@app.post("/ask")
async def ask(
    request: AskRequest,
    engine: Annotated[RetrievalEngine, Depends(get_retrieval_engine)],
) -> dict[str, Any]:
    adapter = _adapter(request.source)
    config = _config(engine, request.overrides)

    token = CancellationToken()
    if request.timeout_seconds is not None:
        token.cancel_after(request.timeout_seconds)

    try:
        answer = await engine.answer_with_retrieval(
            adapter,
            request.context,
            request.query,
            config=config,
            session_id=request.session_id,
            token=token,
        )
    except (NoDocumentsError, AbortedError, ValueError) as exc:
        raise _retrieval_http_error(exc) from exc

    return answer.model_dump(by_alias=True)


def run() -> None:
    import uvicorn

    uvicorn.run("ragcore.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()

import json
from typing import Callable

import httpx
import pytest

from ragcore.errors import ModelUnavailableError
from ragcore.llm import OllamaPromptClient, PromptClientError


def _completion(content: str) -> dict[str, object]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    fallback_model: str = "small-model",
) -> OllamaPromptClient:
    return OllamaPromptClient(
        base_url="http://ollama:11434/v1/",
        default_model="big-model",
        fallback_model=fallback_model,
        timeout_seconds=5.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_send_prompt_posts_single_user_message() -> None:
    captured: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == "http://ollama:11434/v1/chat/completions"
        captured.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("  the answer  "))

    reply = await _client(handler).send_prompt("What is HTTP?", max_tokens=800)

    assert reply == "the answer"
    assert captured == [
        {
            "model": "big-model",
            "messages": [{"role": "user", "content": "What is HTTP?"}],
            "temperature": 0,
            "max_tokens": 800,
        }
    ]


@pytest.mark.asyncio
async def test_send_prompt_omits_max_tokens_by_default() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("ok"))

    await _client(handler).send_prompt("hi")

    assert "max_tokens" not in bodies[0]


@pytest.mark.asyncio
async def test_send_prompt_uses_fallback_model() -> None:
    models: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        model = json.loads(request.content)["model"]
        models.append(model)
        if model == "big-model":
            return httpx.Response(500, json={"error": "out of memory"})
        return httpx.Response(200, json=_completion("from fallback"))

    reply = await _client(handler).send_prompt("hi")

    assert reply == "from fallback"
    assert models == ["big-model", "small-model"]


@pytest.mark.asyncio
async def test_send_prompt_raises_when_every_model_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(PromptClientError, match="missing choices"):
        await _client(handler).send_prompt("hi")


@pytest.mark.asyncio
async def test_single_model_failure_is_model_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ModelUnavailableError):
        await _client(handler, fallback_model="big-model").send_prompt("hi")

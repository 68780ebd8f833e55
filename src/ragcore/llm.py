from __future__ import annotations

from typing import Protocol

import httpx

from ragcore.errors import ModelUnavailableError


class PromptClientError(ModelUnavailableError):
    pass


class PromptClient(Protocol):
    async def send_prompt(self, prompt: str, *, max_tokens: int | None = None) -> str: ...


class OllamaPromptClient:
    """Single-turn prompts against an OpenAI-compatible endpoint.

    Each call opens its own HTTP client and sends one user message, so no
    conversation state is shared with other callers.
    """

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def send_prompt(self, prompt: str, *, max_tokens: int | None = None) -> str:
        candidates = self._model_candidates()
        for position, model in enumerate(candidates):
            try:
                return await self._chat_completion(model=model, prompt=prompt, max_tokens=max_tokens)
            except (httpx.HTTPError, ValueError) as exc:
                if position == len(candidates) - 1:
                    raise PromptClientError(str(exc)) from exc

        raise PromptClientError("No model candidates configured")

    def _model_candidates(self) -> list[str]:
        candidates = [self._default_model]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append(self._fallback_model)
        return candidates

    async def _chat_completion(self, *, model: str, prompt: str, max_tokens: int | None) -> str:
        body: dict[str, object] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0,
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens

        async with httpx.AsyncClient(
            timeout=self._timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(f"{self._base_url}/chat/completions", json=body)
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()

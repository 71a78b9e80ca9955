"""Mistral chat completions adapter"""

from typing import List

import httpx

from scrutix_engine.config import settings
from scrutix_engine.infrastructure.ai.base import BaseAIProvider
from scrutix_engine.infrastructure.ai.types import (
    AIErrorCode,
    AIMessage,
    AIProviderError,
    AIResponse,
    ChatOptions,
    ConnectionResult,
)


class MistralProvider(BaseAIProvider):
    name = "mistral"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        **kwargs,
    ):
        super().__init__(base_url or settings.mistral_base_url, model or settings.mistral_model, **kwargs)
        self.api_key = api_key if api_key is not None else settings.mistral_api_key

    def _headers(self) -> dict:
        if not self.api_key:
            raise AIProviderError(AIErrorCode.AUTH, "Missing Mistral API key", self.name)
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _send(self, client: httpx.AsyncClient, messages: List[AIMessage], options: ChatOptions) -> AIResponse:
        body = {
            "model": options.model or self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        response = await client.post(f"{self.base_url}/v1/chat/completions", headers=self._headers(), json=body)
        response.raise_for_status()
        data = response.json()

        usage = data.get("usage", {})
        return AIResponse(
            content=data["choices"][0]["message"]["content"],
            model=data.get("model", body["model"]),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
        )

    async def _probe(self, client: httpx.AsyncClient) -> ConnectionResult:
        response = await client.get(f"{self.base_url}/v1/models", headers=self._headers())
        response.raise_for_status()
        models = [item["id"] for item in response.json().get("data", [])]
        return ConnectionResult(valid=True, models=models)

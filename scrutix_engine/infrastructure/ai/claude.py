"""Anthropic Messages API adapter"""

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


class ClaudeProvider(BaseAIProvider):
    name = "claude"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        **kwargs,
    ):
        super().__init__(base_url or settings.anthropic_base_url, model or settings.claude_model, **kwargs)
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key

    def _headers(self) -> dict:
        if not self.api_key:
            raise AIProviderError(AIErrorCode.AUTH, "Missing Anthropic API key", self.name)
        return {
            "x-api-key": self.api_key,
            "anthropic-version": settings.anthropic_version,
            "content-type": "application/json",
        }

    async def _send(self, client: httpx.AsyncClient, messages: List[AIMessage], options: ChatOptions) -> AIResponse:
        # System prompt travels outside the message list
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        body = {
            "model": options.model or self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": m.role, "content": m.content} for m in messages if m.role != "system"],
        }
        if system:
            body["system"] = system

        response = await client.post(f"{self.base_url}/v1/messages", headers=self._headers(), json=body)
        response.raise_for_status()
        data = response.json()

        text = "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")
        usage = data.get("usage", {})
        return AIResponse(
            content=text,
            model=data.get("model", body["model"]),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        )

    async def _probe(self, client: httpx.AsyncClient) -> ConnectionResult:
        response = await client.post(
            f"{self.base_url}/v1/messages",
            headers=self._headers(),
            json={"model": self.model, "max_tokens": 1, "messages": [{"role": "user", "content": "ping"}]},
        )
        response.raise_for_status()
        return ConnectionResult(valid=True, models=[self.model])

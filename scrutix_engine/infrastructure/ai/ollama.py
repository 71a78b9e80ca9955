"""Local Ollama adapter"""

from typing import List

import httpx

from scrutix_engine.config import settings
from scrutix_engine.infrastructure.ai.base import BaseAIProvider
from scrutix_engine.infrastructure.ai.types import AIMessage, AIResponse, ChatOptions, ConnectionResult


class OllamaProvider(BaseAIProvider):
    """No credentials; the model must be pulled on the local server"""

    name = "ollama"

    def __init__(self, base_url: str | None = None, model: str | None = None, **kwargs):
        super().__init__(base_url or settings.ollama_base_url, model or settings.ollama_model, **kwargs)

    async def _send(self, client: httpx.AsyncClient, messages: List[AIMessage], options: ChatOptions) -> AIResponse:
        body = {
            "model": options.model or self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {"temperature": options.temperature, "num_predict": options.max_tokens},
        }
        response = await client.post(f"{self.base_url}/api/chat", json=body)
        response.raise_for_status()
        data = response.json()

        return AIResponse(
            content=data["message"]["content"],
            model=data.get("model", body["model"]),
            input_tokens=data.get("prompt_eval_count", 0),
            output_tokens=data.get("eval_count", 0),
        )

    async def _probe(self, client: httpx.AsyncClient) -> ConnectionResult:
        response = await client.get(f"{self.base_url}/api/tags")
        response.raise_for_status()
        models = [item["name"] for item in response.json().get("models", [])]

        # Tags carry a ":latest" style suffix
        installed = {name.split(":")[0] for name in models} | set(models)
        if self.model not in installed:
            return ConnectionResult(valid=False, error=f"Model {self.model} is not installed", models=models)
        return ConnectionResult(valid=True, models=models)

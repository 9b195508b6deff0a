"""
Ollama provider.
Calls POST /api/generate with a JSON schema in `format`, so the model is
constrained to the analysis shape and the reply decodes directly.
"""
import logging
from typing import Optional

import httpx

from models.documents import TokenMetrics
from providers.base import AIProvider, Completion, ProviderError
from providers.prompts import analysis_schema

logger = logging.getLogger("scribe.providers.ollama")


class OllamaProvider(AIProvider):
    name = "ollama"

    def __init__(self, settings, prompts, content_max_length=50_000,
                 encoding=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings, prompts, content_max_length, encoding)
        self._client = httpx.AsyncClient(
            base_url=settings.ollama_api_url,
            # Local models on CPU can take many minutes per document
            timeout=settings.ollama_timeout,
            transport=transport,
        )
        self.schema = analysis_schema(self.custom_fields)

    async def close(self):
        await self._client.aclose()

    async def _complete(self, system_prompt: str, content: str) -> Completion:
        payload = {
            "model": self.model,
            "prompt": content,
            "system": system_prompt,
            "format": self.schema,
            "stream": False,
            "options": {"temperature": self.settings.temperature},
        }
        try:
            resp = await self._client.post("/api/generate", json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Ollama returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        data = resp.json()
        if not isinstance(data, dict) or "response" not in data:
            raise ProviderError("Invalid response from Ollama API")

        prompt_tokens = data.get("prompt_eval_count") or 0
        completion_tokens = data.get("eval_count") or 0
        return Completion(
            text=data["response"] or "",
            metrics=TokenMetrics(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            structured=True,
        )

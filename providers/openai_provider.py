"""
OpenAI-family providers: OpenAI, Azure OpenAI and any OpenAI-compatible
endpoint. All three speak chat completions through the openai SDK and
differ only in how the client is built.
"""
import logging
from typing import Optional

from openai import AsyncAzureOpenAI, AsyncOpenAI

from models.documents import TokenMetrics
from providers.base import AIProvider, Completion, ProviderError

logger = logging.getLogger("scribe.providers.openai")


class OpenAIProvider(AIProvider):
    """Chat completions against api.openai.com (or OPENAI_BASE_URL)."""

    name = "openai"

    def __init__(self, settings, prompts, content_max_length=50_000,
                 encoding=None, client: Optional[AsyncOpenAI] = None):
        super().__init__(settings, prompts, content_max_length, encoding)
        self.client = client or self._build_client()

    def _build_client(self):
        return AsyncOpenAI(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url or None,
            timeout=self.settings.request_timeout,
        )

    async def close(self):
        await self.client.close()

    async def _complete(self, system_prompt: str, content: str) -> Completion:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            temperature=self.settings.temperature,
        )
        if not response.choices or not response.choices[0].message.content:
            raise ProviderError(f"Invalid API response structure from {self.name}")
        return Completion(
            text=response.choices[0].message.content,
            metrics=_usage_metrics(response),
        )


class AzureOpenAIProvider(OpenAIProvider):
    """Azure OpenAI. The model name is the deployment name."""

    name = "azure"

    def _build_client(self):
        return AsyncAzureOpenAI(
            api_key=self.settings.azure_api_key,
            azure_endpoint=self.settings.azure_endpoint,
            azure_deployment=self.settings.azure_deployment,
            api_version=self.settings.azure_api_version,
            timeout=self.settings.request_timeout,
        )


class CustomProvider(OpenAIProvider):
    """Any OpenAI-compatible server (LiteLLM, vLLM, LM Studio, ...)."""

    name = "custom"

    def _build_client(self):
        return AsyncOpenAI(
            # The SDK insists on a key; local servers ignore it
            api_key=self.settings.custom_api_key or "not-needed",
            base_url=self.settings.custom_base_url,
            timeout=self.settings.request_timeout,
        )


def _usage_metrics(response) -> TokenMetrics:
    """Usage block → TokenMetrics. Servers that omit usage give all zeros."""
    usage = getattr(response, "usage", None)
    if usage is None:
        logger.debug("Response carried no usage block — metrics not measured")
        return TokenMetrics()
    return TokenMetrics(
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
    )

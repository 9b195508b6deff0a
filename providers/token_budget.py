"""Token counting and content truncation for the provider gateway.

Uses tiktoken for model-specific token counts. Models tiktoken does not
know (local Ollama models, custom deployments) fall back to cl100k_base.
"""
import logging

import tiktoken

logger = logging.getLogger("scribe.token_budget")

# Context window sizes per model family (tokens). Longest prefix wins.
MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    "gpt-4o-mini": 128_000,
    "gpt-4o": 128_000,
    "gpt-4.1": 1_000_000,
    "gpt-4-turbo": 128_000,
    "gpt-4": 8_192,
    "gpt-3.5-turbo": 16_385,
    "o1": 200_000,
    "o3": 200_000,
    "llama3": 8_192,
    "llama3.1": 128_000,
    "llama3.2": 128_000,
    "mistral": 32_768,
    "qwen2.5": 32_768,
}
DEFAULT_CONTEXT_WINDOW = 128_000
FALLBACK_ENCODING = "cl100k_base"


def context_window_for(model: str) -> int:
    """Return the context window size for a model name."""
    name = (model or "").lower()
    best = ""
    for prefix in MODEL_CONTEXT_WINDOWS:
        if name.startswith(prefix) and len(prefix) > len(best):
            best = prefix
    return MODEL_CONTEXT_WINDOWS[best] if best else DEFAULT_CONTEXT_WINDOW


class TokenBudget:
    """
    Input budget for one model:
        context_limit - system_prompt_tokens - reserved_response_tokens
    Content beyond the budget is cut at a token boundary.
    """

    def __init__(self, model: str, context_limit: int = 0,
                 reserved_response_tokens: int = 1000, encoding=None):
        self.model = model
        self.context_limit = context_limit or context_window_for(model)
        self.reserved_response_tokens = reserved_response_tokens
        self._encoding = encoding

    @property
    def encoding(self):
        # Resolved lazily: tiktoken fetches BPE files on first use
        if self._encoding is None:
            try:
                self._encoding = tiktoken.encoding_for_model(self.model)
            except KeyError:
                self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)
        return self._encoding

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text))

    def available_for_content(self, system_prompt: str) -> int:
        return self.context_limit - self.count(system_prompt) - self.reserved_response_tokens

    def truncate(self, content: str, system_prompt: str) -> tuple[str, bool]:
        """
        Trim content to the remaining budget.
        Returns (content, truncated). Raises ValueError when the system
        prompt alone exhausts the budget.
        """
        budget = self.available_for_content(system_prompt)
        if budget <= 0:
            raise ValueError(
                f"System prompt leaves no room for content "
                f"(limit={self.context_limit}, reserved={self.reserved_response_tokens})"
            )
        tokens = self.encoding.encode(content)
        if len(tokens) <= budget:
            return content, False
        logger.info(
            f"Token budget: content {len(tokens)} tokens > {budget} available "
            f"for {self.model}, truncating"
        )
        return self.encoding.decode(tokens[:budget]), True


def hard_cap(content: str, max_chars: int) -> tuple[str, bool]:
    """Character cap applied before any provider dispatch."""
    if max_chars and len(content) > max_chars:
        return content[:max_chars], True
    return content, False

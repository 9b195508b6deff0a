"""
Base AI provider interface.

Concrete providers implement one method, `_complete`, for their wire
format. Everything else — content caps, token budgeting, prompt
construction, reply parsing, and error containment — lives here so that
`analyze` / `analyze_ad_hoc` never raise past this boundary.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from config.settings import AIConfig, PromptConfig
from models.documents import AnalysisOutcome, AnalysisResult, TokenMetrics
from providers.prompts import PromptBuilder
from providers.response_parser import PARSED, ParseResult, parse_json_object, parse_model_reply
from providers.token_budget import TokenBudget, hard_cap

logger = logging.getLogger("scribe.providers")

DEFAULT_CONTENT_MAX_LENGTH = 50_000


class ProviderError(Exception):
    """Backend call failed or returned unusable content."""


class ParseError(ProviderError):
    """Model reply could not be turned into a JSON object."""


@dataclass
class Completion:
    """Raw backend reply."""
    text: str
    metrics: TokenMetrics = field(default_factory=TokenMetrics)
    # Set when the backend enforced the analysis schema itself
    structured: bool = False


class AIProvider(ABC):
    """One analysis backend. Built once from configuration by the factory."""

    name = "base"

    def __init__(self, settings: AIConfig, prompts: PromptConfig,
                 content_max_length: int = DEFAULT_CONTENT_MAX_LENGTH,
                 encoding=None):
        self.settings = settings
        self.prompts = PromptBuilder(prompts)
        self.custom_fields = list(prompts.custom_fields)
        self.content_max_length = content_max_length
        self.budget = TokenBudget(
            model=self.model,
            context_limit=settings.token_limit,
            reserved_response_tokens=settings.reserved_response_tokens,
            encoding=encoding,
        )

    @property
    def model(self) -> str:
        return self.settings.model

    async def close(self):
        """Release the backend client."""

    @abstractmethod
    async def _complete(self, system_prompt: str, content: str) -> Completion:
        """
        Send one analysis request.

        Args:
            system_prompt: Fully assembled system prompt
            content: Document text, already truncated

        Returns:
            Completion with the reply text and token usage

        Raises:
            ProviderError (or any transport exception) on failure
        """

    # -------------------------------------------------------
    # Gateway boundary
    # -------------------------------------------------------

    async def analyze(
        self,
        content: str,
        existing_tags: List[str],
        existing_correspondents: List[str],
        document_id: Optional[int] = None,
        custom_prompt: Optional[str] = None,
    ) -> AnalysisOutcome:
        """Analyze a document. Always returns an outcome, never raises."""
        try:
            system_prompt = self.prompts.analysis_prompt(
                existing_tags, existing_correspondents, custom_prompt,
            )
            return await self._run(system_prompt, content, document_id)
        except Exception as e:
            logger.error(f"{self.name}: analysis of document {document_id} failed: {e}")
            return AnalysisOutcome.failure(str(e))

    async def analyze_ad_hoc(self, content: str, prompt: str) -> AnalysisOutcome:
        """Exploratory analysis with a caller prompt. Never raises."""
        try:
            return await self._run(self.prompts.ad_hoc_prompt(prompt), content, None)
        except Exception as e:
            logger.error(f"{self.name}: ad-hoc analysis failed: {e}")
            return AnalysisOutcome.failure(str(e))

    async def _run(self, system_prompt: str, content: str,
                   document_id: Optional[int]) -> AnalysisOutcome:
        content, capped = hard_cap(content or "", self.content_max_length)
        try:
            content, trimmed = self.budget.truncate(content, system_prompt)
        except ValueError as e:
            raise ProviderError(str(e)) from e

        logger.info(
            f"Calling {self.name}: model={self.model}, document={document_id}, "
            f"{len(content)} chars{' (truncated)' if capped or trimmed else ''}"
        )
        completion = await self._complete(system_prompt, content)
        if not completion.text or not completion.text.strip():
            raise ProviderError(f"Empty response from {self.name}")

        parsed = self._parse(completion)
        if not parsed.ok:
            raise ParseError(f"Invalid JSON response from {self.name}: {parsed.reason}")

        result = AnalysisResult.from_dict(parsed.data)
        if not result.tags and result.correspondent is None:
            logger.warning(f"{self.name}: no tags or correspondent found for document {document_id}")
        if completion.metrics.measured:
            logger.info(
                f"{self.name} responded: {completion.metrics.prompt_tokens} in, "
                f"{completion.metrics.completion_tokens} out"
            )
        return AnalysisOutcome(
            document=result,
            metrics=completion.metrics,
            truncated=capped or trimmed,
        )

    def _parse(self, completion: Completion) -> ParseResult:
        if completion.structured:
            result = parse_json_object(completion.text.strip())
            if result.status == PARSED:
                return result
            logger.warning(f"{self.name}: structured output did not parse, falling back to extraction")
        return parse_model_reply(completion.text)

# src/review_orchestrator/providers/anthropic.py
import logging
import anthropic
from anthropic import AsyncAnthropic
from .base import ReviewProvider
from review_orchestrator.errors import (
    AuthError,
    MalformedResponseError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
)
from review_orchestrator.models.review import ReviewOptions


logger = logging.getLogger(__name__)


def map_anthropic_error(e: anthropic.AnthropicError) -> ProviderError:
    if isinstance(e, anthropic.APITimeoutError):
        return ProviderTimeoutError(str(e))
    if isinstance(e, anthropic.APIConnectionError):
        return ProviderUnavailableError(str(e))
    if isinstance(e, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return AuthError(str(e))
    if isinstance(e, anthropic.RateLimitError):
        return RateLimitedError(str(e))
    # 529 overloaded is reported as a 5xx status
    if isinstance(e, anthropic.APIStatusError) and e.status_code >= 500:
        return ProviderUnavailableError(str(e))
    return MalformedResponseError(str(e))


class AnthropicProvider(ReviewProvider):
    name = "anthropic"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5"):
        super().__init__(model)
        self.client = AsyncAnthropic(api_key=api_key, max_retries=0)

    async def review(self, prompt: str, options: ReviewOptions) -> str:
        try:
            response = await self.client.messages.create(
                model=options.model,
                max_tokens=options.max_output_tokens,
                temperature=options.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.AnthropicError as e:
            raise map_anthropic_error(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        logger.info(f"Anthropic response length: {len(text)} chars, stop_reason={response.stop_reason}")
        return self._normalize(text)

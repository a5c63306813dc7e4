# src/review_orchestrator/providers/openai.py
import logging
import openai
from openai import AsyncOpenAI
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


def map_openai_error(e: openai.OpenAIError) -> ProviderError:
    if isinstance(e, openai.APITimeoutError):
        return ProviderTimeoutError(str(e))
    if isinstance(e, openai.APIConnectionError):
        return ProviderUnavailableError(str(e))
    if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthError(str(e))
    if isinstance(e, openai.RateLimitError):
        return RateLimitedError(str(e))
    if isinstance(e, openai.APIStatusError) and e.status_code >= 500:
        return ProviderUnavailableError(str(e))
    return MalformedResponseError(str(e))


class OpenAIProvider(ReviewProvider):
    """Chat Completions provider; also serves OpenAI-compatible endpoints via base_url."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4.1", base_url: str | None = None):
        super().__init__(model)
        # Retries and deadlines are owned by the dispatcher
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def review(self, prompt: str, options: ReviewOptions) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=options.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=options.temperature,
                max_tokens=options.max_output_tokens,
            )
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

        if not response.choices:
            raise MalformedResponseError(f"{self.identity.label} returned no choices")

        text = response.choices[0].message.content
        logger.info(f"OpenAI response length: {len(text or '')} chars")
        return self._normalize(text)

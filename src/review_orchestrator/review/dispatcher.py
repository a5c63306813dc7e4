# src/review_orchestrator/review/dispatcher.py
"""Fan-out of one chunk to every configured provider."""

import asyncio
import logging
from collections.abc import Callable, Sequence

from review_orchestrator.errors import ProviderError, ProviderTimeoutError
from review_orchestrator.models.review import (
    Chunk,
    ChunkReviewResult,
    FragmentStatus,
    ReviewFragment,
    ReviewOptions,
)
from review_orchestrator.providers.base import ReviewProvider
from .retry import RetryPolicy


logger = logging.getLogger(__name__)


class ReviewDispatcher:
    """Runs all providers for a chunk concurrently and collects one fragment each.

    Every provider call has a hard per-call deadline. Retryable failures
    (rate limiting, unavailability, timeouts) are retried with exponential
    backoff; anything else is recorded on the first failure. Provider errors
    never escape `dispatch`.
    """

    def __init__(
        self,
        timeout_seconds: float = 120.0,
        retry: RetryPolicy | None = None,
        max_output_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.retry = retry or RetryPolicy()
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    def options_for(self, provider: ReviewProvider) -> ReviewOptions:
        return ReviewOptions(
            model=provider.identity.model,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )

    async def dispatch(
        self,
        chunk: Chunk,
        providers: Sequence[ReviewProvider],
        prompt: str,
        options_for: Callable[[ReviewProvider], ReviewOptions] | None = None,
    ) -> ChunkReviewResult:
        options_for = options_for or self.options_for
        logger.info(f"Dispatching chunk {chunk.index + 1}/{chunk.total} to {len(providers)} providers")

        tasks = [
            asyncio.create_task(
                self._review_with_retry(provider, chunk.index, prompt, options_for(provider)),
                name=f"chunk-{chunk.index}-{provider.identity.name}",
            )
            for provider in providers
        ]
        # gather preserves provider order regardless of completion order
        fragments = await asyncio.gather(*tasks)

        result = ChunkReviewResult(
            chunk_index=chunk.index,
            file_paths=tuple(chunk.paths),
            fragments=tuple(fragments),
        )
        if result.all_failed:
            logger.warning(f"All providers failed for chunk {chunk.index + 1}/{chunk.total}")
        return result

    async def _review_with_retry(
        self,
        provider: ReviewProvider,
        chunk_index: int,
        prompt: str,
        options: ReviewOptions,
    ) -> ReviewFragment:
        label = provider.identity.label
        error: Exception | None = None

        for attempt in range(self.retry.attempts):
            if attempt > 0:
                delay = self.retry.delay(attempt - 1)
                logger.info(f"Retrying {label} for chunk {chunk_index} in {delay:.1f}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)

            try:
                text = await asyncio.wait_for(
                    provider.review(prompt, options),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = ProviderTimeoutError(f"No response within {self.timeout_seconds}s")
                logger.warning(f"{label} timed out on chunk {chunk_index}")
                continue
            except ProviderError as e:
                error = e
                logger.warning(f"{label} failed on chunk {chunk_index}: {e.reason}: {e}")
                if not e.retryable:
                    break
                continue
            except Exception as e:
                error = e
                logger.exception(f"{label} raised unexpected error on chunk {chunk_index}")
                break

            return ReviewFragment(
                provider=provider.identity,
                chunk_index=chunk_index,
                status=FragmentStatus.OK,
                text=text,
                attempts=attempt + 1,
            )

        return self._failed_fragment(provider, chunk_index, error, attempt + 1)

    def _failed_fragment(
        self,
        provider: ReviewProvider,
        chunk_index: int,
        error: Exception | None,
        attempts: int,
    ) -> ReviewFragment:
        if isinstance(error, ProviderError):
            status = error.status
            reason = error.reason
        else:
            status = FragmentStatus.FAILED
            reason = type(error).__name__ if error else "unknown"
        return ReviewFragment(
            provider=provider.identity,
            chunk_index=chunk_index,
            status=status,
            reason=reason,
            attempts=attempts,
        )

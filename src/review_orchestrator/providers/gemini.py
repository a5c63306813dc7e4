# src/review_orchestrator/providers/gemini.py
import httpx
from .base import ReviewProvider
from review_orchestrator.errors import (
    AuthError,
    MalformedResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
)
from review_orchestrator.models.review import ReviewOptions


class GeminiProvider(ReviewProvider):
    API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        super().__init__(model)
        self.api_key = api_key

    async def review(self, prompt: str, options: ReviewOptions) -> str:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.API_URL.format(model=options.model),
                    headers={"x-goog-api-key": self.api_key},
                    json={
                        "contents": [{
                            "parts": [{"text": prompt}]
                        }],
                        "generationConfig": {
                            "maxOutputTokens": options.max_output_tokens,
                            "temperature": options.temperature,
                        },
                    },
                    timeout=None,
                )
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(str(e)) from e
        except httpx.TransportError as e:
            raise ProviderUnavailableError(str(e)) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                raise AuthError(str(e)) from e
            if status == 429:
                raise RateLimitedError(str(e)) from e
            if status >= 500:
                raise ProviderUnavailableError(str(e)) from e
            raise MalformedResponseError(str(e)) from e

        try:
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"Unexpected Gemini response: {e}") from e

        return self._normalize(text)

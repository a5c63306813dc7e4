# src/review_orchestrator/providers/base.py
from abc import ABC, abstractmethod
from review_orchestrator.errors import MalformedResponseError
from review_orchestrator.models.review import ProviderIdentity, ReviewOptions


class ReviewProvider(ABC):
    name: str = ""

    def __init__(self, model: str):
        self.identity = ProviderIdentity(name=self.name, model=model)

    @abstractmethod
    async def review(self, prompt: str, options: ReviewOptions) -> str:
        """Send prompt to the model and return the review text.

        Raises a ProviderError subclass on failure.
        """
        pass

    def _normalize(self, text: str | None) -> str:
        text = (text or "").strip()
        if not text:
            raise MalformedResponseError(f"{self.identity.label} returned an empty response")
        return text

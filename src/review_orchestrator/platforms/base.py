from abc import ABC, abstractmethod
from enum import Enum
from review_orchestrator.models.review import FileDiff


class PublishResult(str, Enum):
    POSTED = "posted"
    CONFLICT = "conflict"  # already posted for this idempotency key


class GitPlatform(ABC):
    @abstractmethod
    async def fetch_diff(self, project_id: int, mr_iid: int) -> list[FileDiff]:
        """Raises NotFoundError or UnauthorizedError."""
        pass

    @abstractmethod
    async def fetch_rules(self, project_id: int, path: str, branch: str) -> str | None:
        """Return the rules document, or None if it does not exist."""
        pass

    @abstractmethod
    async def get_repo_config(self, project_id: int, ref: str) -> str | None:
        pass

    @abstractmethod
    async def publish_comment(
        self,
        project_id: int,
        mr_iid: int,
        idempotency_key: str,
        body: str,
    ) -> PublishResult:
        """Post the report once per key. Raises PublishUnavailableError on transient failure."""
        pass

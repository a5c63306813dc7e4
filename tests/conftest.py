# tests/conftest.py
import asyncio
import pytest
from review_orchestrator.models.review import FileDiff, ReviewOptions, ReviewRequest
from review_orchestrator.providers.base import ReviewProvider


class ScriptedProvider(ReviewProvider):
    """Provider double that replays a script of results.

    Script items are strings (returned), exceptions (raised) or floats
    (seconds to sleep before returning "slow review").
    """

    def __init__(self, name: str, model: str = "test-model", script=None, delay: float = 0.0):
        self.name = name
        super().__init__(model)
        self.script = list(script or ["LGTM"])
        self.delay = delay
        self.calls = 0
        self.prompts: list[str] = []

    async def review(self, prompt: str, options: ReviewOptions) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        item = self.script[min(self.calls - 1, len(self.script) - 1)]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, float):
            await asyncio.sleep(item)
            return "slow review"
        return item


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def review_request():
    return ReviewRequest(
        base_url="https://gitlab.com",
        project_id=123,
        mr_iid=45,
        title="Add greeting",
        description="Print a greeting on startup",
        source_branch="feature",
        target_branch="main",
        event_id="abc123",
    )


@pytest.fixture
def file_diffs():
    return [
        FileDiff(path="src/a.py", diff="--- a/src/a.py\n+++ b/src/a.py\n@@ -1 +1,2 @@\n+print('a')\n"),
        FileDiff(path="src/b.py", diff="--- a/src/b.py\n+++ b/src/b.py\n@@ -1 +1,2 @@\n+print('b')\n"),
    ]

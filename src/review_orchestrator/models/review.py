from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class FileDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    diff: str

    @property
    def length(self) -> int:
        return len(self.diff)


class Chunk(BaseModel):
    """Budget-bounded slice of a merge request diff. Files are never split."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    total: int = Field(ge=1)
    files: tuple[FileDiff, ...] = Field(min_length=1)

    @property
    def length(self) -> int:
        return sum(f.length for f in self.files)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def oversized(self, budget: int) -> bool:
        return self.length > budget


class ReviewRequest(BaseModel):
    """One trigger event for one merge request."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    project_id: int
    mr_iid: int
    title: str = ""
    description: str = ""
    source_branch: str
    target_branch: str
    event_id: str
    diff: str = ""
    changed_files: tuple[str, ...] = ()

    @property
    def mr_key(self) -> str:
        return f"{self.project_id}!{self.mr_iid}"

    @property
    def idempotency_key(self) -> str:
        return f"{self.mr_key}@{self.event_id}"


class ProviderIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.name} ({self.model})"


class ReviewOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    max_output_tokens: int = 4096
    temperature: float = 0.2


class FragmentStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ReviewFragment(BaseModel):
    """One provider's output for one chunk."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderIdentity
    chunk_index: int
    status: FragmentStatus
    text: str = ""
    reason: str | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.status == FragmentStatus.OK


class ChunkReviewResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_index: int
    file_paths: tuple[str, ...] = ()
    fragments: tuple[ReviewFragment, ...] = ()

    @property
    def all_failed(self) -> bool:
        return bool(self.fragments) and not any(f.ok for f in self.fragments)


class FinalReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    body: str
    contributors: tuple[str, ...] = ()
    failed_providers: tuple[str, ...] = ()
    project_id: int
    mr_iid: int
    event_id: str
    degraded_rules: bool = False
    complete: bool = True

    @property
    def idempotency_key(self) -> str:
        return f"{self.project_id}!{self.mr_iid}@{self.event_id}"

from .config import RepoConfig
from .review import (
    Chunk,
    ChunkReviewResult,
    FileDiff,
    FinalReport,
    FragmentStatus,
    ProviderIdentity,
    ReviewFragment,
    ReviewOptions,
    ReviewRequest,
)
from .webhook import GitLabMREvent, GitLabNoteEvent

__all__ = [
    "RepoConfig",
    "Chunk",
    "ChunkReviewResult",
    "FileDiff",
    "FinalReport",
    "FragmentStatus",
    "ProviderIdentity",
    "ReviewFragment",
    "ReviewOptions",
    "ReviewRequest",
    "GitLabMREvent",
    "GitLabNoteEvent",
]

# src/review_orchestrator/review/chunker.py
import logging
from collections.abc import Sequence

from review_orchestrator.errors import InputError
from review_orchestrator.models.review import Chunk, FileDiff


logger = logging.getLogger(__name__)


def chunk_diffs(file_diffs: Sequence[FileDiff], budget: int) -> list[Chunk]:
    """Group file diffs into ordered chunks of at most `budget` characters.

    Files are packed greedily in their original order. A file is never split
    across chunks; a file larger than the budget gets a chunk of its own.
    An empty input yields no chunks.
    """
    if isinstance(budget, bool) or not isinstance(budget, int) or budget <= 0:
        raise InputError(f"Chunk budget must be a positive integer, got {budget!r}")

    groups: list[list[FileDiff]] = []
    current: list[FileDiff] = []
    current_length = 0

    for file_diff in file_diffs:
        if current and current_length + file_diff.length > budget:
            groups.append(current)
            current = []
            current_length = 0
        current.append(file_diff)
        current_length += file_diff.length

    if current:
        groups.append(current)

    total = len(groups)
    chunks = [Chunk(index=i, total=total, files=tuple(group)) for i, group in enumerate(groups)]

    for chunk in chunks:
        if chunk.oversized(budget):
            logger.warning(
                f"Chunk {chunk.index} holds oversized file {chunk.paths[0]} "
                f"({chunk.length} chars > budget {budget})"
            )

    return chunks

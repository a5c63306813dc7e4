# src/review_orchestrator/review/parser.py
from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from review_orchestrator.errors import InputError
from review_orchestrator.models.review import FileDiff


def parse_diff(diff_text: str) -> list[FileDiff]:
    """Split a unified diff into per-file diffs, keeping the original order."""
    try:
        patch = PatchSet(diff_text)
    except UnidiffParseError as e:
        raise InputError(f"Malformed diff: {e}") from e

    if diff_text.strip() and not patch:
        raise InputError("Malformed diff: no file sections found")

    return [
        FileDiff(path=patched_file.path, diff=str(patched_file))
        for patched_file in patch
    ]


def file_diffs_from_changes(changes: list[dict]) -> list[FileDiff]:
    """Build FileDiffs from GitLab MR `changes` entries.

    GitLab returns hunks without file headers, so headers are restored to keep
    each diff self-contained for the model.
    """
    files = []
    for change in changes:
        old_path = "/dev/null" if change.get("new_file") else f"a/{change['old_path']}"
        new_path = "/dev/null" if change.get("deleted_file") else f"b/{change['new_path']}"
        header = f"--- {old_path}\n+++ {new_path}\n"
        files.append(FileDiff(path=change["new_path"], diff=header + (change.get("diff") or "")))
    return files

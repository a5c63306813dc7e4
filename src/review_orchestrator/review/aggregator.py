# src/review_orchestrator/review/aggregator.py
"""Merge of per-chunk, per-provider fragments into a single report."""

import logging
from collections.abc import Sequence

from review_orchestrator.models.review import ChunkReviewResult, FinalReport, ReviewRequest


logger = logging.getLogger(__name__)

NO_CHANGES_TEXT = "No reviewable changes were found in this merge request."
NO_PROVIDERS_TEXT = "No review was generated: no providers configured."
ALL_FAILED_TEXT = "No review could be generated: every provider failed for every part of the diff."
NOT_REVIEWED_TEXT = "No review could be generated: no part of the diff was reviewed before the run deadline."
DEGRADED_RULES_TEXT = (
    "> **Note:** the project review rules could not be found; built-in default rules were used."
)
FAILURE_TEXT = "The review could not be completed ({reason}). Comment `/review` to try again."


def _unique(items: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


class ReviewAggregator:
    """Combines chunk results into one attributed markdown report.

    Ordering is by chunk index, then by configured provider order. Provider
    outputs are kept separate; overlapping findings are not merged.
    """

    def __init__(self, reviewer_name: str = "AI Review") -> None:
        self.reviewer_name = reviewer_name

    def aggregate(
        self,
        results: Sequence[ChunkReviewResult],
        request: ReviewRequest,
        *,
        degraded_rules: bool = False,
        total_chunks: int | None = None,
        provider_count: int | None = None,
    ) -> FinalReport:
        ordered = sorted(results, key=lambda r: r.chunk_index)
        total = len(ordered) if total_chunks is None else total_chunks
        if provider_count is None:
            provider_count = max((len(r.fragments) for r in ordered), default=0)

        contributors: list[str] = []
        failed: list[str] = []
        failure_notes: list[str] = []
        sections: list[str] = []

        for result in ordered:
            blocks = []
            for fragment in result.fragments:
                label = fragment.provider.label
                if fragment.ok:
                    contributors.append(label)
                    blocks.append(f"#### {label}\n\n{fragment.text}")
                else:
                    failed.append(label)
                    failure_notes.append(
                        f"- {label}: part {result.chunk_index + 1} ({fragment.reason or fragment.status.value})"
                    )
            if blocks:
                sections.append(self._render_chunk(result, total, blocks))

        missing = sorted(set(range(total)) - {r.chunk_index for r in ordered})
        complete = not missing

        lines = [f"## {self.reviewer_name}", ""]
        if degraded_rules:
            lines += [DEGRADED_RULES_TEXT, ""]

        if total == 0:
            lines.append(NO_CHANGES_TEXT)
        elif provider_count == 0:
            lines.append(NO_PROVIDERS_TEXT)
        elif not ordered:
            lines.append(NOT_REVIEWED_TEXT)
        elif not sections:
            lines.append(ALL_FAILED_TEXT)
        else:
            lines.append("\n\n".join(sections))

        if missing:
            parts = ", ".join(str(i + 1) for i in missing)
            lines += ["", f"> **Incomplete:** part(s) {parts} of {total} were not reviewed before the run deadline."]

        if failure_notes:
            lines += ["", "<details><summary>Unavailable providers</summary>", "", *failure_notes, "", "</details>"]

        report = FinalReport(
            body="\n".join(lines).rstrip() + "\n",
            contributors=_unique(contributors),
            failed_providers=_unique(failed),
            project_id=request.project_id,
            mr_iid=request.mr_iid,
            event_id=request.event_id,
            degraded_rules=degraded_rules,
            complete=complete,
        )
        logger.info(
            f"Aggregated {len(ordered)}/{total} chunks for MR !{request.mr_iid}: "
            f"{len(report.contributors)} contributing, {len(report.failed_providers)} failing providers"
        )
        return report

    def failure_body(self, reason: str) -> str:
        return f"## {self.reviewer_name}\n\n{FAILURE_TEXT.format(reason=reason)}\n"

    def _render_chunk(self, result: ChunkReviewResult, total: int, blocks: list[str]) -> str:
        body = "\n\n".join(blocks)
        if total <= 1:
            return body
        files = ", ".join(f"`{path}`" for path in result.file_paths)
        return f"### Part {result.chunk_index + 1} of {total}\n\n{files}\n\n{body}"

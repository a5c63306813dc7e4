# src/review_orchestrator/review/controller.py
"""Top-level review run: chunk, dispatch, aggregate, publish."""

import asyncio
import fnmatch
import logging
import re
import yaml
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from review_orchestrator.errors import (
    InfrastructureError,
    InputError,
    PublishUnavailableError,
)
from review_orchestrator.models.config import RepoConfig
from review_orchestrator.models.review import (
    Chunk,
    ChunkReviewResult,
    FinalReport,
    ReviewRequest,
)
from review_orchestrator.platforms.base import GitPlatform, PublishResult
from review_orchestrator.providers.base import ReviewProvider
from .aggregator import ReviewAggregator
from .chunker import chunk_diffs
from .dispatcher import ReviewDispatcher
from .ledger import IdempotencyLedger
from .parser import parse_diff
from .prompts import PromptContext, build_review_prompt
from .retry import RetryPolicy


logger = logging.getLogger(__name__)


class ReviewState(str, Enum):
    IDLE = "idle"
    CHUNKING = "chunking"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ControllerConfig:
    chunk_budget: int = 100_000
    chunk_concurrency: int = 2
    run_deadline: float = 900.0
    rules_path: str = "REVIEW_RULES.md"
    rules_branch: str | None = None
    default_language: str = "en"
    publish_retry: RetryPolicy = field(default_factory=RetryPolicy)
    log_dir: str | None = None


@dataclass
class RunOutcome:
    state: ReviewState
    history: list[ReviewState]
    report: FinalReport | None = None
    published: bool = False
    publish_result: PublishResult | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == ReviewState.DONE


class _Run:
    """Per-run state tracking; controllers serve concurrent runs."""

    def __init__(self, request: ReviewRequest) -> None:
        self.request = request
        self.state = ReviewState.IDLE
        self.history = [ReviewState.IDLE]

    def transition(self, state: ReviewState, detail: str = "") -> None:
        logger.info(f"MR !{self.request.mr_iid} [{self.request.event_id}]: {self.state.value} -> {state.value} {detail}".rstrip())
        self.state = state
        self.history.append(state)

    def outcome(self, **kwargs) -> RunOutcome:
        return RunOutcome(state=self.state, history=list(self.history), **kwargs)


@dataclass
class _Prepared:
    chunks: list[Chunk]
    rules: str | None
    language: str
    file_list: tuple[str, ...]

    @property
    def default_rules(self) -> bool:
        # Rules are only fetched when there is something to review
        return bool(self.chunks) and self.rules is None


class OrchestrationController:
    def __init__(
        self,
        platform: GitPlatform,
        providers: list[ReviewProvider],
        dispatcher: ReviewDispatcher | None = None,
        aggregator: ReviewAggregator | None = None,
        ledger: IdempotencyLedger | None = None,
        config: ControllerConfig | None = None,
    ) -> None:
        self.platform = platform
        self.providers = list(providers)
        self.dispatcher = dispatcher or ReviewDispatcher()
        self.aggregator = aggregator or ReviewAggregator()
        self.ledger = ledger or IdempotencyLedger()
        self.config = config or ControllerConfig()
        self.log_dir = Path(self.config.log_dir) if self.config.log_dir else None
        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    async def run(self, request: ReviewRequest, automatic: bool = False) -> RunOutcome:
        """Review one merge request event and publish the report once.

        `automatic` marks webhook-triggered runs, which honour the repository's
        `auto_review: false` setting.
        """
        run = _Run(request)
        if not await self.ledger.claim(request.mr_key, request.event_id):
            logger.info(f"Event {request.idempotency_key} already handled, skipping")
            run.transition(ReviewState.DONE, "(duplicate)")
            return run.outcome(reason="duplicate")

        outcome = None
        try:
            outcome = await self._run(run, automatic)
            return outcome
        finally:
            if outcome is not None and outcome.published:
                await self.ledger.record(request.mr_key, request.event_id)
            else:
                await self.ledger.release(request.mr_key, request.event_id)

    async def _run(self, run: _Run, automatic: bool) -> RunOutcome:
        request = run.request
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.run_deadline

        run.transition(ReviewState.CHUNKING)
        try:
            prepared = await asyncio.wait_for(self._prepare(request, automatic), timeout=self.config.run_deadline)
        except asyncio.TimeoutError:
            logger.error(f"Run deadline exceeded before chunking MR !{request.mr_iid}")
            run.transition(ReviewState.FAILED, "(run_timeout)")
            await self._notify_failure(request, "run deadline exceeded")
            return run.outcome(reason="run_timeout")
        except (InputError, InfrastructureError) as e:
            logger.error(f"Cannot review MR !{request.mr_iid}: {type(e).__name__}: {e}")
            run.transition(ReviewState.FAILED, f"({type(e).__name__})")
            await self._notify_failure(request, str(e) or type(e).__name__)
            return run.outcome(reason=str(e) or type(e).__name__)

        if prepared is None:
            run.transition(ReviewState.DONE, "(auto review disabled)")
            return run.outcome(reason="auto_review_disabled")

        results, timed_out = await self._dispatch_chunks(run, prepared, deadline)

        run.transition(ReviewState.AGGREGATING)
        report = self.aggregator.aggregate(
            results,
            request,
            degraded_rules=prepared.default_rules,
            total_chunks=len(prepared.chunks),
            provider_count=len(self.providers),
        )

        run.transition(ReviewState.PUBLISHING)
        try:
            if timed_out:
                # Best effort: the deadline has passed, publish what completed
                publish_result = await self._publish(report)
            else:
                publish_result = await asyncio.wait_for(
                    self._publish(report),
                    timeout=max(deadline - loop.time(), 0),
                )
        except asyncio.TimeoutError:
            run.transition(ReviewState.FAILED, "(run_timeout)")
            return run.outcome(report=report, reason="run_timeout")
        except InfrastructureError as e:
            logger.error(f"Failed to publish review for {report.idempotency_key}: {e}")
            run.transition(ReviewState.FAILED, "(publish_failed)")
            return run.outcome(report=report, reason="publish_failed")

        if timed_out:
            run.transition(ReviewState.FAILED, "(run_timeout)")
            return run.outcome(report=report, published=True, publish_result=publish_result, reason="run_timeout")

        run.transition(ReviewState.DONE)
        return run.outcome(report=report, published=True, publish_result=publish_result)

    async def _prepare(self, request: ReviewRequest, automatic: bool) -> _Prepared | None:
        repo_config = await self._load_config(request.project_id, request.source_branch)
        if automatic and not repo_config.auto_review:
            logger.info(f"Auto review disabled for project {request.project_id}")
            return None

        if request.diff:
            file_diffs = parse_diff(request.diff)
        else:
            file_diffs = await self.platform.fetch_diff(request.project_id, request.mr_iid)

        file_diffs = [f for f in file_diffs if not self._is_excluded(f.path, repo_config.exclude)]
        chunks = chunk_diffs(file_diffs, self.config.chunk_budget)
        logger.info(f"MR !{request.mr_iid}: {len(file_diffs)} files in {len(chunks)} chunks")

        rules = None
        if chunks:
            branch = self.config.rules_branch or request.target_branch
            rules = await self.platform.fetch_rules(request.project_id, self.config.rules_path, branch)
            if rules is None:
                logger.warning(f"Rules {self.config.rules_path}@{branch} not found, using default rules")

        return _Prepared(
            chunks=chunks,
            rules=rules,
            language=repo_config.language or self.config.default_language,
            file_list=tuple(f.path for f in file_diffs),
        )

    async def _dispatch_chunks(
        self,
        run: _Run,
        prepared: _Prepared,
        deadline: float,
    ) -> tuple[list[ChunkReviewResult], bool]:
        """Dispatch chunks with bounded concurrency until done or the deadline passes."""
        if not prepared.chunks:
            return [], False

        semaphore = asyncio.Semaphore(max(self.config.chunk_concurrency, 1))
        prompt_logs: dict[int, str] = {}

        async def dispatch_one(chunk: Chunk) -> ChunkReviewResult:
            async with semaphore:
                run.transition(ReviewState.DISPATCHING, f"(chunk {chunk.index + 1}/{chunk.total})")
                prompt = build_review_prompt(
                    chunk,
                    prepared.rules,
                    PromptContext(
                        title=run.request.title,
                        description=run.request.description,
                        file_list=prepared.file_list,
                        chunk_index=chunk.index,
                        total_chunks=chunk.total,
                        language=prepared.language,
                    ),
                )
                prompt_logs[chunk.index] = self._strip_rules(chunk, prompt.text)
                return await self.dispatcher.dispatch(chunk, self.providers, prompt.text)

        tasks = [
            asyncio.create_task(dispatch_one(chunk), name=f"chunk-{chunk.index}")
            for chunk in prepared.chunks
        ]
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        done, pending = await asyncio.wait(tasks, timeout=remaining)

        timed_out = bool(pending)
        if pending:
            logger.error(
                f"Run deadline exceeded for MR !{run.request.mr_iid}: "
                f"{len(pending)} of {len(tasks)} chunks unfinished"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._save_review_log(run.request, [prompt_logs[i] for i in sorted(prompt_logs)])
        results = [task.result() for task in tasks if task in done]
        return results, timed_out

    async def _publish(self, report: FinalReport) -> PublishResult:
        policy = self.config.publish_retry
        for attempt in range(policy.attempts):
            if attempt > 0:
                await asyncio.sleep(policy.delay(attempt - 1))
            try:
                result = await self.platform.publish_comment(
                    report.project_id,
                    report.mr_iid,
                    report.idempotency_key,
                    report.body,
                )
            except PublishUnavailableError as e:
                logger.warning(f"Publish attempt {attempt + 1}/{policy.attempts} failed: {e}")
                if attempt + 1 == policy.attempts:
                    raise
                continue
            logger.info(f"Review for {report.idempotency_key}: {result.value}")
            return result
        raise PublishUnavailableError("No publish attempts configured")

    async def _notify_failure(self, request: ReviewRequest, reason: str) -> None:
        """Leave a failure note on the MR; it never counts as the published review."""
        try:
            await self.platform.publish_comment(
                request.project_id,
                request.mr_iid,
                f"{request.idempotency_key}:failed",
                self.aggregator.failure_body(reason),
            )
        except InfrastructureError as e:
            logger.error(f"Failed to post failure note for {request.idempotency_key}: {e}")

    async def _load_config(self, project_id: int, ref: str) -> RepoConfig:
        """Load .ai-review.yaml from repo or use defaults."""
        yaml_content = await self.platform.get_repo_config(project_id, ref)
        if yaml_content is None:
            return RepoConfig()

        try:
            data = yaml.safe_load(yaml_content) or {}
            return RepoConfig(**data)
        except Exception as e:
            logger.warning(f"Invalid .ai-review.yaml: {e}")
            return RepoConfig()

    def _is_excluded(self, file_path: str, patterns: list[str]) -> bool:
        """Check if file matches any exclude pattern."""
        return any(fnmatch.fnmatch(file_path, pattern) for pattern in patterns)

    def _strip_rules(self, chunk: Chunk, prompt: str) -> str:
        stripped = re.sub(
            r"(Review rules:\n).*?(\n\nImportant:)",
            r"\1[rules omitted]\2",
            prompt,
            flags=re.DOTALL,
        )
        return f"{'=' * 60}\nCHUNK: {chunk.index + 1}/{chunk.total} ({len(chunk.files)} files)\n{'=' * 60}\n\n{stripped}"

    def _save_review_log(self, request: ReviewRequest, prompt_logs: list[str]) -> None:
        """Save all prompts from one review run into a single log file."""
        if not self.log_dir or not prompt_logs:
            return
        try:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_path = self.log_dir / f"{timestamp}_mr{request.mr_iid}.txt"

            header = (
                f"Review: project={request.project_id} mr=!{request.mr_iid} event={request.event_id}\n"
                f"Time: {timestamp}\nChunks: {len(prompt_logs)}\n\n"
            )
            log_path.write_text(header + "\n\n".join(prompt_logs), encoding="utf-8")
            logger.info(f"Review log saved: {log_path}")
        except OSError as e:
            logger.warning(f"Failed to save review log: {e}")

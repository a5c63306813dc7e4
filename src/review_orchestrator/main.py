# src/review_orchestrator/main.py
import re
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from fastapi import FastAPI, Header, HTTPException, BackgroundTasks, Request
from pydantic import BaseModel, model_validator

from review_orchestrator.config import Settings
from review_orchestrator.errors import InfrastructureError
from review_orchestrator.models.review import ReviewRequest
from review_orchestrator.models.webhook import GitLabMREvent, GitLabNoteEvent
from review_orchestrator.platforms.gitlab import GitLabClient
from review_orchestrator.providers import build_providers
from review_orchestrator.review.aggregator import ReviewAggregator
from review_orchestrator.review.controller import ControllerConfig, OrchestrationController, RunOutcome
from review_orchestrator.review.dispatcher import ReviewDispatcher
from review_orchestrator.review.ledger import IdempotencyLedger
from review_orchestrator.review.retry import RetryPolicy


logger = logging.getLogger(__name__)

REVIEW_ACTIONS = ("open", "reopen", "update")


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_ledger() -> IdempotencyLedger:
    """Process-wide ledger; the only state shared between concurrent runs."""
    return IdempotencyLedger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    logger.info("Review orchestrator starting...")
    yield
    logger.info("Review orchestrator shutting down...")


app = FastAPI(title="Review Orchestrator", lifespan=lifespan)


class WebhookResponse(BaseModel):
    status: str
    message: str | None = None


class ReviewTrigger(BaseModel):
    url: str | None = None
    project_id: int | None = None
    mr_iid: int | None = None
    event_id: str | None = None

    @model_validator(mode="after")
    def check_params(self):
        if not self.url and not (self.project_id and self.mr_iid):
            raise ValueError("Either url or project_id+mr_iid required")
        return self


class ReviewResponse(BaseModel):
    status: str
    project_id: int | None = None
    mr_iid: int | None = None
    state: str | None = None
    published: bool = False
    contributors: list[str] = []
    failed_providers: list[str] = []
    summary: str | None = None
    error: str | None = None


def parse_gitlab_mr_url(url: str) -> tuple[str, int]:
    """Parse GitLab MR URL -> (project_path, mr_iid)."""
    match = re.match(r"https?://[^/]+/(.+?)/-/merge_requests/(\d+)", url)
    if not match:
        raise ValueError(f"Invalid GitLab MR URL: {url}")
    return match.group(1), int(match.group(2))


def build_controller(settings: Settings, gitlab: GitLabClient) -> OrchestrationController:
    retry = RetryPolicy(retries=settings.provider_retries, backoff=settings.retry_backoff)
    return OrchestrationController(
        platform=gitlab,
        providers=build_providers(settings),
        dispatcher=ReviewDispatcher(
            timeout_seconds=settings.provider_timeout,
            retry=retry,
            max_output_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
        ),
        aggregator=ReviewAggregator(reviewer_name=settings.reviewer_name),
        ledger=get_ledger(),
        config=ControllerConfig(
            chunk_budget=settings.chunk_budget,
            chunk_concurrency=settings.chunk_concurrency,
            run_deadline=settings.run_deadline,
            rules_path=settings.rules_path,
            rules_branch=settings.rules_branch,
            default_language=settings.default_language,
            publish_retry=retry,
            log_dir=settings.log_dir,
        ),
    )


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


@app.post("/webhook/gitlab", response_model=WebhookResponse)
async def gitlab_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_gitlab_token: str = Header(...),
    x_gitlab_event_uuid: str | None = Header(None),
):
    settings = get_settings()

    # Verify webhook token
    if x_gitlab_token != settings.gitlab_webhook_secret:
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    body = await request.json()
    object_kind = body.get("object_kind")
    review_request = None

    if object_kind == "merge_request":
        event = GitLabMREvent(**body)
        mr = event.object_attributes

        if mr.action in REVIEW_ACTIONS:
            # Redeliveries and no-op updates share the head commit
            event_id = mr.last_commit.id if mr.last_commit else x_gitlab_event_uuid
            review_request = ReviewRequest(
                base_url=settings.gitlab_url,
                project_id=event.project.id,
                mr_iid=mr.iid,
                title=mr.title,
                description=mr.description or "",
                source_branch=mr.source_branch,
                target_branch=mr.target_branch,
                event_id=event_id or f"{mr.action}-{mr.iid}",
            )

    elif object_kind == "note":
        event = GitLabNoteEvent(**body)
        note = event.object_attributes
        mr = event.merge_request

        if note.noteable_type == "MergeRequest" and mr and "/review" in note.note:
            event_id = f"note-{note.id}" if note.id is not None else x_gitlab_event_uuid
            review_request = ReviewRequest(
                base_url=settings.gitlab_url,
                project_id=event.project.id,
                mr_iid=mr.iid,
                title=mr.title,
                description=mr.description or "",
                source_branch=mr.source_branch,
                target_branch=mr.target_branch,
                event_id=event_id or f"note-{mr.iid}",
            )

    if review_request is None:
        return WebhookResponse(status="ignored", message="Event not relevant")

    automatic = object_kind == "merge_request"
    if settings.webhook_async:
        background_tasks.add_task(run_review, review_request, automatic=automatic)
        return WebhookResponse(status="accepted", message="Review scheduled")

    outcome = await run_review(review_request, automatic=automatic)
    if outcome is None or not outcome.ok:
        reason = outcome.reason if outcome else "review failed"
        raise HTTPException(status_code=502, detail=f"Review failed: {reason}")
    return WebhookResponse(status="completed", message=outcome.reason or "Review published")


@app.post("/api/review", response_model=ReviewResponse)
async def trigger_review(trigger: ReviewTrigger):
    """Manually trigger a review for a merge request."""
    settings = get_settings()
    gitlab = GitLabClient(token=settings.gitlab_token, base_url=settings.gitlab_url)

    try:
        # Resolve project_id and mr_iid
        if trigger.url:
            project_path, mr_iid = parse_gitlab_mr_url(trigger.url)
            project = await gitlab.get_project_by_path(project_path)
            project_id = project["id"]
        else:
            project_id = trigger.project_id
            mr_iid = trigger.mr_iid

        mr_info = await gitlab.get_mr_info(project_id, mr_iid)
        review_request = ReviewRequest(
            base_url=settings.gitlab_url,
            project_id=project_id,
            mr_iid=mr_iid,
            title=mr_info.get("title", "") or "",
            description=mr_info.get("description", "") or "",
            source_branch=mr_info["source_branch"],
            target_branch=mr_info["target_branch"],
            event_id=trigger.event_id or f"manual-{mr_info.get('sha') or 'head'}",
        )

        controller = build_controller(settings, gitlab)
        outcome = await controller.run(review_request)

    except (ValueError, InfrastructureError) as e:
        return ReviewResponse(status="error", error=str(e))
    except Exception as e:
        logger.exception(f"Review failed: {e}")
        return ReviewResponse(status="error", error=str(e))

    report = outcome.report
    return ReviewResponse(
        status="completed" if outcome.ok else "error",
        project_id=project_id,
        mr_iid=mr_iid,
        state=outcome.state.value,
        published=outcome.published,
        contributors=list(report.contributors) if report else [],
        failed_providers=list(report.failed_providers) if report else [],
        summary=report.body if report else None,
        error=None if outcome.ok else outcome.reason,
    )


async def run_review(review_request: ReviewRequest, automatic: bool = False) -> RunOutcome | None:
    """Run one review; failures are logged for the webhook background path."""
    settings = get_settings()
    gitlab = GitLabClient(token=settings.gitlab_token, base_url=settings.gitlab_url)

    try:
        controller = build_controller(settings, gitlab)
        outcome = await controller.run(review_request, automatic=automatic)
    except Exception as e:
        logger.exception(f"Review failed for MR !{review_request.mr_iid}: {e}")
        return None

    if outcome.ok:
        logger.info(f"Review completed for MR !{review_request.mr_iid}: {outcome.reason or 'published'}")
    else:
        logger.error(f"Review failed for MR !{review_request.mr_iid}: {outcome.reason}")
    return outcome

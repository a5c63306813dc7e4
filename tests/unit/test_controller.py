# tests/unit/test_controller.py
import asyncio
import pytest
from unittest.mock import AsyncMock
from review_orchestrator.errors import (
    InfrastructureError,
    NotFoundError,
    PublishUnavailableError,
    UnauthorizedError,
)
from review_orchestrator.models.review import FileDiff
from review_orchestrator.platforms.base import PublishResult
from review_orchestrator.review.aggregator import DEGRADED_RULES_TEXT, NO_CHANGES_TEXT, NO_PROVIDERS_TEXT
from review_orchestrator.review.controller import (
    ControllerConfig,
    OrchestrationController,
    ReviewState,
)
from review_orchestrator.review.dispatcher import ReviewDispatcher
from review_orchestrator.review.ledger import IdempotencyLedger
from review_orchestrator.review.retry import RetryPolicy


SAMPLE_DIFF = """--- a/src/main.py
+++ b/src/main.py
@@ -1,2 +1,3 @@
 def hello():
+    print("world")
     pass
"""


@pytest.fixture
def platform(file_diffs):
    client = AsyncMock()
    client.get_repo_config.return_value = None
    client.fetch_diff.return_value = file_diffs
    client.fetch_rules.return_value = "Prefer small functions."
    client.publish_comment.return_value = PublishResult.POSTED
    return client


@pytest.fixture
def config():
    return ControllerConfig(
        chunk_budget=100_000,
        chunk_concurrency=2,
        run_deadline=5.0,
        publish_retry=RetryPolicy(retries=2, backoff=0.0),
    )


def _controller(platform, providers, config, ledger=None, timeout=1.0):
    return OrchestrationController(
        platform=platform,
        providers=providers,
        dispatcher=ReviewDispatcher(timeout_seconds=timeout, retry=RetryPolicy(retries=2, backoff=0.0)),
        ledger=ledger or IdempotencyLedger(),
        config=config,
    )


@pytest.mark.asyncio
async def test_run_publishes_review(platform, config, review_request, make_provider):
    provider = make_provider("anthropic", script=["No issues in this part."])
    controller = _controller(platform, [provider], config)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.DONE
    assert outcome.published
    assert outcome.history == [
        ReviewState.IDLE,
        ReviewState.CHUNKING,
        ReviewState.DISPATCHING,
        ReviewState.AGGREGATING,
        ReviewState.PUBLISHING,
        ReviewState.DONE,
    ]
    platform.fetch_diff.assert_called_once_with(123, 45)
    platform.fetch_rules.assert_called_once_with(123, "REVIEW_RULES.md", "main")
    platform.publish_comment.assert_called_once()
    args = platform.publish_comment.call_args.args
    assert args[:3] == (123, 45, "123!45@abc123")
    assert "No issues in this part." in args[3]
    assert "Prefer small functions." in provider.prompts[0]


@pytest.mark.asyncio
async def test_dispatching_entered_once_per_chunk(platform, config, review_request, make_provider):
    config.chunk_budget = 60
    controller = _controller(platform, [make_provider("openai")], config)

    outcome = await controller.run(review_request)

    assert outcome.history.count(ReviewState.DISPATCHING) == 2
    assert "### Part 2 of 2" in outcome.report.body


@pytest.mark.asyncio
async def test_duplicate_event_publishes_once(platform, config, review_request, make_provider):
    controller = _controller(platform, [make_provider("openai")], config)

    first = await controller.run(review_request)
    second = await controller.run(review_request)

    assert first.published
    assert second.state == ReviewState.DONE
    assert second.reason == "duplicate"
    assert not second.published
    platform.publish_comment.assert_called_once()


@pytest.mark.asyncio
async def test_concurrent_duplicate_events_publish_once(platform, config, review_request, make_provider):
    controller = _controller(platform, [make_provider("openai", delay=0.05)], config)

    outcomes = await asyncio.gather(controller.run(review_request), controller.run(review_request))

    assert sorted(o.published for o in outcomes) == [False, True]
    platform.publish_comment.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [NotFoundError("gone"), UnauthorizedError("denied")])
async def test_diff_fetch_failure_posts_only_failure_note(platform, config, review_request, make_provider, error):
    platform.fetch_diff.side_effect = error
    ledger = IdempotencyLedger()
    controller = _controller(platform, [make_provider("openai")], config, ledger=ledger)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.FAILED
    assert outcome.history[-2:] == [ReviewState.CHUNKING, ReviewState.FAILED]
    assert outcome.report is None
    # Only the failure note is posted, under its own key
    platform.publish_comment.assert_called_once()
    args = platform.publish_comment.call_args.args
    assert args[2] == "123!45@abc123:failed"
    assert "could not be completed" in args[3]
    # A redelivery may try again
    assert await ledger.claim(review_request.mr_key, review_request.event_id)


@pytest.mark.asyncio
async def test_zero_chunks_skip_dispatch(platform, config, review_request, make_provider):
    platform.fetch_diff.return_value = []
    provider = make_provider("openai")
    controller = _controller(platform, [provider], config)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.DONE
    assert ReviewState.DISPATCHING not in outcome.history
    assert NO_CHANGES_TEXT in outcome.report.body
    assert provider.calls == 0
    assert DEGRADED_RULES_TEXT not in outcome.report.body
    assert not outcome.report.degraded_rules
    platform.fetch_rules.assert_not_called()
    platform.publish_comment.assert_called_once()


@pytest.mark.asyncio
async def test_zero_providers_still_publishes_once(platform, config, review_request):
    controller = _controller(platform, [], config)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.DONE
    assert NO_PROVIDERS_TEXT in outcome.report.body
    platform.publish_comment.assert_called_once()


@pytest.mark.asyncio
async def test_missing_rules_run_in_degraded_mode(platform, config, review_request, make_provider):
    platform.fetch_rules.return_value = None
    config.rules_branch = "develop"
    controller = _controller(platform, [make_provider("openai")], config)

    outcome = await controller.run(review_request)

    platform.fetch_rules.assert_called_once_with(123, "REVIEW_RULES.md", "develop")
    assert outcome.state == ReviewState.DONE
    assert outcome.report.degraded_rules


@pytest.mark.asyncio
async def test_publish_retried_when_unavailable(platform, config, review_request, make_provider):
    platform.publish_comment.side_effect = [
        PublishUnavailableError("502"),
        PublishUnavailableError("502"),
        PublishResult.POSTED,
    ]
    controller = _controller(platform, [make_provider("openai")], config)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.DONE
    assert platform.publish_comment.call_count == 3


@pytest.mark.asyncio
async def test_publish_exhausted_reports_failure(platform, config, review_request, make_provider):
    platform.publish_comment.side_effect = PublishUnavailableError("502")
    ledger = IdempotencyLedger()
    controller = _controller(platform, [make_provider("openai")], config, ledger=ledger)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.FAILED
    assert outcome.reason == "publish_failed"
    assert outcome.report is not None
    assert platform.publish_comment.call_count == 3
    assert await ledger.claim(review_request.mr_key, review_request.event_id)


@pytest.mark.asyncio
async def test_publish_conflict_counts_as_success(platform, config, review_request, make_provider):
    platform.publish_comment.return_value = PublishResult.CONFLICT
    controller = _controller(platform, [make_provider("openai")], config)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.DONE
    assert outcome.publish_result == PublishResult.CONFLICT


@pytest.mark.asyncio
async def test_run_deadline_publishes_completed_chunks(platform, config, review_request, make_provider):
    config.chunk_budget = 60
    config.chunk_concurrency = 1
    config.run_deadline = 0.3
    provider = make_provider("openai", script=["first part reviewed", 10.0])
    controller = _controller(platform, [provider], config, timeout=5.0)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.FAILED
    assert outcome.reason == "run_timeout"
    assert outcome.published
    assert not outcome.report.complete
    assert "first part reviewed" in outcome.report.body
    platform.publish_comment.assert_called_once()


@pytest.mark.asyncio
async def test_repo_config_excludes_files(platform, config, review_request, make_provider):
    platform.get_repo_config.return_value = "exclude:\n  - '*.lock'\n"
    platform.fetch_diff.return_value = [
        FileDiff(path="src/app.py", diff="+print('app')"),
        FileDiff(path="poetry.lock", diff="+lock"),
    ]
    provider = make_provider("openai")
    controller = _controller(platform, [provider], config)

    await controller.run(review_request)

    assert "src/app.py" in provider.prompts[0]
    assert "poetry.lock" not in provider.prompts[0]


@pytest.mark.asyncio
async def test_auto_review_disabled_skips_webhook_runs(platform, config, review_request, make_provider):
    platform.get_repo_config.return_value = "auto_review: false"
    controller = _controller(platform, [make_provider("openai")], config)

    outcome = await controller.run(review_request, automatic=True)

    assert outcome.state == ReviewState.DONE
    assert outcome.reason == "auto_review_disabled"
    platform.fetch_diff.assert_not_called()
    platform.publish_comment.assert_not_called()


@pytest.mark.asyncio
async def test_request_diff_text_is_parsed_locally(platform, config, review_request, make_provider):
    request = review_request.model_copy(update={"diff": SAMPLE_DIFF})
    provider = make_provider("openai")
    controller = _controller(platform, [provider], config)

    outcome = await controller.run(request)

    assert outcome.state == ReviewState.DONE
    platform.fetch_diff.assert_not_called()
    assert 'print("world")' in provider.prompts[0]


@pytest.mark.asyncio
async def test_report_independent_of_completion_timing(platform, config, review_request, make_provider):
    config.chunk_budget = 60

    async def body_with_delays(first_delay, second_delay):
        providers = [
            make_provider("anthropic", script=["claude text"], delay=first_delay),
            make_provider("openai", script=["gpt text"], delay=second_delay),
        ]
        outcome = await _controller(platform, providers, config).run(review_request)
        return outcome.report.body

    assert await body_with_delays(0.05, 0.0) == await body_with_delays(0.0, 0.05)


@pytest.mark.asyncio
async def test_malformed_request_diff_fails_with_failure_note(platform, config, review_request, make_provider):
    request = review_request.model_copy(update={"diff": "this is not a unified diff\njust text\n"})
    provider = make_provider("openai")
    controller = _controller(platform, [provider], config)

    outcome = await controller.run(request)

    assert outcome.state == ReviewState.FAILED
    assert not outcome.published
    assert outcome.report is None
    assert "Malformed diff" in outcome.reason
    assert provider.calls == 0
    platform.publish_comment.assert_called_once()
    assert platform.publish_comment.call_args.args[2].endswith(":failed")


@pytest.mark.asyncio
async def test_failure_note_errors_are_logged_not_raised(platform, config, review_request, make_provider):
    platform.fetch_diff.side_effect = InfrastructureError("gitlab down")
    platform.publish_comment.side_effect = PublishUnavailableError("gitlab down")
    controller = _controller(platform, [make_provider("openai")], config)

    outcome = await controller.run(review_request)

    assert outcome.state == ReviewState.FAILED
    assert outcome.reason == "gitlab down"
    assert not outcome.published


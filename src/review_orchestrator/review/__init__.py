from .parser import parse_diff, file_diffs_from_changes
from .chunker import chunk_diffs
from .prompts import build_review_prompt, PromptContext, BuiltPrompt, DEFAULT_RULES
from .retry import RetryPolicy
from .dispatcher import ReviewDispatcher
from .aggregator import ReviewAggregator
from .ledger import IdempotencyLedger
from .controller import OrchestrationController, ControllerConfig, ReviewState, RunOutcome

__all__ = [
    "parse_diff",
    "file_diffs_from_changes",
    "chunk_diffs",
    "build_review_prompt",
    "PromptContext",
    "BuiltPrompt",
    "DEFAULT_RULES",
    "RetryPolicy",
    "ReviewDispatcher",
    "ReviewAggregator",
    "IdempotencyLedger",
    "OrchestrationController",
    "ControllerConfig",
    "ReviewState",
    "RunOutcome",
]

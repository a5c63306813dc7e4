# src/review_orchestrator/config.py
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    # GitLab
    gitlab_url: str = "https://gitlab.com"
    gitlab_token: str
    gitlab_webhook_secret: str

    # LLM Providers
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    gemini_api_key: str | None = None

    # Ordered "name:model" entries; report sections follow this order
    providers: list[str] = Field(
        default_factory=lambda: [
            "anthropic:claude-sonnet-4-5",
            "openai:gpt-4.1",
        ]
    )
    max_output_tokens: int = 4096
    temperature: float = 0.2

    # Orchestration
    chunk_budget: int = 100_000
    chunk_concurrency: int = 2
    provider_timeout: float = 120.0
    provider_retries: int = 2
    retry_backoff: float = 1.0
    run_deadline: float = 900.0

    # Rules document
    rules_path: str = "REVIEW_RULES.md"
    rules_branch: str | None = None

    # Defaults
    default_language: str = "en"
    reviewer_name: str = "AI Review"
    webhook_async: bool = True
    log_dir: str | None = None
    log_level: str = "INFO"

from pydantic import BaseModel, Field


class RepoConfig(BaseModel):
    """Per-repository overrides read from .ai-review.yaml."""

    language: str | None = None
    exclude: list[str] = Field(
        default_factory=lambda: [
            "*.lock",
            "*.min.js",
            "*.min.css",
            "*.generated.*",
            "package-lock.json",
            "yarn.lock",
            "pnpm-lock.yaml",
        ]
    )
    auto_review: bool = True

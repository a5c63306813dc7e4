# src/review_orchestrator/providers/__init__.py
import logging
from .base import ReviewProvider
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .openai import OpenAIProvider
from review_orchestrator.config import Settings
from review_orchestrator.errors import InputError


logger = logging.getLogger(__name__)


def parse_provider_entry(entry: str) -> tuple[str, str]:
    """Parse a "name:model" provider entry."""
    name, sep, model = entry.partition(":")
    if not sep or not name.strip() or not model.strip():
        raise InputError(f"Invalid provider entry {entry!r}, expected 'name:model'")
    return name.strip().lower(), model.strip()


def build_providers(settings: Settings) -> list[ReviewProvider]:
    """Instantiate the configured providers in their configured order.

    Entries whose API key is missing are skipped.
    """
    providers: list[ReviewProvider] = []
    for entry in settings.providers:
        name, model = parse_provider_entry(entry)
        if name == "anthropic":
            if not settings.anthropic_api_key:
                logger.warning(f"Skipping {entry}: ANTHROPIC_API_KEY not set")
                continue
            providers.append(AnthropicProvider(api_key=settings.anthropic_api_key, model=model))
        elif name == "openai":
            if not settings.openai_api_key:
                logger.warning(f"Skipping {entry}: OPENAI_API_KEY not set")
                continue
            providers.append(OpenAIProvider(
                api_key=settings.openai_api_key,
                model=model,
                base_url=settings.openai_base_url,
            ))
        elif name == "gemini":
            if not settings.gemini_api_key:
                logger.warning(f"Skipping {entry}: GEMINI_API_KEY not set")
                continue
            providers.append(GeminiProvider(api_key=settings.gemini_api_key, model=model))
        else:
            raise InputError(f"Unknown provider {name!r}")
    return providers


__all__ = [
    "ReviewProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "build_providers",
    "parse_provider_entry",
]

"""
Provider factory.

Builds the ordered provider list from settings. Provider variants are
chosen here, once, from configuration; nothing downstream inspects
concrete provider types.
"""

import logging
from typing import Callable

import httpx

from clipnote.config import Settings
from clipnote.services.ai_clients.base import BaseProvider
from clipnote.services.ai_clients.claude_client import ClaudeProvider
from clipnote.services.ai_clients.gemini_client import GeminiProvider
from clipnote.services.ai_clients.huggingface_client import HuggingFaceProvider
from clipnote.services.ai_clients.ollama_client import OllamaProvider
from clipnote.services.ai_clients.openai_compatible import GroqProvider, OpenRouterProvider

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[[Settings, httpx.AsyncClient | None], BaseProvider]

PROVIDER_BUILDERS: dict[str, ProviderBuilder] = {
    GeminiProvider.name: GeminiProvider.from_settings,
    GroqProvider.name: GroqProvider.from_settings,
    OpenRouterProvider.name: OpenRouterProvider.from_settings,
    HuggingFaceProvider.name: HuggingFaceProvider.from_settings,
    OllamaProvider.name: OllamaProvider.from_settings,
    ClaudeProvider.name: ClaudeProvider.from_settings,
}


def create_providers(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> list[BaseProvider]:
    """
    Create every provider that has credentials, in `provider_order`.

    A provider whose construction fails is logged and left out rather
    than taking the whole service down.

    Args:
        settings: Application settings
        http_client: Shared HTTP client passed to every provider

    Returns:
        Providers in registration order (may be empty)
    """
    providers: list[BaseProvider] = []

    for name in settings.configured_providers():
        builder = PROVIDER_BUILDERS.get(name)
        if builder is None:
            logger.warning(f"Unknown provider in provider_order: {name}")
            continue
        try:
            providers.append(builder(settings, http_client))
        except ValueError as e:
            logger.warning(f"Skipping provider {name}: {e}")

    logger.info(f"Configured providers: {[p.name for p in providers] or 'none'}")
    return providers

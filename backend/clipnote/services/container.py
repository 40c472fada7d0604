"""
Service container.

Everything long-lived is built once here and passed down explicitly: the
shared HTTP client, providers, breaker registry, caches, retry executor
and collaborators. Nothing else in the package holds module-level
breakers or caches.

Example:
    container = await build_container(get_settings())
    pipeline = create_pipeline(container)
    result = await pipeline.execute({"raw_text": "https://youtu.be/dQw4w9WgXcQ"})
    await container.close()
"""

import logging
from dataclasses import dataclass, field

import httpx

from clipnote.config import Settings, get_settings
from clipnote.services.ai import (
    AIOrchestrator,
    FallbackConfig,
    FallbackStrategy,
    ProviderManager,
)
from clipnote.services.ai_clients import AIProvider, create_providers
from clipnote.services.cache import ResponseCache
from clipnote.services.collaborators import PromptBuilder, StorageBackend, VideoMetadataSource
from clipnote.services.prompt_service import AnalysisPromptService
from clipnote.services.resilience import (
    CancellationRegistry,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    RetryExecutor,
)
from clipnote.services.saver import FileSaver
from clipnote.services.video_data import YouTubeMetadataService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Long-lived services of one application instance.

    Attributes:
        ai: AI orchestrator, None when no provider is configured
    """

    settings: Settings
    http_client: httpx.AsyncClient
    breakers: CircuitBreakerRegistry
    cache: ResponseCache
    retry: RetryExecutor
    cancellations: CancellationRegistry
    manager: ProviderManager
    metadata_source: VideoMetadataSource
    prompts: PromptBuilder
    storage: StorageBackend
    ai: AIOrchestrator | None = None
    providers: list[AIProvider] = field(default_factory=list)

    async def close(self) -> None:
        """Persist the cache and release network resources."""
        await self.cache.stop()
        try:
            await self.cache.persist()
        except OSError as e:
            logger.warning(f"Could not persist response cache: {e}")

        for provider in self.providers:
            await provider.close()
        await self.http_client.aclose()
        logger.info("Service container closed")


def breaker_config(settings: Settings) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout=settings.breaker_recovery_timeout,
        half_open_max_calls=settings.breaker_half_open_trials,
    )


async def build_container(
    settings: Settings | None = None,
    providers: list[AIProvider] | None = None,
    http_client: httpx.AsyncClient | None = None,
    start_sweeper: bool = True,
) -> ServiceContainer:
    """
    Build and wire every service.

    Args:
        settings: Application settings (cached settings if None)
        providers: Providers to use instead of the ones built from settings
        http_client: Shared HTTP client (created if None)
        start_sweeper: Start the response cache's background sweep

    Returns:
        Ready ServiceContainer; close it on shutdown
    """
    settings = settings or get_settings()
    http_client = http_client or httpx.AsyncClient(timeout=None)

    if providers is None:
        providers = create_providers(settings, http_client)

    breakers = CircuitBreakerRegistry(breaker_config(settings))
    cache = ResponseCache.from_settings(settings)
    try:
        await cache.restore()
    except (OSError, ValueError) as e:
        logger.warning(f"Could not restore response cache: {e}")
    if start_sweeper:
        cache.start()

    retry = RetryExecutor()
    cancellations = CancellationRegistry()
    manager = ProviderManager(providers, settings, http_client=http_client)

    ai = None
    if providers:
        fallback = FallbackStrategy(manager, breakers, retry, cache, FallbackConfig())
        ai = AIOrchestrator(manager, fallback, settings, breakers, cancellations)
    else:
        logger.warning("No AI providers configured; processing stage will fail until a key is set")

    return ServiceContainer(
        settings=settings,
        http_client=http_client,
        breakers=breakers,
        cache=cache,
        retry=retry,
        cancellations=cancellations,
        manager=manager,
        metadata_source=YouTubeMetadataService(settings, http_client),
        prompts=AnalysisPromptService(settings),
        storage=FileSaver(settings),
        ai=ai,
        providers=list(providers),
    )

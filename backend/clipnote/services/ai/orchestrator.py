"""
AI orchestrator.

Single entry point for prompt execution. Applies performance settings to
providers, routes requests through the fallback strategy (sequentially, or
racing every healthy provider in parallel mode), and keeps per-provider
metrics.

Example:
    orchestrator = AIOrchestrator(manager, strategy, settings, breakers)
    response = await orchestrator.process(prompt)
    response = await orchestrator.process_with("Groq", prompt, override_model="llama-3.3-70b-versatile")
"""

import logging
from dataclasses import dataclass
from functools import partial

from clipnote.config import Settings
from clipnote.models.schemas import AIResponse, FallbackAttempt, OutputFormat
from clipnote.services.ai.fallback_strategy import (
    EXHAUSTED_SUFFIX,
    FallbackExhaustedError,
    FallbackStrategy,
)
from clipnote.services.ai.performance import select_optimal_model
from clipnote.services.ai.provider_manager import ProviderManager
from clipnote.services.ai_clients.base import AIClientError, AIProvider
from clipnote.services.resilience import (
    CancellationRegistry,
    CircuitBreakerRegistry,
    RaceError,
    first_success,
)

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 500_000  # characters


@dataclass
class ProviderMetrics:
    """Request counters for one provider."""

    requests: int = 0
    successes: int = 0
    failures: int = 0
    total_response_ms: float = 0.0

    @property
    def average_response_ms(self) -> float:
        return self.total_response_ms / self.successes if self.successes else 0.0

    def to_dict(self) -> dict:
        return {
            "requests": self.requests,
            "successes": self.successes,
            "failures": self.failures,
            "average_response_ms": round(self.average_response_ms, 1),
        }


class AIOrchestrator:
    """
    Routes prompts to providers with fallback, racing and cancellation.

    Attributes:
        manager: Provider registry and catalogs
        fallback: Fallback chain executor
        breakers: Per-provider circuit breakers
        settings: Active settings
        enable_parallel: Race providers instead of walking them in order
    """

    def __init__(
        self,
        manager: ProviderManager,
        fallback: FallbackStrategy,
        settings: Settings,
        breakers: CircuitBreakerRegistry,
        cancellations: CancellationRegistry | None = None,
    ):
        """
        Initialize orchestrator.

        Raises:
            ValueError: If no providers are registered
        """
        if not manager.providers:
            raise ValueError("No AI providers configured. Add at least one API key.")

        self.manager = manager
        self.fallback = fallback
        self.breakers = breakers
        self.cancellations = cancellations or CancellationRegistry()
        self._metrics: dict[str, ProviderMetrics] = {}

        self.update_settings(settings)

    # ═══════════════════════════════════════════════════════════════════════
    # Configuration
    # ═══════════════════════════════════════════════════════════════════════

    def update_settings(self, settings: Settings) -> None:
        """Apply settings to the fallback policy and every provider."""
        self.settings = settings
        self.enable_parallel = settings.enable_parallel_processing

        config = self.fallback.config
        config.enable_model_fallback = settings.enable_auto_fallback
        config.enable_provider_fallback = settings.enable_auto_fallback
        config.max_fallback_attempts = settings.max_fallback_attempts

        self.manager.apply_performance_settings(settings)
        self.set_model_parameters(settings.max_tokens, settings.temperature)

        logger.info(
            f"AI orchestrator configured: mode={settings.performance_mode}, "
            f"parallel={self.enable_parallel}, fallback={settings.enable_auto_fallback}"
        )

    def set_model_parameters(
        self,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        """Set generation parameters on every provider that has them."""
        for provider in self.manager.providers:
            if max_tokens is not None and hasattr(provider, "max_tokens"):
                provider.max_tokens = max_tokens
            if temperature is not None and hasattr(provider, "temperature"):
                provider.temperature = temperature

    def add_provider(self, provider: AIProvider) -> None:
        """Register a provider and apply the current timeouts to it."""
        self.manager.add_provider(provider)
        self.manager.apply_performance_settings(self.settings)

    # ═══════════════════════════════════════════════════════════════════════
    # Processing
    # ═══════════════════════════════════════════════════════════════════════

    async def process(
        self,
        prompt: str,
        images: list[str] | None = None,
        operation_id: str | None = None,
    ) -> AIResponse:
        """
        Run a prompt on the first provider (with fallback) or race all.

        Args:
            prompt: Prompt text
            images: Optional base64 / data-URL images
            operation_id: Id under which the call can be cancelled

        Returns:
            AIResponse from the winning provider

        Raises:
            ValueError: If the prompt is empty or too long
            FallbackExhaustedError: If every provider failed
            OperationCancelledError: If cancel(operation_id) was called
        """
        self._validate_prompt(prompt)

        if self.enable_parallel and len(self.manager.providers) > 1:
            work = self._process_parallel(prompt, images)
        else:
            first = self.manager.providers[0]
            work = self.process_with(first.name, prompt, images=images)

        if operation_id is None:
            return await work
        return await self.cancellations.run(operation_id, work)

    async def process_with(
        self,
        provider_name: str,
        prompt: str,
        override_model: str | None = None,
        images: list[str] | None = None,
        enable_fallback: bool = True,
    ) -> AIResponse:
        """
        Run a prompt starting from a specific provider (and model).

        Args:
            provider_name: Provider to try first
            prompt: Prompt text
            override_model: Model to use instead of the provider's default
            images: Optional base64 / data-URL images
            enable_fallback: False disables model and provider fallback

        Returns:
            AIResponse

        Raises:
            KeyError: If the provider is not registered
            FallbackExhaustedError: If the chain is exhausted
        """
        self._validate_prompt(prompt)

        try:
            response = await self.fallback.execute_with_fallback(
                provider_name,
                prompt,
                images=images,
                override_model=override_model,
                allow_fallback=enable_fallback,
            )
        except FallbackExhaustedError as e:
            self._record(e.attempts)
            raise

        self._record(response.fallback_chain)
        return response

    async def _process_parallel(self, prompt: str, images: list[str] | None) -> AIResponse:
        """Race every healthy provider; the first success wins."""
        candidates = [
            p
            for p in self.manager.providers
            if self.breakers.get(p.name).can_execute() and (not images or p.supports_images)
        ]
        if not candidates:
            raise AIClientError("No providers available: all circuits are open")

        logger.info(f"Racing {len(candidates)} providers: {[p.name for p in candidates]}")
        factories = [
            partial(
                self.fallback.execute_with_fallback,
                p.name,
                prompt,
                images=images,
                allow_fallback=False,
            )
            for p in candidates
        ]

        try:
            response = await first_success(factories, labels=[p.name for p in candidates])
        except RaceError as e:
            attempts: list[FallbackAttempt] = []
            for _, error in e.errors:
                attempts.extend(getattr(error, "attempts", []))
            self._record(attempts)
            raise FallbackExhaustedError(f"{e}{EXHAUSTED_SUFFIX}", attempts=attempts) from e

        self._record(response.fallback_chain)
        return response

    def cancel(self, operation_id: str) -> bool:
        """Cancel an in-flight process() call started with `operation_id`."""
        return self.cancellations.cancel(operation_id)

    @staticmethod
    def _validate_prompt(prompt: str) -> None:
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt too long: {len(prompt)} characters (max {MAX_PROMPT_LENGTH})"
            )

    # ═══════════════════════════════════════════════════════════════════════
    # Catalogs and health
    # ═══════════════════════════════════════════════════════════════════════

    def get_provider_names(self) -> list[str]:
        return self.manager.get_provider_names()

    def get_provider_models(self, name: str) -> list[str]:
        return self.manager.get_provider_models(name)

    def select_model(
        self,
        provider_name: str,
        output_format: OutputFormat | str,
        video_duration: float | None = None,
    ) -> str | None:
        """
        Preset model for `output_format`, if the provider serves it.

        Returns:
            Model name, or None to keep the provider's own model
        """
        model = select_optimal_model(
            output_format,
            self.settings.performance_mode,
            self.get_provider_models(provider_name),
            video_duration,
        )
        if model is not None:
            logger.debug(f"{provider_name}: preset model {model} for {output_format}")
        return model

    async def fetch_latest_models(self) -> dict[str, list[str]]:
        return await self.manager.fetch_latest_models()

    async def fetch_latest_models_for_provider(
        self, name: str, bypass_cache: bool = False
    ) -> list[str]:
        return await self.manager.fetch_latest_models_for_provider(name, bypass_cache)

    def has_available_providers(self) -> bool:
        """True if at least one provider's circuit admits calls."""
        return any(self.breakers.get(p.name).can_execute() for p in self.manager.providers)

    # ═══════════════════════════════════════════════════════════════════════
    # Metrics and lifecycle
    # ═══════════════════════════════════════════════════════════════════════

    def _record(self, attempts: list[FallbackAttempt]) -> None:
        for attempt in attempts:
            metrics = self._metrics.setdefault(attempt.provider, ProviderMetrics())
            metrics.requests += 1
            if attempt.succeeded:
                metrics.successes += 1
                metrics.total_response_ms += attempt.duration_ms
            else:
                metrics.failures += 1

    def get_metrics(self) -> dict[str, dict]:
        """Per-provider counters."""
        return {name: m.to_dict() for name, m in self._metrics.items()}

    async def close(self) -> None:
        """Close every provider."""
        for provider in self.manager.providers:
            await provider.close()

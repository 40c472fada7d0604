"""
Model and provider fallback.

One request walks an ordered chain of (provider, model) pairs:

    1. the requested provider with the override (or its current) model
    2. other models on the same provider, unless the failure was a quota
       error or an open circuit, which makes same-provider retries pointless
    3. every other registered provider with its own model, in
       registration order

Each pair is tried through the response cache, then the retry executor,
whose every try passes the provider's circuit breaker. Retries stop as
soon as that breaker opens, so the attempt keeps the provider's own
error. The provider's model is restored after every attempt, whatever
the outcome.
"""

import hashlib
import logging
import time
from dataclasses import dataclass

from clipnote.models.schemas import AIResponse, FallbackAttempt
from clipnote.services.ai.provider_manager import ProviderManager
from clipnote.services.ai_clients.base import (
    AIClientError,
    AIClientResponseError,
    AIProvider,
    is_quota_error,
)
from clipnote.services.cache import ResponseCache
from clipnote.services.resilience import (
    CircuitBreakerRegistry,
    CircuitOpenError,
    RetryExecutor,
    run_with_timeout,
)

logger = logging.getLogger(__name__)

EXHAUSTED_SUFFIX = " (All fallback providers and models also failed)"


@dataclass
class FallbackConfig:
    """
    Fallback tuning.

    Attributes:
        enable_model_fallback: Try other models on the same provider
        enable_provider_fallback: Try other providers
        max_fallback_attempts: Alternative models tried per provider
        retry_attempts: Tries per (provider, model) pair
        retry_base_delay: Seconds before the second try
        retry_backoff_multiplier: Growth factor between waits
        cache_ttl: Seconds a successful text response stays cached
        cache_priority: Eviction weight of cached responses
    """

    enable_model_fallback: bool = True
    enable_provider_fallback: bool = True
    max_fallback_attempts: int = 3
    retry_attempts: int = 2
    retry_base_delay: float = 2.0
    retry_backoff_multiplier: float = 2.0
    cache_ttl: float = 30 * 60.0
    cache_priority: float = 2.0


class FallbackExhaustedError(AIClientError):
    """
    Raised when every pair in the chain failed.

    Attributes:
        attempts: Every attempt made, in order
    """

    def __init__(self, message: str, attempts: list[FallbackAttempt]):
        super().__init__(message)
        self.attempts = attempts


class FallbackStrategy:
    """
    Walks the fallback chain for one request.

    Example:
        strategy = FallbackStrategy(manager, breakers, RetryExecutor(), cache)
        response = await strategy.execute_with_fallback("Groq", prompt)
        print(response.provider, response.model, len(response.fallback_chain))
    """

    def __init__(
        self,
        manager: ProviderManager,
        breakers: CircuitBreakerRegistry,
        retry: RetryExecutor,
        cache: ResponseCache | None = None,
        config: FallbackConfig | None = None,
    ):
        self.manager = manager
        self.breakers = breakers
        self.retry = retry
        self.cache = cache
        self.config = config or FallbackConfig()

    @staticmethod
    def cache_key(provider: str, model: str, prompt: str) -> str:
        """Cache key for a text-only request."""
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]
        return f"{provider}:{model}:{digest}"

    async def execute_with_fallback(
        self,
        provider_name: str,
        prompt: str,
        images: list[str] | None = None,
        override_model: str | None = None,
        allow_fallback: bool = True,
    ) -> AIResponse:
        """
        Run a prompt, falling back across models and providers.

        Args:
            provider_name: Provider to try first
            prompt: Prompt text
            images: Optional base64 / data-URL images
            override_model: Model to try first instead of the provider's own
            allow_fallback: False limits the chain to the first pair

        Returns:
            Response with the full attempt chain (last entry is the winner)

        Raises:
            KeyError: If the provider is not registered
            FallbackExhaustedError: If every attempt failed
        """
        primary = self.manager.get_provider(provider_name)
        attempts: list[FallbackAttempt] = []

        response = await self._walk_provider(
            primary, prompt, images, override_model, attempts, allow_fallback
        )
        if response is not None:
            return response

        if allow_fallback and self.config.enable_provider_fallback:
            for provider in self.manager.providers:
                if provider.name == primary.name:
                    continue
                if images and not provider.supports_images:
                    logger.debug(f"Skipping {provider.name}: no image support")
                    continue

                logger.info(f"Falling back to provider {provider.name}")
                response = await self._walk_provider(
                    provider, prompt, images, None, attempts, allow_fallback
                )
                if response is not None:
                    return response

        raise self._exhausted(attempts)

    async def _walk_provider(
        self,
        provider: AIProvider,
        prompt: str,
        images: list[str] | None,
        first_model: str | None,
        attempts: list[FallbackAttempt],
        allow_fallback: bool,
    ) -> AIResponse | None:
        """Try the first model, then same-provider alternatives."""
        first_model = first_model or provider.model
        response, error = await self._try(provider, first_model, prompt, images, attempts)
        if response is not None:
            return response

        if not (allow_fallback and self.config.enable_model_fallback):
            return None

        if self._skips_model_fallback(provider, error):
            logger.info(f"{provider.name}: {type(error).__name__}, skipping model fallback")
            return None

        alternatives = self.manager.get_fallback_models(
            provider.name,
            exclude={first_model},
            limit=self.config.max_fallback_attempts,
        )
        for model in alternatives:
            logger.info(f"{provider.name}: trying fallback model {model}")
            response, error = await self._try(provider, model, prompt, images, attempts)
            if response is not None:
                return response
            if self._skips_model_fallback(provider, error):
                logger.info(f"{provider.name}: skipping remaining models after {type(error).__name__}")
                break

        return None

    async def _try(
        self,
        provider: AIProvider,
        model: str,
        prompt: str,
        images: list[str] | None,
        attempts: list[FallbackAttempt],
    ) -> tuple[AIResponse | None, Exception | None]:
        """One (provider, model) pair through cache, breaker and retry."""
        key = None
        if self.cache is not None and not images:
            key = self.cache_key(provider.name, model, prompt)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for {provider.name}/{model}")
                attempts.append(FallbackAttempt(provider=provider.name, model=model, succeeded=True))
                return AIResponse(**cached, cached=True, fallback_chain=list(attempts)), None

        breaker = self.breakers.get(provider.name)
        original_model = provider.model
        started = time.monotonic()

        try:
            provider.model = model
            content = await self.retry.run(
                lambda: breaker.call(lambda: self._invoke(provider, prompt, images)),
                key=f"{provider.name}-process",
                max_attempts=self.config.retry_attempts,
                base_delay=self.config.retry_base_delay,
                backoff_multiplier=self.config.retry_backoff_multiplier,
                stop_when=lambda: not breaker.can_execute(),
            )
            token_count = self._token_count(provider)
        except Exception as e:
            duration_ms = (time.monotonic() - started) * 1000
            attempts.append(
                FallbackAttempt(
                    provider=provider.name,
                    model=model,
                    succeeded=False,
                    error=str(e),
                    duration_ms=duration_ms,
                )
            )
            logger.warning(f"{provider.name}/{model} failed after {duration_ms:.0f}ms: {e}")
            return None, e
        finally:
            provider.model = original_model

        duration_ms = (time.monotonic() - started) * 1000
        attempts.append(
            FallbackAttempt(
                provider=provider.name, model=model, succeeded=True, duration_ms=duration_ms
            )
        )
        logger.info(f"{provider.name}/{model} succeeded in {duration_ms:.0f}ms")

        if key is not None:
            self.cache.set(
                key,
                {
                    "content": content,
                    "provider": provider.name,
                    "model": model,
                    "token_count": token_count,
                },
                ttl=self.config.cache_ttl,
                priority=self.config.cache_priority,
            )

        return (
            AIResponse(
                content=content,
                provider=provider.name,
                model=model,
                response_time_ms=duration_ms,
                token_count=token_count,
                fallback_chain=list(attempts),
            ),
            None,
        )

    @staticmethod
    async def _invoke(provider: AIProvider, prompt: str, images: list[str] | None) -> str:
        if images:
            content = await run_with_timeout(
                provider.process_with_image(prompt, images),
                provider.timeout,
                f"{provider.name} image request exceeded {provider.timeout:.0f}s",
            )
        else:
            content = await run_with_timeout(
                provider.process(prompt),
                provider.timeout,
                f"{provider.name} request exceeded {provider.timeout:.0f}s",
            )
        if not content or not content.strip():
            raise AIClientResponseError(
                "Empty response from provider", provider=provider.name, model=provider.model
            )
        return content

    @staticmethod
    def _token_count(provider: AIProvider) -> int | None:
        usage = getattr(provider, "last_usage", None)
        total = getattr(usage, "total_tokens", 0) if usage is not None else 0
        return total or None

    def _skips_model_fallback(self, provider: AIProvider, error: Exception | None) -> bool:
        """Quota errors and open circuits end the walk on this provider."""
        if error is None:
            return False
        if is_quota_error(error) or isinstance(error, CircuitOpenError):
            return True
        # The live failure may have just tripped the breaker
        return not self.breakers.get(provider.name).can_execute()

    @staticmethod
    def _exhausted(attempts: list[FallbackAttempt]) -> FallbackExhaustedError:
        failed = [a for a in attempts if not a.succeeded]
        joined = "; ".join(f"{a.provider}/{a.model}: {a.error}" for a in failed)
        suffix = EXHAUSTED_SUFFIX if len(failed) > 1 else ""
        return FallbackExhaustedError(f"{joined}{suffix}", attempts=list(attempts))

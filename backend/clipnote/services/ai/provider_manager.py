"""
Provider registry and model catalogs.

Keeps the ordered set of configured providers, the static model catalog
per provider (optionally overridden by models.yaml), and a TTL
cache of model lists fetched from provider APIs. Remote catalog lookups
never raise: on failure the last fetched list is returned, even when
stale, and otherwise the static catalog.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from clipnote.config import Settings, load_models_config
from clipnote.services.ai.performance import provider_timeout_ms, resolve_timeouts
from clipnote.services.ai_clients.base import AIProvider

logger = logging.getLogger(__name__)

CATALOG_FETCH_TIMEOUT = 10.0  # seconds
OLLAMA_CLOUD_URL = "https://ollama.com"
OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"
HUGGINGFACE_MODELS_URL = "https://huggingface.co/api/models"
GROQ_MODELS_URL = "https://api.groq.com/openai/v1/models"

# Seconds a fetched catalog stays fresh
CATALOG_TTL: dict[str, float] = {
    "Ollama": 30 * 60,
    "OpenRouter": 24 * 60 * 60,
    "Hugging Face": 24 * 60 * 60,
    "Groq": 24 * 60 * 60,
}

DEPRECATED_MARKERS = ("-deprecated", "-legacy", "-old")


@dataclass(frozen=True)
class ModelOption:
    name: str
    supports_audio_video: bool = False


def _options(names: list[str], audio_video: bool = False) -> list[ModelOption]:
    return [ModelOption(name, audio_video) for name in names]


PROVIDER_MODEL_OPTIONS: dict[str, list[ModelOption]] = {
    "Google Gemini": _options(
        [
            "gemini-2.5-pro",
            "gemini-2.5-pro-tts",
            "gemini-2.5-flash",
            "gemini-2.5-flash-lite",
            "gemini-2.0-pro",
            "gemini-2.0-flash",
            "gemini-2.0-flash-lite",
            "gemini-1.5-pro",
            "gemini-1.5-flash",
            "gemini-1.5-flash-8b",
        ],
        audio_video=True,
    ),
    "Groq": _options(
        [
            "llama-3.1-8b-instant",
            "llama-3.3-70b-versatile",
            "llama-3.1-8b-instruct",
            "llama-3.1-70b-instruct",
            "llama-3.1-405b-instruct",
            "mixtral-8x7b-instruct-v0.1",
            "mixtral-8x22b-instruct-v0.1",
            "gemma2-9b-it",
            "gemma-7b-it",
            "deepseek-r1-distill-llama-70b",
            "deepseek-coder-v2-lite-instruct",
            "llama-guard-3-8b",
            "code-llama-34b-instruct",
        ]
    ),
    "OpenRouter": _options(
        [
            "meta-llama/llama-3.1-8b-instruct:free",
            "google/gemma-2-9b-it:free",
            "qwen/qwen-2-7b-instruct:free",
            "anthropic/claude-3.5-sonnet",
            "anthropic/claude-3.5-haiku",
            "openai/gpt-4o",
            "openai/gpt-4o-mini",
            "google/gemini-2.0-flash-exp",
            "google/gemini-pro-1.5",
            "meta-llama/llama-3.2-11b-vision-instruct",
            "meta-llama/llama-3.2-90b-vision-instruct",
            "qwen/qwen-2-vl-7b-instruct",
            "qwen/qwen-2-vl-72b-instruct",
            "meta-llama/llama-3.1-70b-instruct",
            "meta-llama/llama-3.1-8b-instruct",
            "mistralai/mistral-large",
            "deepseek/deepseek-chat",
            "cohere/command-r-plus",
        ]
    ),
    "Hugging Face": _options(
        [
            "Qwen/Qwen3-8B",
            "Qwen/Qwen2.5-7B-Instruct",
            "Qwen/Qwen3-4B-Instruct-2507",
            "Qwen/Qwen2-VL-7B-Instruct",
            "Qwen/Qwen2-VL-2B-Instruct",
            "meta-llama/Llama-3.2-11B-Vision-Instruct",
            "meta-llama/Llama-3.2-90B-Vision-Instruct",
            "meta-llama/Llama-3.2-3B-Instruct",
            "meta-llama/Llama-3.2-1B-Instruct",
            "microsoft/Phi-3.5-vision-instruct",
            "google/paligemma-3b-mix-448",
            "HuggingFaceM4/idefics2-8b",
            "deepseek-ai/DeepSeek-R1-Distill-Qwen-1.5B",
            "mistralai/Mistral-7B-Instruct-v0.2",
            "llava-hf/llava-1.5-7b",
            "llava-hf/llava-1.5-13b",
        ]
    ),
    "Ollama": _options(
        [
            "llama3.2-vision",
            "llava",
            "llava-llama3",
            "bakllava",
            "moondream",
            "qwen2-vl",
            "phi3-vision",
        ],
        audio_video=True,
    )
    + _options(
        [
            "qwen3-coder:480b-cloud",
            "llama3.2",
            "llama3.1",
            "mistral",
            "mixtral",
            "gemma2",
            "phi3",
            "qwen2",
            "command-r",
        ]
    ),
    "Claude": _options(
        [
            "claude-sonnet-4-5",
            "claude-opus-4-1",
            "claude-haiku-4-5",
        ]
    ),
}


@dataclass
class CatalogCacheEntry:
    models: list[str]
    fetched_at: float


class ProviderManager:
    """
    Ordered registry of providers plus their model catalogs.

    Registration order is the fallback order. Provider names are unique.

    Example:
        manager = ProviderManager(create_providers(settings), settings)
        groq = manager.get_provider("Groq")
        models = await manager.fetch_latest_models_for_provider("Groq")
    """

    def __init__(
        self,
        providers: list[AIProvider],
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize manager.

        Args:
            providers: Providers in fallback order
            settings: Application settings (keys, endpoints, catalog overrides)
            http_client: Shared HTTP client for catalog fetches
            clock: Time source for catalog freshness

        Raises:
            ValueError: If two providers share a name
        """
        self.settings = settings
        self._http_client = http_client
        self._clock = clock
        self._providers: dict[str, AIProvider] = {}
        self._catalog_cache: dict[str, CatalogCacheEntry] = {}
        self._static_catalogs = self._load_static_catalogs(settings)

        self._fetchers: dict[str, Callable[[], Awaitable[list[str]]]] = {
            "Ollama": self._fetch_ollama_models,
            "OpenRouter": self._fetch_openrouter_models,
            "Hugging Face": self._fetch_huggingface_models,
            "Groq": self._fetch_groq_models,
        }

        for provider in providers:
            self.add_provider(provider)

    # ═══════════════════════════════════════════════════════════════════════
    # Registry
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def providers(self) -> list[AIProvider]:
        """Providers in registration (fallback) order."""
        return list(self._providers.values())

    def add_provider(self, provider: AIProvider) -> None:
        """
        Register a provider at the end of the fallback order.

        Raises:
            ValueError: If a provider with the same name is registered
        """
        if provider.name in self._providers:
            raise ValueError(f"Provider already registered: {provider.name}")
        self._providers[provider.name] = provider
        logger.debug(f"Registered provider {provider.name} (model={provider.model})")

    def get_provider(self, name: str) -> AIProvider:
        """
        Look up a provider by name.

        Raises:
            KeyError: If no such provider is registered
        """
        try:
            return self._providers[name]
        except KeyError:
            available = ", ".join(self._providers) or "none"
            raise KeyError(f"Unknown provider '{name}'. Available: {available}") from None

    def get_provider_names(self) -> list[str]:
        return list(self._providers)

    def has_provider(self, name: str) -> bool:
        return name in self._providers

    def has_available_providers(self) -> bool:
        return bool(self._providers)

    def apply_performance_settings(self, settings: Settings) -> None:
        """Push the resolved per-provider timeouts onto every provider."""
        timeouts = resolve_timeouts(settings)
        for provider in self._providers.values():
            provider.timeout = provider_timeout_ms(provider.name, timeouts) / 1000
        logger.debug(
            f"Applied timeouts: gemini={timeouts.gemini_timeout}ms, "
            f"groq={timeouts.groq_timeout}ms"
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Catalogs
    # ═══════════════════════════════════════════════════════════════════════

    def get_provider_models(self, name: str) -> list[str]:
        """
        Known models for a provider (last fetched list, else static catalog).

        Args:
            name: Provider name

        Returns:
            Model names, possibly empty for an unknown provider
        """
        cached = self._catalog_cache.get(name)
        if cached is not None:
            return list(cached.models)
        return self._static_models(name)

    def get_fallback_models(
        self,
        name: str,
        exclude: set[str] | None = None,
        limit: int | None = None,
    ) -> list[str]:
        """
        Alternative models on the same provider.

        Args:
            name: Provider name
            exclude: Models already tried
            limit: Maximum number of models

        Returns:
            Catalog order, without excluded models
        """
        exclude = exclude or set()
        models = [m for m in self.get_provider_models(name) if m not in exclude]
        return models[:limit] if limit is not None else models

    def supports_audio_video(self, name: str, model: str) -> bool:
        options = self._static_catalogs.get(name, [])
        return any(o.name == model and o.supports_audio_video for o in options)

    async def fetch_latest_models_for_provider(
        self,
        name: str,
        bypass_cache: bool = False,
    ) -> list[str]:
        """
        Fetch the provider's live model list, honouring the catalog TTL.

        Args:
            name: Provider name
            bypass_cache: Refetch even when the cached list is fresh

        Returns:
            Live models, or the stale/static list if the fetch fails
        """
        fetcher = self._fetchers.get(name)
        if fetcher is None:
            return self.get_provider_models(name)

        cached = self._catalog_cache.get(name)
        now = self._clock()
        if cached is not None and not bypass_cache and now - cached.fetched_at < CATALOG_TTL[name]:
            return list(cached.models)

        try:
            models = await fetcher()
            if not models:
                raise ValueError("empty model list")
        except Exception as e:
            logger.warning(f"Failed to fetch {name} models: {e}")
            if cached is not None:
                return list(cached.models)
            return self._static_models(name)

        self._catalog_cache[name] = CatalogCacheEntry(models=models, fetched_at=now)
        logger.info(f"Fetched {len(models)} models for {name}")
        return list(models)

    async def fetch_latest_models(self) -> dict[str, list[str]]:
        """Refresh catalogs of every registered provider concurrently."""
        names = self.get_provider_names()
        results = await asyncio.gather(
            *(self.fetch_latest_models_for_provider(name) for name in names)
        )
        return dict(zip(names, results))

    def _static_models(self, name: str) -> list[str]:
        models = [o.name for o in self._static_catalogs.get(name, [])]
        if not models and name in self._providers:
            return [self._providers[name].model]
        return models

    @staticmethod
    def _load_static_catalogs(settings: Settings) -> dict[str, list[ModelOption]]:
        """Built-in catalogs with per-provider overrides from models.yaml."""
        catalogs = dict(PROVIDER_MODEL_OPTIONS)
        overrides = load_models_config(settings).get("providers", {}) or {}
        for name, entries in overrides.items():
            catalogs[name] = [
                ModelOption(
                    name=entry["name"],
                    supports_audio_video=bool(entry.get("supports_audio_video", False)),
                )
                for entry in entries or []
            ]
            logger.debug(f"Loaded {len(catalogs[name])} {name} models from models.yaml")
        return catalogs

    # ═══════════════════════════════════════════════════════════════════════
    # Remote catalog fetchers
    # ═══════════════════════════════════════════════════════════════════════

    async def _get_json(self, url: str, **kwargs) -> dict | list:
        if self._http_client is not None:
            response = await self._http_client.get(url, timeout=CATALOG_FETCH_TIMEOUT, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=CATALOG_FETCH_TIMEOUT) as client:
                response = await client.get(url, **kwargs)
        response.raise_for_status()
        return response.json()

    async def _fetch_ollama_models(self) -> list[str]:
        api_key = self.settings.ollama_api_key.strip()
        endpoint = OLLAMA_CLOUD_URL if api_key else self.settings.ollama_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        data = await self._get_json(f"{endpoint}/api/tags", headers=headers)
        return [model["name"] for model in data.get("models", [])]

    async def _fetch_openrouter_models(self) -> list[str]:
        data = await self._get_json(OPENROUTER_MODELS_URL)
        models = [
            m
            for m in data.get("data", [])
            if not any(marker in m["id"] for marker in DEPRECATED_MARKERS)
        ]
        # Larger context windows first
        models.sort(key=lambda m: m.get("context_length") or 0, reverse=True)
        return [m["id"] for m in models]

    async def _fetch_huggingface_models(self) -> list[str]:
        params = {
            "pipeline_tag": "text-generation",
            "inference": "warm",
            "sort": "downloads",
            "limit": 500,
        }
        data = await self._get_json(HUGGINGFACE_MODELS_URL, params=params)
        return [m.get("id") or m["modelId"] for m in data]

    async def _fetch_groq_models(self) -> list[str]:
        api_key = self.settings.groq_api_key.strip()
        if not api_key:
            raise ValueError("Groq API key not configured")
        data = await self._get_json(
            GROQ_MODELS_URL, headers={"Authorization": f"Bearer {api_key}"}
        )
        return [m["id"] for m in data.get("data", [])]

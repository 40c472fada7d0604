"""
Tests for the fallback chain, AI orchestrator, model catalogs and presets.
"""

import asyncio

import httpx
import pytest
import respx

from clipnote.models.schemas import OutputFormat, PerformanceMode
from clipnote.services.ai import (
    FallbackExhaustedError,
    ProviderManager,
    get_preset,
    resolve_timeouts,
    select_optimal_model,
)
from clipnote.services.ai.fallback_strategy import EXHAUSTED_SUFFIX
from clipnote.services.ai.provider_manager import GROQ_MODELS_URL, OPENROUTER_MODELS_URL
from clipnote.services.ai_clients import GroqProvider
from clipnote.services.ai_clients.base import (
    AIClientConfig,
    AIClientError,
    AIClientQuotaError,
    AIClientResponseError,
    AIClientTimeoutError,
    BaseProvider,
)
from clipnote.services.cache import ResponseCache
from clipnote.services.resilience import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    OperationCancelledError,
)
from tests.fakes import FakeProvider, make_ai

PROMPT = "Summarize this video"
GROQ_MODELS = ["llama-3.1-8b-instant", "llama-3.3-70b-versatile", "llama-3.1-8b-instruct", "llama-3.1-70b-instruct"]


def bad_request() -> AIClientResponseError:
    return AIClientResponseError("bad request", status_code=400)


@pytest.fixture
def tolerant_breakers() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=10))


# ═══════════════════════════════════════════════════════════════════════════
# Fallback chain
# ═══════════════════════════════════════════════════════════════════════════


class TestFallbackStrategy:
    async def test_models_then_providers_in_order(self, settings, tolerant_breakers):
        groq = FakeProvider("Groq", model=GROQ_MODELS[0], responses=[bad_request()] * 4)
        backup = FakeProvider("Backup", responses=["backup answer"])
        ai = make_ai([groq, backup], settings, breakers=tolerant_breakers)

        response = await ai.process(PROMPT)

        assert response.content == "backup answer"
        assert response.provider == "Backup"
        assert [(a.provider, a.model) for a in response.fallback_chain] == [
            ("Groq", m) for m in GROQ_MODELS
        ] + [("Backup", "fake-model")]
        assert [a.succeeded for a in response.fallback_chain] == [False] * 4 + [True]
        assert [model for model, _ in groq.calls] == GROQ_MODELS

    async def test_provider_model_is_restored(self, settings, tolerant_breakers):
        groq = FakeProvider("Groq", model=GROQ_MODELS[0], responses=[bad_request()] * 4)
        backup = FakeProvider("Backup")
        ai = make_ai([groq, backup], settings, breakers=tolerant_breakers)

        await ai.process_with("Groq", PROMPT, override_model="llama-3.3-70b-versatile")

        assert groq.model == GROQ_MODELS[0]
        assert groq.calls[0][0] == "llama-3.3-70b-versatile"

    async def test_quota_error_skips_same_provider_models(self, settings):
        primary = FakeProvider("Groq", model=GROQ_MODELS[0], responses=[AIClientQuotaError("429 Too Many Requests")])
        backup = FakeProvider("Backup", responses=["ok"])
        ai = make_ai([primary, backup], settings)

        response = await ai.process(PROMPT)

        assert response.content == "ok"
        assert len(primary.calls) == 1
        assert [(a.provider, a.succeeded) for a in response.fallback_chain] == [
            ("Groq", False),
            ("Backup", True),
        ]

    async def test_open_circuit_skips_provider_without_calling_it(self, settings):
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
        primary = FakeProvider("Primary", responses=[bad_request()])
        backup = FakeProvider("Backup")
        ai = make_ai([primary, backup], settings, breakers=breakers)

        await ai.process(PROMPT)
        await ai.process(PROMPT)

        assert len(primary.calls) == 1
        assert len(backup.calls) == 2

    async def test_breaker_opening_mid_walk_keeps_the_provider_error(self, settings):
        groq = FakeProvider(
            "Groq", model=GROQ_MODELS[0], responses=[ConnectionError("connection reset")] * 10
        )
        backup = FakeProvider("Backup", responses=["backup answer"])
        ai = make_ai([groq, backup], settings)

        response = await ai.process(PROMPT)

        assert response.provider == "Backup"
        # Two tries on the first model, then the third failure opens the circuit
        assert [model for model, _ in groq.calls] == [GROQ_MODELS[0], GROQ_MODELS[0], GROQ_MODELS[1]]
        groq_attempts = [a for a in response.fallback_chain if a.provider == "Groq"]
        assert [a.model for a in groq_attempts] == GROQ_MODELS[:2]
        assert all(a.error == "connection reset" for a in groq_attempts)
        assert ai.breakers.get("Groq").state == "open"

    async def test_exhaustion_message_names_live_errors(self, settings):
        groq = FakeProvider(
            "Groq", model=GROQ_MODELS[0], responses=[ConnectionError("connection reset")] * 10
        )
        ai = make_ai([groq], settings)

        with pytest.raises(FallbackExhaustedError) as exc_info:
            await ai.process(PROMPT)

        assert "is open" not in str(exc_info.value)
        assert str(exc_info.value).startswith(f"Groq/{GROQ_MODELS[0]}: connection reset")

    async def test_transient_errors_are_retried_on_the_same_model(self, settings):
        primary = FakeProvider("Primary", responses=[ConnectionError("reset"), "second try"])
        ai = make_ai([primary], settings)

        response = await ai.process(PROMPT)

        assert response.content == "second try"
        assert len(primary.calls) == 2
        assert len(response.fallback_chain) == 1

    async def test_empty_response_counts_as_failure(self, settings):
        primary = FakeProvider("Primary", responses=["   "])
        backup = FakeProvider("Backup", responses=["real answer"])
        ai = make_ai([primary, backup], settings)

        response = await ai.process(PROMPT)

        assert response.provider == "Backup"
        assert "Empty response" in response.fallback_chain[0].error

    async def test_provider_timeout(self, settings):
        slow = FakeProvider("Slow", delay=1.0)
        backup = FakeProvider("Backup")
        ai = make_ai([slow, backup], settings)
        slow.timeout = 0.01

        response = await ai.process(PROMPT)

        assert response.provider == "Backup"
        assert "exceeded" in response.fallback_chain[0].error
        # Timeouts are transient, so the pair is retried once
        assert len(slow.calls) == 2

    async def test_single_failure_message(self, settings):
        ai = make_ai([FakeProvider("Only", responses=[bad_request()])], settings)

        with pytest.raises(FallbackExhaustedError) as exc_info:
            await ai.process(PROMPT)

        assert str(exc_info.value) == "Only/fake-model: bad request"
        assert len(exc_info.value.attempts) == 1

    async def test_exhausted_chain_message(self, settings):
        ai = make_ai(
            [
                FakeProvider("First", responses=[bad_request()]),
                FakeProvider("Second", responses=[bad_request()]),
            ],
            settings,
        )

        with pytest.raises(FallbackExhaustedError) as exc_info:
            await ai.process(PROMPT)

        message = str(exc_info.value)
        assert message.startswith("First/fake-model: bad request; Second/fake-model")
        assert message.endswith(EXHAUSTED_SUFFIX)

    async def test_fallback_disabled(self, settings):
        primary = FakeProvider("Primary", responses=[bad_request()])
        backup = FakeProvider("Backup")
        ai = make_ai([primary, backup], settings)

        with pytest.raises(FallbackExhaustedError):
            await ai.process_with("Primary", PROMPT, enable_fallback=False)
        assert backup.calls == []

    async def test_image_requests_skip_providers_without_image_support(self, settings):
        primary = FakeProvider("Primary", responses=[bad_request()], supports_images=True)
        text_only = FakeProvider("TextOnly")
        vision = FakeProvider("Vision", supports_images=True)
        ai = make_ai([primary, text_only, vision], settings)

        response = await ai.process(PROMPT, images=["data:image/png;base64,AAAA"])

        assert response.provider == "Vision"
        assert text_only.calls == []

    async def test_cached_response(self, settings):
        primary = FakeProvider("Primary", responses=["fresh"])
        ai = make_ai([primary], settings, cache=ResponseCache())

        first = await ai.process(PROMPT)
        second = await ai.process(PROMPT)

        assert not first.cached
        assert second.cached
        assert second.content == "fresh"
        assert len(primary.calls) == 1
        assert second.fallback_chain[-1].succeeded

    async def test_image_requests_are_not_cached(self, settings):
        primary = FakeProvider("Primary", supports_images=True)
        cache = ResponseCache()
        ai = make_ai([primary], settings, cache=cache)

        await ai.process(PROMPT, images=["data:image/png;base64,AAAA"])

        assert len(cache) == 0


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════


class TestAIOrchestrator:
    def test_requires_providers(self, settings):
        with pytest.raises(ValueError, match="No AI providers configured"):
            make_ai([], settings)

    async def test_rejects_empty_prompt(self, settings):
        ai = make_ai([FakeProvider("Primary")], settings)

        with pytest.raises(ValueError):
            await ai.process("   ")

    async def test_unknown_provider(self, settings):
        ai = make_ai([FakeProvider("Primary")], settings)

        with pytest.raises(KeyError):
            await ai.process_with("Missing", PROMPT)

    def test_applies_performance_settings(self, settings):
        groq = FakeProvider("Groq")
        other = FakeProvider("Other")
        make_ai([groq, other], settings.model_copy(update={"performance_mode": "fast", "max_tokens": 512}))

        assert groq.timeout == 10.0
        assert other.timeout == 15.0
        assert groq.max_tokens == 512

    async def test_metrics(self, settings):
        primary = FakeProvider("Primary", responses=[bad_request()])
        backup = FakeProvider("Backup")
        ai = make_ai([primary, backup], settings)

        await ai.process(PROMPT)

        metrics = ai.get_metrics()
        assert metrics["Primary"]["failures"] == 1
        assert metrics["Backup"]["successes"] == 1
        assert metrics["Backup"]["requests"] == 1

    async def test_parallel_race(self, settings):
        slow = FakeProvider("Slow", delay=1.0)
        fast = FakeProvider("Fast", delay=0.01)
        ai = make_ai([slow, fast], settings.model_copy(update={"enable_parallel_processing": True}))

        response = await ai.process(PROMPT)

        assert response.provider == "Fast"

    async def test_parallel_race_all_fail(self, settings):
        ai = make_ai(
            [
                FakeProvider("A", responses=[bad_request()]),
                FakeProvider("B", responses=[bad_request()]),
            ],
            settings.model_copy(update={"enable_parallel_processing": True}),
        )

        with pytest.raises(FallbackExhaustedError) as exc_info:
            await ai.process(PROMPT)

        assert len(exc_info.value.attempts) == 2
        assert str(exc_info.value).endswith(EXHAUSTED_SUFFIX)

    async def test_cancel(self, settings):
        slow = FakeProvider("Slow", delay=10.0)
        ai = make_ai([slow], settings)

        task = asyncio.create_task(ai.process(PROMPT, operation_id="op-1"))
        while not slow.calls:
            await asyncio.sleep(0.001)

        assert ai.cancel("op-1")
        with pytest.raises(OperationCancelledError):
            await task
        assert slow.model == "fake-model"

    async def test_duplicate_operation_id(self, settings):
        slow = FakeProvider("Slow", delay=10.0)
        ai = make_ai([slow], settings)

        task = asyncio.create_task(ai.process(PROMPT, operation_id="op-1"))
        while not slow.calls:
            await asyncio.sleep(0.001)

        with pytest.raises(ValueError, match="already running"):
            await ai.process(PROMPT, operation_id="op-1")
        assert len(slow.calls) == 1

        ai.cancel("op-1")
        with pytest.raises(OperationCancelledError):
            await task

    async def test_has_available_providers(self, settings):
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
        ai = make_ai([FakeProvider("Only", responses=[bad_request()])], settings, breakers=breakers)

        assert ai.has_available_providers()
        with pytest.raises(FallbackExhaustedError):
            await ai.process(PROMPT)
        assert not ai.has_available_providers()

    async def test_close(self, settings):
        provider = FakeProvider("Primary")
        ai = make_ai([provider], settings)

        await ai.close()

        assert provider.closed


# ═══════════════════════════════════════════════════════════════════════════
# Provider manager and catalogs
# ═══════════════════════════════════════════════════════════════════════════


class TestProviderManager:
    def test_duplicate_names_rejected(self, settings):
        with pytest.raises(ValueError):
            ProviderManager([FakeProvider("A"), FakeProvider("A")], settings)

    def test_static_catalog(self, settings):
        manager = ProviderManager([FakeProvider("Groq")], settings)

        assert manager.get_provider_models("Groq")[:2] == GROQ_MODELS[:2]
        assert manager.get_fallback_models("Groq", exclude={GROQ_MODELS[0]}, limit=2) == GROQ_MODELS[1:3]

    def test_unknown_provider_catalog_is_its_own_model(self, settings):
        manager = ProviderManager([FakeProvider("Custom", model="m1")], settings)

        assert manager.get_provider_models("Custom") == ["m1"]
        assert manager.get_provider_models("Nobody") == []

    def test_audio_video_support(self, settings):
        manager = ProviderManager([], settings)

        assert manager.supports_audio_video("Google Gemini", "gemini-2.5-flash")
        assert not manager.supports_audio_video("Groq", "llama-3.1-8b-instant")

    @respx.mock
    async def test_openrouter_catalog(self, settings, clock):
        route = respx.get(OPENROUTER_MODELS_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "small/model", "context_length": 8000},
                        {"id": "big/model", "context_length": 128000},
                        {"id": "old/model-deprecated", "context_length": 999999},
                    ]
                },
            )
        )
        manager = ProviderManager([], settings, clock=clock)

        models = await manager.fetch_latest_models_for_provider("OpenRouter")
        assert models == ["big/model", "small/model"]

        # Fresh for 24 hours
        clock.advance(3600)
        await manager.fetch_latest_models_for_provider("OpenRouter")
        assert route.call_count == 1

        await manager.fetch_latest_models_for_provider("OpenRouter", bypass_cache=True)
        assert route.call_count == 2

    @respx.mock
    async def test_failed_fetch_returns_stale_catalog(self, settings, clock):
        route = respx.get(OPENROUTER_MODELS_URL)
        route.side_effect = [
            httpx.Response(200, json={"data": [{"id": "only/model"}]}),
            httpx.Response(503),
        ]
        manager = ProviderManager([], settings, clock=clock)

        await manager.fetch_latest_models_for_provider("OpenRouter")
        clock.advance(25 * 3600)

        assert await manager.fetch_latest_models_for_provider("OpenRouter") == ["only/model"]

    @respx.mock
    async def test_failed_fetch_without_history_returns_static_catalog(self, settings):
        respx.get(OPENROUTER_MODELS_URL).mock(side_effect=httpx.ConnectError("offline"))
        manager = ProviderManager([], settings)

        models = await manager.fetch_latest_models_for_provider("OpenRouter")

        assert models[0] == "meta-llama/llama-3.1-8b-instruct:free"

    async def test_groq_catalog_needs_key(self, settings):
        manager = ProviderManager([], settings)

        assert (await manager.fetch_latest_models_for_provider("Groq"))[:2] == GROQ_MODELS[:2]

    @respx.mock
    async def test_groq_catalog_with_key(self, settings):
        route = respx.get(GROQ_MODELS_URL).mock(
            return_value=httpx.Response(200, json={"data": [{"id": "llama-x"}]})
        )
        manager = ProviderManager([], settings.model_copy(update={"groq_api_key": "gsk-test"}))

        assert await manager.fetch_latest_models_for_provider("Groq") == ["llama-x"]
        assert route.calls.last.request.headers["Authorization"] == "Bearer gsk-test"


# ═══════════════════════════════════════════════════════════════════════════
# Performance presets
# ═══════════════════════════════════════════════════════════════════════════


class TestPerformance:
    def test_presets(self):
        assert get_preset("fast").timeouts.groq_timeout == 10000
        assert get_preset(PerformanceMode.QUALITY).timeouts.gemini_timeout == 60000
        assert not get_preset("quality").enable_parallel

    def test_unknown_mode_falls_back_to_balanced(self):
        assert get_preset("turbo").name == "Balanced"

    def test_custom_timeouts(self, settings):
        custom = settings.model_copy(update={"use_custom_timeouts": True, "groq_timeout": 1234})

        assert resolve_timeouts(custom).groq_timeout == 1234
        assert resolve_timeouts(settings).groq_timeout == 20000

    def test_select_model_for_format(self):
        available = ["llama-3.1-8b-instant", "gemini-2.5-flash", "llama-3.3-70b-versatile"]

        assert select_optimal_model(OutputFormat.DETAILED_GUIDE, "balanced", available) == "gemini-2.5-flash"
        assert select_optimal_model("brief", "balanced", available) == "llama-3.1-8b-instant"

    def test_select_model_falls_back(self):
        assert (
            select_optimal_model("executive-summary", "balanced", ["llama-3.3-70b-versatile"])
            == "llama-3.3-70b-versatile"
        )
        assert select_optimal_model("brief", "quality", ["something-else"]) is None

    def test_short_video_in_fast_mode(self):
        available = ["llama-3.1-8b-instant", "gemini-2.0-flash-lite"]

        assert (
            select_optimal_model("detailed-guide", "fast", available, video_duration=120)
            == "llama-3.1-8b-instant"
        )
        assert (
            select_optimal_model("detailed-guide", "fast", available, video_duration=900)
            == "gemini-2.0-flash-lite"
        )


# ═══════════════════════════════════════════════════════════════════════════
# Provider clients
# ═══════════════════════════════════════════════════════════════════════════


class SleepyProvider(BaseProvider):
    name = "Sleepy"

    async def process(self, prompt: str) -> str:
        await asyncio.sleep(1)
        return "too late"


GROQ_CHAT_URL = f"{GroqProvider.BASE_URL}/chat/completions"


@pytest.fixture
async def groq():
    async with httpx.AsyncClient() as client:
        config = AIClientConfig(base_url=GroqProvider.BASE_URL, api_key="gsk-test", timeout=5.0)
        yield GroqProvider(config, model="llama-3.1-8b-instant", http_client=client)


class TestProviders:
    async def test_process_with_timeout(self):
        provider = SleepyProvider(AIClientConfig(base_url="http://localhost", timeout=0.01), "m")

        with pytest.raises(AIClientTimeoutError, match="timed out"):
            await provider.process_with_timeout(PROMPT)
        await provider.close()

    def test_parameter_validation(self):
        provider = SleepyProvider(AIClientConfig(base_url="http://localhost"), "m")

        with pytest.raises(ValueError):
            provider.model = "  "
        with pytest.raises(ValueError):
            provider.temperature = 3.0
        with pytest.raises(ValueError):
            provider.timeout = 0

        provider.model = " other "
        assert provider.model == "other"

    async def test_images_unsupported_by_default(self, groq):
        with pytest.raises(AIClientError, match="Image input is not supported"):
            await groq.process_with_image(PROMPT, ["abc"])

    @respx.mock
    async def test_chat_completion(self, groq):
        route = respx.post(GROQ_CHAT_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "choices": [{"message": {"content": "  # Notes\n"}}],
                    "usage": {"prompt_tokens": 12, "completion_tokens": 3},
                },
            )
        )

        assert await groq.process(PROMPT) == "# Notes"
        assert groq.last_usage.input_tokens == 12
        assert groq.last_usage.output_tokens == 3
        assert route.calls.last.request.headers["Authorization"] == "Bearer gsk-test"

    @pytest.mark.parametrize(
        "status, body, error_type, retryable",
        [
            (429, {"error": {"message": "Rate limit reached"}}, AIClientQuotaError, False),
            (400, {"error": {"message": "You exceeded your current quota"}}, AIClientQuotaError, False),
            (401, {"error": "invalid api key"}, AIClientResponseError, False),
            (503, {"error": "overloaded"}, AIClientResponseError, True),
        ],
    )
    @respx.mock
    async def test_status_mapping(self, groq, status, body, error_type, retryable):
        respx.post(GROQ_CHAT_URL).mock(return_value=httpx.Response(status, json=body))

        with pytest.raises(error_type) as excinfo:
            await groq.process(PROMPT)
        assert excinfo.value.status_code == status
        assert excinfo.value.retryable is retryable

    @respx.mock
    async def test_empty_content(self, groq):
        respx.post(GROQ_CHAT_URL).mock(
            return_value=httpx.Response(200, json={"choices": [{"message": {"content": " "}}]})
        )

        with pytest.raises(AIClientResponseError, match="Empty response"):
            await groq.process(PROMPT)

    async def test_missing_key(self, groq):
        groq.config.api_key = None

        with pytest.raises(AIClientResponseError, match="API key is not configured"):
            await groq.process(PROMPT)

"""
Shared fixtures.
"""

import pytest

from clipnote.config import Settings
from clipnote.services.resilience import CircuitBreakerRegistry, RetryExecutor
from tests.fakes import FakeClock, no_sleep


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        gemini_api_key="",
        groq_api_key="",
        openrouter_api_key="",
        huggingface_api_key="",
        anthropic_api_key="",
        ollama_api_key="",
        enable_ollama=False,
        vault_root=tmp_path / "vault",
        cache_persist_path=None,
        performance_mode="balanced",
        enable_parallel_processing=False,
        enable_auto_fallback=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breakers(clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def retry() -> RetryExecutor:
    return RetryExecutor(sleep=no_sleep)

"""
AI orchestration: provider registry, performance presets, fallback chain.
"""

from clipnote.services.ai.fallback_strategy import (
    FallbackConfig,
    FallbackExhaustedError,
    FallbackStrategy,
)
from clipnote.services.ai.orchestrator import AIOrchestrator, ProviderMetrics
from clipnote.services.ai.performance import (
    PERFORMANCE_PRESETS,
    PerformancePreset,
    PerformanceTimeouts,
    get_preset,
    resolve_timeouts,
    select_optimal_model,
)
from clipnote.services.ai.provider_manager import (
    PROVIDER_MODEL_OPTIONS,
    ModelOption,
    ProviderManager,
)

__all__ = [
    "AIOrchestrator",
    "ProviderMetrics",
    "FallbackConfig",
    "FallbackExhaustedError",
    "FallbackStrategy",
    "PERFORMANCE_PRESETS",
    "PerformancePreset",
    "PerformanceTimeouts",
    "get_preset",
    "resolve_timeouts",
    "select_optimal_model",
    "PROVIDER_MODEL_OPTIONS",
    "ModelOption",
    "ProviderManager",
]

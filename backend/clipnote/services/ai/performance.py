"""
Performance presets.

A preset bundles per-provider timeouts, whether racing providers is
worthwhile, and which model suits each output format.
"""

import logging
from dataclasses import dataclass

from clipnote.config import Settings
from clipnote.models.schemas import OutputFormat, PerformanceMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceTimeouts:
    """Timeouts in milliseconds."""

    gemini_timeout: int
    groq_timeout: int
    metadata_timeout: int


@dataclass(frozen=True)
class ModelStrategy:
    """Preferred model per output format."""

    brief_format: str
    executive_summary: str
    detailed_guide: str
    fallback_model: str


@dataclass(frozen=True)
class PerformancePreset:
    name: str
    description: str
    timeouts: PerformanceTimeouts
    enable_parallel: bool
    model_strategy: ModelStrategy


PERFORMANCE_PRESETS: dict[PerformanceMode, PerformancePreset] = {
    PerformanceMode.FAST: PerformancePreset(
        name="Fast",
        description="Maximum speed with small models. Best for quick summaries.",
        timeouts=PerformanceTimeouts(gemini_timeout=15000, groq_timeout=10000, metadata_timeout=5000),
        enable_parallel=True,
        model_strategy=ModelStrategy(
            brief_format="llama-3.1-8b-instant",
            executive_summary="llama-3.3-70b-versatile",
            detailed_guide="gemini-2.0-flash-lite",
            fallback_model="llama-3.1-8b-instant",
        ),
    ),
    PerformanceMode.BALANCED: PerformancePreset(
        name="Balanced",
        description="Balanced speed and quality, multimodal for detailed content.",
        timeouts=PerformanceTimeouts(gemini_timeout=30000, groq_timeout=20000, metadata_timeout=10000),
        enable_parallel=True,
        model_strategy=ModelStrategy(
            brief_format="llama-3.1-8b-instant",
            executive_summary="gemini-2.0-flash-lite",
            detailed_guide="gemini-2.5-flash",
            fallback_model="llama-3.3-70b-versatile",
        ),
    ),
    PerformanceMode.QUALITY: PerformancePreset(
        name="Quality",
        description="Maximum quality with full multimodal analysis. Slowest.",
        timeouts=PerformanceTimeouts(gemini_timeout=60000, groq_timeout=30000, metadata_timeout=15000),
        enable_parallel=False,
        model_strategy=ModelStrategy(
            brief_format="gemini-2.0-flash-lite",
            executive_summary="gemini-2.5-flash",
            detailed_guide="gemini-2.5-pro",
            fallback_model="gemini-2.0-flash",
        ),
    ),
}

DEFAULT_TIMEOUTS = PerformanceTimeouts(gemini_timeout=30000, groq_timeout=20000, metadata_timeout=10000)


def get_preset(mode: str | PerformanceMode) -> PerformancePreset:
    """
    Look up a preset, falling back to balanced for unknown names.

    Args:
        mode: Performance mode name or enum

    Returns:
        Matching preset
    """
    try:
        return PERFORMANCE_PRESETS[PerformanceMode(mode)]
    except ValueError:
        logger.warning(f"Unknown performance mode '{mode}', using balanced")
        return PERFORMANCE_PRESETS[PerformanceMode.BALANCED]


def resolve_timeouts(settings: Settings) -> PerformanceTimeouts:
    """Custom timeouts from settings when enabled, otherwise the preset's."""
    if settings.use_custom_timeouts:
        return PerformanceTimeouts(
            gemini_timeout=settings.gemini_timeout,
            groq_timeout=settings.groq_timeout,
            metadata_timeout=settings.metadata_timeout,
        )
    return get_preset(settings.performance_mode).timeouts


def provider_timeout_ms(provider_name: str, timeouts: PerformanceTimeouts) -> int:
    """
    Timeout for one provider.

    Groq is fast hardware and gets its own (shorter) budget; every other
    hosted or local provider gets the general model budget.
    """
    if provider_name == "Groq":
        return timeouts.groq_timeout
    return timeouts.gemini_timeout


def select_optimal_model(
    output_format: OutputFormat | str,
    mode: PerformanceMode | str,
    available_models: list[str],
    video_duration: float | None = None,
) -> str | None:
    """
    Pick the preset's model for a format if the provider offers it.

    Args:
        output_format: Requested output format
        mode: Performance mode
        available_models: Models the chosen provider can serve
        video_duration: Video length in seconds, if known

    Returns:
        Model name, or None if neither the preferred nor the fallback
        model is available
    """
    preset = get_preset(mode)
    strategy = preset.model_strategy

    # Very short videos in fast mode: always the smallest model
    if (
        video_duration is not None
        and video_duration < 300
        and preset is PERFORMANCE_PRESETS[PerformanceMode.FAST]
    ):
        if "llama-3.1-8b-instant" in available_models:
            return "llama-3.1-8b-instant"

    by_format = {
        OutputFormat.BRIEF: strategy.brief_format,
        OutputFormat.EXECUTIVE_SUMMARY: strategy.executive_summary,
        OutputFormat.DETAILED_GUIDE: strategy.detailed_guide,
    }
    try:
        selected = by_format[OutputFormat(output_format)]
    except ValueError:
        selected = strategy.fallback_model

    if selected in available_models:
        return selected
    if strategy.fallback_model in available_models:
        return strategy.fallback_model
    return None

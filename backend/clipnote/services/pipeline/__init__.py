"""
Pipeline module for video note processing.

This package contains the pipeline components:
- orchestrator: Stage sequencing, timeouts, retries, history, metrics
- middleware: Logging, caching and telemetry hooks around each stage

Example:
    from clipnote.services.pipeline import create_pipeline

    pipeline = create_pipeline(container)
    result = await pipeline.execute({"source": "clipboard", "raw_text": text})

    # With middleware
    from clipnote.services.pipeline import TelemetryMiddleware

    telemetry = TelemetryMiddleware()
    pipeline.use(telemetry)
"""

from typing import TYPE_CHECKING, Any

from .middleware import (
    CacheMiddleware,
    LoggingMiddleware,
    PipelineMiddleware,
    TelemetryMiddleware,
)
from .orchestrator import OrchestratorConfig, PipelineOrchestrator, is_recoverable
from clipnote.services.stages import create_default_stages

if TYPE_CHECKING:
    from clipnote.config import Settings
    from clipnote.services.container import ServiceContainer

__all__ = [
    # Main orchestrator
    "PipelineOrchestrator",
    "OrchestratorConfig",
    "is_recoverable",
    # Middleware
    "PipelineMiddleware",
    "LoggingMiddleware",
    "CacheMiddleware",
    "TelemetryMiddleware",
    # Factories
    "create_pipeline",
    "context_config_from_settings",
]


def context_config_from_settings(settings: "Settings") -> dict[str, Any]:
    """Settings values stages may read from context.config."""
    return {
        "has_api_keys": settings.has_any_api_key or bool(settings.configured_providers()),
        "output_path": settings.output_path,
        "performance_mode": settings.performance_mode,
        "default_format": settings.default_format,
    }


def create_pipeline(
    container: "ServiceContainer",
    config: OrchestratorConfig | None = None,
) -> PipelineOrchestrator:
    """
    Create an orchestrator with the five default stages registered.

    Args:
        container: Service container
        config: Pipeline behaviour (defaults if None)

    Returns:
        PipelineOrchestrator ready to execute()
    """
    orchestrator = PipelineOrchestrator(
        config,
        context_config=context_config_from_settings(container.settings),
    )
    orchestrator.register_stages(create_default_stages(container))
    return orchestrator

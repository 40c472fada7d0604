"""
Pipeline stages for video note processing.

Each stage is a self-contained unit run by the pipeline orchestrator in a
fixed order: ingestion, validation, enrichment, processing, persistence.

Usage:
    from clipnote.services.stages import create_default_stages

    stages = create_default_stages(container)
    orchestrator.register_stages(stages)

Adding new stages:
    1. Create a new file: stages/my_stage.py
    2. Define your stage class:

        class MyStage(BaseStage):
            name = "my_stage"
            timeout = 10.0

            async def execute(self, context: PipelineContext) -> MyOutput:
                content = context.input["generated_content"]
                # Process...
                return MyOutput(...)

    3. Register it after the default stages with register_stage()
"""

from typing import TYPE_CHECKING

from clipnote.models.schemas import OutputFormat
from clipnote.services.stages.base import (
    DEFAULT_STAGE_TIMEOUT,
    BaseStage,
    StageError,
    StageTimeoutError,
)
from clipnote.services.stages.ingestion_stage import IngestionStage
from clipnote.services.stages.validation_stage import ValidationStage
from clipnote.services.stages.enrichment_stage import EnrichmentStage
from clipnote.services.stages.processing_stage import ProcessingStage
from clipnote.services.stages.persistence_stage import PersistenceStage

if TYPE_CHECKING:
    from clipnote.services.container import ServiceContainer


__all__ = [
    # Base classes
    "BaseStage",
    "StageError",
    "StageTimeoutError",
    "DEFAULT_STAGE_TIMEOUT",
    # Stage implementations
    "IngestionStage",
    "ValidationStage",
    "EnrichmentStage",
    "ProcessingStage",
    "PersistenceStage",
    # Factory function
    "create_default_stages",
    "DEFAULT_PIPELINE_STAGES",
]


def create_default_stages(container: "ServiceContainer") -> list[BaseStage]:
    """Create the five default stages in execution order.

    Args:
        container: Service container with collaborators and AI orchestrator

    Returns:
        Stages ready for PipelineOrchestrator.register_stages()

    Example:
        container = await build_container(settings)
        stages = create_default_stages(container)
    """
    settings = container.settings
    return [
        IngestionStage(),
        ValidationStage(),
        EnrichmentStage(container.metadata_source),
        ProcessingStage(
            container.ai,
            container.prompts,
            default_format=OutputFormat(settings.default_format),
        ),
        PersistenceStage(
            container.storage,
            cache=container.cache,
            default_output_path=settings.output_path,
        ),
    ]


DEFAULT_PIPELINE_STAGES = [
    "ingestion",
    "validation",
    "enrichment",
    "processing",
    "persistence",
]

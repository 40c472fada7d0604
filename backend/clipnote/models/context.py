"""
Pipeline run state.

PipelineContext travels through the stages. Stage outputs are merged into
`input` as JSON-ready dicts, so later stages, cache keys and API responses
all see the same plain values.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel

from clipnote.models.schemas import (
    PipelineErrorRecord,
    PipelineMetadata,
    PipelineMetrics,
    StageExecution,
    StageStatus,
)


def freeze_config(config: Mapping[str, Any] | None) -> Mapping[str, Any]:
    """Read-only snapshot of a configuration mapping."""
    return MappingProxyType(dict(config or {}))


def stage_output_to_dict(output: Any) -> dict[str, Any]:
    """
    Normalise a stage result to a JSON-ready dict.

    Raises:
        TypeError: If the result is neither a model nor a mapping
    """
    if output is None:
        return {}
    if isinstance(output, BaseModel):
        return output.model_dump(mode="json")
    if isinstance(output, Mapping):
        return dict(output)
    raise TypeError(f"Stage output must be a model or a mapping, got {type(output).__name__}")


def merge_stage_output(current: Mapping[str, Any], output: Mapping[str, Any]) -> dict[str, Any]:
    """
    Merge a stage output into the running input.

    Returns a new dict; later keys win, the current input is not modified.
    """
    return {**current, **output}


@dataclass
class PipelineContext:
    """
    State of one pipeline run.

    Attributes:
        input: Running input, grown by each successful stage
        metadata: Run identity and timing
        config: Read-only settings snapshot taken at start
        stage_history: One entry per attempted stage, append-only
        errors: Failures recorded during the run
        cache_hits: Stage outputs served by a cache middleware
        cache_misses: Cache lookups that found nothing
    """

    input: dict[str, Any]
    metadata: PipelineMetadata = field(default_factory=PipelineMetadata)
    config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    stage_history: list[StageExecution] = field(default_factory=list)
    errors: list[PipelineErrorRecord] = field(default_factory=list)
    cache_hits: int = 0
    cache_misses: int = 0

    def get_execution(self, stage: str) -> StageExecution | None:
        """Latest history entry of a stage."""
        for execution in reversed(self.stage_history):
            if execution.stage == stage:
                return execution
        return None

    def has_succeeded(self, stage: str) -> bool:
        execution = self.get_execution(stage)
        return execution is not None and execution.status == StageStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": dict(self.input),
            "metadata": self.metadata.model_dump(mode="json"),
            "config": dict(self.config),
            "stage_history": [e.model_dump(mode="json") for e in self.stage_history],
            "errors": [e.model_dump(mode="json") for e in self.errors],
        }


@dataclass
class PipelineResult:
    """Outcome of PipelineOrchestrator.execute()."""

    success: bool
    final_context: PipelineContext
    history: list[StageExecution]
    metrics: PipelineMetrics

    @property
    def errors(self) -> list[PipelineErrorRecord]:
        return self.final_context.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "final_context": self.final_context.to_dict(),
            "history": [e.model_dump(mode="json") for e in self.history],
            "metrics": self.metrics.model_dump(mode="json"),
        }

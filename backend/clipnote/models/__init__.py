"""
Data models for the video note pipeline.

Exports:
    - Cache models (CacheEntry, CacheStats, PersistentCacheFile)
    - Common schema models (VideoData, AIResponse, FallbackAttempt, ...)
    - Pipeline run state (PipelineContext, PipelineResult)
"""

from clipnote.models.cache import (
    CacheEntry,
    CacheStats,
    PersistedEntry,
    PersistentCacheFile,
)
from clipnote.models.context import (
    PipelineContext,
    PipelineResult,
    freeze_config,
    merge_stage_output,
    stage_output_to_dict,
)
from clipnote.models.schemas import (
    AIResponse,
    FallbackAttempt,
    OutputFormat,
    PerformanceMode,
    PipelineErrorRecord,
    PipelineInput,
    PipelineMetadata,
    PipelineMetrics,
    SourceChannel,
    StageExecution,
    StageStatus,
    VideoData,
)

__all__ = [
    # Cache models
    "CacheEntry",
    "CacheStats",
    "PersistedEntry",
    "PersistentCacheFile",
    # Pipeline state
    "PipelineContext",
    "PipelineResult",
    "freeze_config",
    "merge_stage_output",
    "stage_output_to_dict",
    # Schema models
    "AIResponse",
    "FallbackAttempt",
    "OutputFormat",
    "PerformanceMode",
    "PipelineErrorRecord",
    "PipelineInput",
    "PipelineMetadata",
    "PipelineMetrics",
    "SourceChannel",
    "StageExecution",
    "StageStatus",
    "VideoData",
]

"""
Pydantic models for the video note pipeline.
"""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


class SourceChannel(str, Enum):
    """Where a pipeline run was triggered from."""
    CLIPBOARD = "clipboard"
    PROTOCOL = "protocol"
    FILE_MONITOR = "file-monitor"
    EXTENSION = "extension"
    MANUAL = "manual"


class StageStatus(str, Enum):
    """Outcome of a single stage execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PerformanceMode(str, Enum):
    """Performance preset selecting timeouts and model strategy."""
    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


class OutputFormat(str, Enum):
    """Shape of the generated note."""
    BRIEF = "brief"
    EXECUTIVE_SUMMARY = "executive-summary"
    DETAILED_GUIDE = "detailed-guide"


class CacheStatus(str, Enum):
    """How much of the enrichment data came from cache."""
    HIT = "hit"
    MISS = "miss"
    PARTIAL = "partial"


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline input and bookkeeping
# ═══════════════════════════════════════════════════════════════════════════


class PipelineInput(BaseModel):
    """Raw input handed to the pipeline entry point.

    Optional fields tune the Processing and Persistence stages for this run.
    """

    source: SourceChannel = SourceChannel.MANUAL
    raw_text: str = ""
    source_ref: str | None = None  # e.g. file path for file-monitor runs
    provider: str | None = None
    model: str | None = None
    format: OutputFormat | None = None
    custom_prompt: str | None = None
    output_path: str | None = None


class PipelineMetadata(BaseModel):
    """Identity and timing of one pipeline run."""

    pipeline_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=datetime.now)
    source: SourceChannel = SourceChannel.MANUAL
    source_ref: str | None = None
    start_time: float | None = None  # monotonic seconds
    end_time: float | None = None


class StageExecution(BaseModel):
    """Record of one attempted stage. Frozen once appended to history."""

    model_config = {"frozen": True}

    stage: str
    status: StageStatus
    duration_ms: float = 0.0
    timestamp: datetime = Field(default_factory=datetime.now)
    output: dict | None = None
    error: str | None = None
    attempts: int = 1


class PipelineErrorRecord(BaseModel):
    """Error collected in the pipeline context."""

    model_config = {"frozen": True}

    stage: str
    error: str
    recoverable: bool = False
    recovery_attempted: bool = False


class PipelineMetrics(BaseModel):
    """Timing and counters for a finished run."""

    total_time_ms: float = 0.0
    stage_times: dict[str, float] = Field(default_factory=dict)
    error_count: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


# ═══════════════════════════════════════════════════════════════════════════
# Video and AI data
# ═══════════════════════════════════════════════════════════════════════════


class VideoData(BaseModel):
    """Video metadata returned by the metadata source."""

    title: str
    description: str = ""
    duration_seconds: float | None = None
    channel: str | None = None
    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    thumbnail: str | None = None


class FallbackAttempt(BaseModel):
    """One (provider, model) pair tried while walking the fallback chain."""

    provider: str
    model: str
    succeeded: bool
    error: str | None = None
    duration_ms: float = 0.0


class AIResponse(BaseModel):
    """Generated content plus where it actually came from."""

    content: str
    provider: str
    model: str
    response_time_ms: float = 0.0
    token_count: int | None = None
    cached: bool = False
    fallback_chain: list[FallbackAttempt] = Field(default_factory=list)

    @computed_field
    @property
    def used_fallback(self) -> bool:
        """True if anything other than the first attempt produced the content."""
        return len(self.fallback_chain) > 1


# ═══════════════════════════════════════════════════════════════════════════
# Stage outputs (merged into PipelineContext.input)
# ═══════════════════════════════════════════════════════════════════════════


class IngestionOutput(BaseModel):
    """Output of the ingestion stage."""

    url: str
    source: SourceChannel
    source_ref: str | None = None
    ingested_at: datetime = Field(default_factory=datetime.now)


class ValidationOutput(BaseModel):
    """Output of the validation stage. `url` is the canonical form."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    url: str
    video_id: str


class EnrichmentOutput(BaseModel):
    """Output of the enrichment stage."""

    video_data: VideoData
    transcript: str | None = None
    thumbnail: str
    cache_status: CacheStatus


class ProcessingMetrics(BaseModel):
    """Timing of the AI call made by the processing stage."""

    response_time_ms: float
    token_count: int | None = None


class ProcessingOutput(BaseModel):
    """Output of the processing stage."""

    generated_content: str
    provider: str
    model: str
    metrics: ProcessingMetrics
    fallback_chain: list[FallbackAttempt] = Field(default_factory=list)


class PersistenceOutput(BaseModel):
    """Output of the persistence stage."""

    file_path: str
    file_size: int
    cache_updated: bool
    conflicts: list[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════
# API responses
# ═══════════════════════════════════════════════════════════════════════════


class ProviderStatus(BaseModel):
    """Provider as reported by the API."""

    name: str
    model: str
    timeout_ms: int
    supports_images: bool
    circuit_state: str


class ProviderModelsResponse(BaseModel):
    """Model catalog for one provider."""

    provider: str
    models: list[str]
    refreshed: bool = False

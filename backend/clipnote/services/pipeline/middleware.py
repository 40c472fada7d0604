"""
Pipeline middleware.

Middlewares wrap every stage run by the PipelineOrchestrator:

- before_stage(context, stage_name) runs before the stage. Returning a
  dict short-circuits the stage and uses that dict as its output.
- after_stage(context, stage_name, output, duration_ms) runs after a successful
  stage and returns the (possibly changed) output to merge.

Both hooks run in registration order.

Example:
    telemetry = TelemetryMiddleware()
    orchestrator.use(LoggingMiddleware()).use(telemetry)
    await orchestrator.execute({"raw_text": url})
    print(telemetry.get_metrics())  # {"ingestion": {"avg": 1.2, ...}, ...}
"""

import json
from collections import deque
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from clipnote.models.context import PipelineContext
from clipnote.services.cache import ResponseCache

logger = logging.getLogger(__name__)

TELEMETRY_WINDOW = 1000  # most recent durations kept per stage

CACHED_MARKER = "_cached"


class PipelineMiddleware:
    """Base middleware: both hooks pass through."""

    name: str = "middleware"

    async def before_stage(
        self, context: PipelineContext, stage_name: str
    ) -> dict[str, Any] | None:
        return None

    async def after_stage(
        self,
        context: PipelineContext,
        stage_name: str,
        output: dict[str, Any],
        duration_ms: float,
    ) -> dict[str, Any]:
        return output

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"


class LoggingMiddleware(PipelineMiddleware):
    """Logs each completed stage with its duration."""

    name = "logging"

    def __init__(self, log: logging.Logger | None = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    async def after_stage(
        self,
        context: PipelineContext,
        stage_name: str,
        output: dict[str, Any],
        duration_ms: float,
    ) -> dict[str, Any]:
        cached = " (cached)" if output.get(CACHED_MARKER) else ""
        self.log.log(self.level, f"Stage '{stage_name}' completed in {duration_ms:.0f}ms{cached}")
        return output


class CacheMiddleware(PipelineMiddleware):
    """
    Serves stage outputs from a ResponseCache.

    Keys are `"{stage}:{json(input)}"`. Volatile input keys (timestamps)
    are left out of the key so repeated runs can hit. A hit is marked with
    `_cached: True` and counted on the context.

    Only the listed stages are cached; persistence has side effects and is
    not in the default list.
    """

    name = "caching"

    DEFAULT_STAGES = ("validation", "enrichment", "processing")

    def __init__(
        self,
        cache: ResponseCache,
        stages: Iterable[str] = DEFAULT_STAGES,
        ttl: float | None = None,
        volatile_keys: Iterable[str] = ("ingested_at",),
    ):
        """
        Initialize middleware.

        Args:
            cache: Cache holding stage outputs
            stages: Stage names to cache
            ttl: Entry TTL in seconds (cache default if None)
            volatile_keys: Input keys ignored when building the key
        """
        self.cache = cache
        self.stages = frozenset(stages)
        self.ttl = ttl
        self.volatile_keys = frozenset(volatile_keys)

    def cache_key(self, context: PipelineContext, stage_name: str) -> str:
        stable = {k: v for k, v in context.input.items() if k not in self.volatile_keys}
        return f"{stage_name}:{json.dumps(stable, sort_keys=True, default=str)}"

    async def before_stage(
        self, context: PipelineContext, stage_name: str
    ) -> dict[str, Any] | None:
        if stage_name not in self.stages:
            return None

        key = self.cache_key(context, stage_name)
        cached = self.cache.get(key)
        if cached is None:
            context.cache_misses += 1
            return None

        context.cache_hits += 1
        logger.debug(f"Cache hit for stage '{stage_name}'")
        return {**cached, CACHED_MARKER: True}

    async def after_stage(
        self,
        context: PipelineContext,
        stage_name: str,
        output: dict[str, Any],
        duration_ms: float,
    ) -> dict[str, Any]:
        if stage_name in self.stages and not output.get(CACHED_MARKER):
            self.cache.set(self.cache_key(context, stage_name), output, ttl=self.ttl)
        return output


@dataclass
class StageTiming:
    """Aggregated durations of one stage."""

    count: int
    avg: float
    min: float
    max: float

    def to_dict(self) -> dict:
        return {"count": self.count, "avg": self.avg, "min": self.min, "max": self.max}


class TelemetryMiddleware(PipelineMiddleware):
    """Collects the most recent stage durations across runs."""

    name = "telemetry"

    def __init__(self, window: int = TELEMETRY_WINDOW):
        """
        Initialize telemetry.

        Args:
            window: Durations kept per stage; older ones are dropped
        """
        self.window = window
        self._durations: dict[str, deque[float]] = {}

    async def after_stage(
        self,
        context: PipelineContext,
        stage_name: str,
        output: dict[str, Any],
        duration_ms: float,
    ) -> dict[str, Any]:
        times = self._durations.get(stage_name)
        if times is None:
            times = self._durations[stage_name] = deque(maxlen=self.window)
        times.append(duration_ms)
        return output

    def get_metrics(self, stage_name: str | None = None) -> dict[str, dict]:
        """
        Duration statistics in milliseconds.

        Args:
            stage_name: Single stage to report (all stages if None)

        Returns:
            {stage: {"count", "avg", "min", "max"}}, stages without data omitted
        """
        names = [stage_name] if stage_name else list(self._durations)
        metrics = {}
        for name in names:
            times = self._durations.get(name)
            if times:
                metrics[name] = StageTiming(
                    count=len(times),
                    avg=sum(times) / len(times),
                    min=min(times),
                    max=max(times),
                ).to_dict()
        return metrics

    def clear(self) -> None:
        self._durations.clear()

"""
Pipeline orchestrator for video note processing.

Runs the registered stages in registration order over one PipelineContext:
ingestion, validation, enrichment, processing, persistence.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from clipnote.logging_config import bind_run_id, reset_run_id
from clipnote.models.context import (
    PipelineContext,
    PipelineResult,
    freeze_config,
    merge_stage_output,
    stage_output_to_dict,
)
from clipnote.models.schemas import (
    PipelineErrorRecord,
    PipelineInput,
    PipelineMetadata,
    PipelineMetrics,
    StageExecution,
    StageStatus,
)
from clipnote.services.pipeline.middleware import CACHED_MARKER, PipelineMiddleware
from clipnote.services.resilience import OperationTimeoutError, run_with_timeout
from clipnote.services.stages.base import BaseStage, StageError, StageTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """
    Pipeline behaviour.

    Attributes:
        continue_on_error: Keep running later stages after a failure
        max_retries: Extra attempts for recoverable stage failures
        enable_parallel: Allow concurrent execute() calls on one orchestrator
        max_concurrency: Upper bound on concurrent execute() calls
    """

    continue_on_error: bool = False
    max_retries: int = 2
    enable_parallel: bool = False
    max_concurrency: int = 5


def is_recoverable(error: BaseException) -> bool:
    """Timeouts and transient transport failures may succeed on a second run."""
    if isinstance(error, StageError):
        return error.recoverable
    return isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError))


class PipelineOrchestrator:
    """
    Runs stages with timeouts, retries and middleware.

    For each stage:
    1. before_stage middlewares (may serve a cached output)
    2. can_execute() - False records the stage as skipped
    3. execute() under the stage timeout, retried while the failure is
       recoverable and attempts remain
    4. after_stage middlewares, then the output is merged into `input`
    5. exactly one history entry is appended

    A failed stage aborts the run unless continue_on_error is set.

    Example:
        orchestrator = PipelineOrchestrator()
        orchestrator.register_stages(create_default_stages(container))
        orchestrator.use(LoggingMiddleware())
        result = await orchestrator.execute({"raw_text": "https://youtu.be/dQw4w9WgXcQ"})
        print(result.success, result.final_context.input["file_path"])
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        context_config: Mapping[str, Any] | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Pipeline behaviour (defaults if None)
            context_config: Settings snapshot exposed to stages as context.config
        """
        self.config = config or OrchestratorConfig()
        self.context_config = dict(context_config or {})
        self._stages: dict[str, BaseStage] = {}
        self._middlewares: list[PipelineMiddleware] = []
        self._semaphore = asyncio.Semaphore(
            max(1, self.config.max_concurrency) if self.config.enable_parallel else 1
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Registration
    # ═══════════════════════════════════════════════════════════════════════════

    def register_stage(self, stage: BaseStage) -> "PipelineOrchestrator":
        """Add a stage; a stage with the same name is replaced in place."""
        if stage.name in self._stages:
            logger.warning(f"Replacing stage '{stage.name}'")
        self._stages[stage.name] = stage
        return self

    def register_stages(self, stages: list[BaseStage]) -> "PipelineOrchestrator":
        for stage in stages:
            self.register_stage(stage)
        return self

    def use(self, middleware: PipelineMiddleware) -> "PipelineOrchestrator":
        self._middlewares.append(middleware)
        return self

    def get_stages(self) -> list[BaseStage]:
        return list(self._stages.values())

    def get_stage(self, name: str) -> BaseStage | None:
        return self._stages.get(name)

    def clear_stages(self) -> None:
        self._stages.clear()

    def clear_middleware(self) -> None:
        self._middlewares.clear()

    @property
    def middlewares(self) -> list[PipelineMiddleware]:
        return list(self._middlewares)

    # ═══════════════════════════════════════════════════════════════════════════
    # Execution
    # ═══════════════════════════════════════════════════════════════════════════

    async def execute(self, raw_input: PipelineInput | Mapping[str, Any]) -> PipelineResult:
        """
        Run every registered stage once.

        Stage failures never raise: they end up in the result's history and
        errors.

        Args:
            raw_input: PipelineInput or a mapping with its fields

        Returns:
            PipelineResult

        Raises:
            ValidationError: If raw_input is not a valid PipelineInput
        """
        if not isinstance(raw_input, PipelineInput):
            raw_input = PipelineInput.model_validate(dict(raw_input))

        metadata = PipelineMetadata(source=raw_input.source, source_ref=raw_input.source_ref)

        async with self._semaphore:
            token = bind_run_id(metadata.pipeline_id)
            try:
                return await self._run(raw_input, metadata)
            finally:
                reset_run_id(token)

    async def _run(self, raw_input: PipelineInput, metadata: PipelineMetadata) -> PipelineResult:
        metadata.start_time = time.monotonic()
        context = PipelineContext(
            input=raw_input.model_dump(mode="json", exclude_none=True),
            metadata=metadata,
            config=freeze_config(self.context_config),
        )
        logger.info(
            f"Pipeline {metadata.pipeline_id} started "
            f"({len(self._stages)} stages, source={raw_input.source.value})"
        )

        for stage in list(self._stages.values()):
            execution = await self._execute_stage(stage, context)
            context.stage_history.append(execution)

            if execution.status == StageStatus.FAILED and not self.config.continue_on_error:
                logger.warning(f"Pipeline {metadata.pipeline_id} aborted at '{stage.name}'")
                break

        metadata.end_time = time.monotonic()
        history = list(context.stage_history)
        success = not context.errors and all(
            e.status in (StageStatus.SUCCESS, StageStatus.SKIPPED) for e in history
        )
        metrics = self._calculate_metrics(context)

        logger.info(
            f"Pipeline {metadata.pipeline_id} finished: "
            f"{'success' if success else 'failed'} in {metrics.total_time_ms:.0f}ms"
        )
        return PipelineResult(
            success=success,
            final_context=context,
            history=history,
            metrics=metrics,
        )

    async def _execute_stage(self, stage: BaseStage, context: PipelineContext) -> StageExecution:
        """Run one stage and return its single history entry."""
        started = time.monotonic()
        attempts = 0

        try:
            output = None
            for middleware in self._middlewares:
                output = await middleware.before_stage(context, stage.name)
                if output is not None:
                    break

            if output is None:
                if not stage.can_execute(context):
                    logger.debug(f"Stage '{stage.name}' skipped")
                    return StageExecution(
                        stage=stage.name,
                        status=StageStatus.SKIPPED,
                        attempts=0,
                    )
                max_attempts = 1 + max(0, self.config.max_retries)
                while True:
                    attempts += 1
                    try:
                        output = await self._run_once(stage, context)
                        break
                    except StageError as e:
                        if not e.recoverable or attempts >= max_attempts:
                            raise
                        logger.warning(
                            f"Stage '{stage.name}' attempt {attempts}/{max_attempts} failed: {e}"
                        )

            duration_ms = (time.monotonic() - started) * 1000
            for middleware in self._middlewares:
                output = await middleware.after_stage(context, stage.name, output, duration_ms)

        except Exception as e:
            return self._record_failure(stage, context, e, started, attempts)

        merged = {k: v for k, v in output.items() if k != CACHED_MARKER}
        context.input = merge_stage_output(context.input, merged)

        return StageExecution(
            stage=stage.name,
            status=StageStatus.SUCCESS,
            duration_ms=(time.monotonic() - started) * 1000,
            output=output,
            attempts=attempts,
        )

    async def _run_once(self, stage: BaseStage, context: PipelineContext) -> dict[str, Any]:
        """
        Execute a stage once under its timeout.

        Raises:
            StageError: Any failure (timeouts as StageTimeoutError)
        """
        timeout = stage.get_timeout()
        try:
            result = await run_with_timeout(stage.execute(context), timeout)
        except OperationTimeoutError as e:
            raise StageTimeoutError(stage.name, timeout, e) from e
        except StageError:
            raise
        except Exception as e:
            raise StageError(stage.name, str(e), e, recoverable=is_recoverable(e)) from e
        return stage_output_to_dict(result)

    def _record_failure(
        self,
        stage: BaseStage,
        context: PipelineContext,
        error: Exception,
        started: float,
        attempts: int,
    ) -> StageExecution:
        attempts = attempts or 1
        if isinstance(error, StageError):
            message, recoverable = error.message, error.recoverable
        else:
            message, recoverable = str(error) or type(error).__name__, False

        logger.error(f"Stage '{stage.name}' failed after {attempts} attempt(s): {message}")
        context.errors.append(
            PipelineErrorRecord(
                stage=stage.name,
                error=message,
                recoverable=recoverable,
                recovery_attempted=attempts > 1,
            )
        )
        return StageExecution(
            stage=stage.name,
            status=StageStatus.FAILED,
            duration_ms=(time.monotonic() - started) * 1000,
            error=message,
            attempts=attempts,
        )

    def _calculate_metrics(self, context: PipelineContext) -> PipelineMetrics:
        stage_times: dict[str, float] = {}
        for execution in context.stage_history:
            stage_times[execution.stage] = stage_times.get(execution.stage, 0.0) + execution.duration_ms

        metadata = context.metadata
        if metadata.start_time is not None and metadata.end_time is not None:
            total_time_ms = (metadata.end_time - metadata.start_time) * 1000
        else:
            total_time_ms = sum(stage_times.values())

        return PipelineMetrics(
            total_time_ms=total_time_ms,
            stage_times=stage_times,
            error_count=len(context.errors),
            cache_hits=context.cache_hits,
            cache_misses=context.cache_misses,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════════

    async def cleanup(self) -> None:
        """Let every stage release its resources; failures are logged."""
        for stage in self._stages.values():
            try:
                await stage.cleanup()
            except Exception as e:
                logger.warning(f"Cleanup of stage '{stage.name}' failed: {e}")


__all__ = [
    "OrchestratorConfig",
    "PipelineOrchestrator",
    "is_recoverable",
]

"""
Tests for the pipeline orchestrator, its middleware and the default wiring.
"""

import asyncio
import logging

import pytest
import yaml
from pydantic import ValidationError

from clipnote.logging_config import StructuredFormatter, bind_run_id, current_run_id, reset_run_id
from clipnote.models.context import PipelineContext
from clipnote.models.schemas import StageStatus
from clipnote.services.cache import ResponseCache
from clipnote.services.container import build_container
from clipnote.services.pipeline import (
    CacheMiddleware,
    LoggingMiddleware,
    OrchestratorConfig,
    PipelineMiddleware,
    PipelineOrchestrator,
    TelemetryMiddleware,
    create_pipeline,
    is_recoverable,
)
from clipnote.services.stages import (
    DEFAULT_PIPELINE_STAGES,
    BaseStage,
    IngestionStage,
    StageError,
    StageTimeoutError,
    ValidationStage,
)
from tests.fakes import VIDEO_ID, VIDEO_URL, FakeMetadataSource, FakeProvider, FakeStorage


class RecordingStage(BaseStage):
    """Returns `output`, after failing with `errors` in order."""

    def __init__(
        self,
        name: str,
        output: dict | None = None,
        errors: list[Exception] | None = None,
        requires: str | None = None,
        delay: float = 0.0,
        timeout: float = 5.0,
    ):
        self.name = name
        self.output = output if output is not None else {name: True}
        self.errors = list(errors or [])
        self.requires = requires
        self.delay = delay
        self.timeout = timeout
        self.calls = 0
        self.seen: list[dict] = []
        self.cleaned = False

    def can_execute(self, context: PipelineContext) -> bool:
        return self.requires is None or self.requires in context.input

    async def execute(self, context: PipelineContext) -> dict:
        self.calls += 1
        self.seen.append(dict(context.input))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        return self.output

    async def cleanup(self) -> None:
        self.cleaned = True


class SlowOnceStage(RecordingStage):
    """Exceeds its timeout on the first call only."""

    async def execute(self, context: PipelineContext) -> dict:
        self.calls += 1
        if self.calls == 1:
            await asyncio.sleep(1.0)
        return self.output


def statuses(result) -> list[tuple[str, StageStatus]]:
    return [(e.stage, e.status) for e in result.history]


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════


class TestPipelineOrchestrator:
    async def test_outputs_flow_into_later_stages(self):
        first = RecordingStage("first", {"a": 1, "shared": "first"})
        second = RecordingStage("second", {"b": 2, "shared": "second"})
        pipeline = PipelineOrchestrator().register_stages([first, second])

        result = await pipeline.execute({"raw_text": "hello"})

        assert result.success
        assert second.seen[0]["a"] == 1
        assert result.final_context.input["shared"] == "second"
        assert result.final_context.input["raw_text"] == "hello"
        assert [e.attempts for e in result.history] == [1, 1]
        assert result.final_context.has_succeeded("first")
        assert not result.final_context.has_succeeded("third")

    async def test_failure_aborts_run(self):
        failing = RecordingStage("failing", errors=[StageError("failing", "boom")])
        after = RecordingStage("after")
        pipeline = PipelineOrchestrator().register_stages([failing, after])

        result = await pipeline.execute({})

        assert not result.success
        assert statuses(result) == [("failing", StageStatus.FAILED)]
        assert after.calls == 0
        assert len(result.errors) == 1
        assert result.errors[0].error == "boom"
        assert not result.errors[0].recovery_attempted

    async def test_continue_on_error(self):
        failing = RecordingStage("failing", errors=[StageError("failing", "boom")])
        after = RecordingStage("after")
        pipeline = PipelineOrchestrator(OrchestratorConfig(continue_on_error=True))
        pipeline.register_stages([failing, after])

        result = await pipeline.execute({})

        assert not result.success
        assert statuses(result) == [("failing", StageStatus.FAILED), ("after", StageStatus.SUCCESS)]

    async def test_skipped_stage(self):
        skipped = RecordingStage("needs-url", requires="url")
        pipeline = PipelineOrchestrator().register_stage(skipped)

        result = await pipeline.execute({})

        assert result.success
        assert statuses(result) == [("needs-url", StageStatus.SKIPPED)]
        assert result.history[0].attempts == 0
        assert skipped.calls == 0

    async def test_no_stages(self):
        result = await PipelineOrchestrator().execute({})

        assert result.success
        assert result.history == []
        assert result.metrics.error_count == 0

    async def test_timeout_is_retried(self):
        stage = SlowOnceStage("slow", timeout=0.05)
        pipeline = PipelineOrchestrator().register_stage(stage)

        result = await pipeline.execute({})

        assert result.success
        assert result.history[0].attempts == 2

    async def test_timeout_exhausts_retries(self):
        stage = RecordingStage("slow", delay=1.0, timeout=0.01)
        pipeline = PipelineOrchestrator(OrchestratorConfig(max_retries=2)).register_stage(stage)

        result = await pipeline.execute({})

        assert not result.success
        assert result.history[0].attempts == 3
        error = result.errors[0]
        assert error.recoverable
        assert error.recovery_attempted
        assert "exceeded timeout of 10ms" in error.error

    async def test_non_recoverable_error_is_not_retried(self):
        stage = RecordingStage("strict", errors=[ValueError("bad input")])
        pipeline = PipelineOrchestrator().register_stage(stage)

        result = await pipeline.execute({})

        assert stage.calls == 1
        assert result.errors[0].error == "bad input"
        assert not result.errors[0].recoverable

    async def test_transient_error_is_retried(self):
        stage = RecordingStage("flaky", errors=[ConnectionError("reset")])
        pipeline = PipelineOrchestrator().register_stage(stage)

        result = await pipeline.execute({})

        assert result.success
        assert stage.calls == 2

    async def test_recoverable_stage_error_without_retries(self):
        stage = RecordingStage("flaky", errors=[StageError("flaky", "try later", recoverable=True)])
        pipeline = PipelineOrchestrator(OrchestratorConfig(max_retries=0)).register_stage(stage)

        result = await pipeline.execute({})

        assert stage.calls == 1
        assert result.errors[0].recoverable
        assert not result.errors[0].recovery_attempted

    async def test_invalid_output_type(self):
        stage = RecordingStage("odd")
        stage.output = ["not", "a", "mapping"]
        pipeline = PipelineOrchestrator().register_stage(stage)

        result = await pipeline.execute({})

        assert not result.success
        assert "must be a model or a mapping" in result.errors[0].error

    async def test_invalid_input(self):
        with pytest.raises(ValidationError):
            await PipelineOrchestrator().execute({"source": "carrier-pigeon"})

    async def test_metadata_and_metrics(self):
        pipeline = PipelineOrchestrator(context_config={"output_path": "Notes"})
        pipeline.register_stages([RecordingStage("one"), RecordingStage("two")])

        result = await pipeline.execute({"source": "clipboard", "source_ref": "clip-1"})

        metadata = result.final_context.metadata
        assert metadata.source.value == "clipboard"
        assert metadata.source_ref == "clip-1"
        assert metadata.end_time >= metadata.start_time
        assert set(result.metrics.stage_times) == {"one", "two"}
        assert result.final_context.config["output_path"] == "Notes"
        with pytest.raises(TypeError):
            result.final_context.config["output_path"] = "elsewhere"

    async def test_result_is_json_ready(self):
        pipeline = PipelineOrchestrator().register_stage(RecordingStage("one"))

        result = (await pipeline.execute({"raw_text": "x"})).to_dict()

        assert result["success"] is True
        assert result["history"][0]["status"] == "success"
        assert result["final_context"]["input"]["one"] is True

    async def test_registration(self):
        pipeline = PipelineOrchestrator()
        pipeline.register_stages([RecordingStage("a"), RecordingStage("b")])
        replacement = RecordingStage("a", {"replaced": True})

        pipeline.register_stage(replacement)

        assert [s.name for s in pipeline.get_stages()] == ["a", "b"]
        assert pipeline.get_stage("a") is replacement
        assert pipeline.get_stage("missing") is None

        pipeline.clear_stages()
        assert pipeline.get_stages() == []

        pipeline.use(LoggingMiddleware())
        assert len(pipeline.middlewares) == 1
        pipeline.clear_middleware()
        assert pipeline.middlewares == []

    async def test_serial_runs_by_default(self):
        active = 0
        peak = 0

        class Tracking(RecordingStage):
            async def execute(self, context):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.02)
                active -= 1
                return {}

        pipeline = PipelineOrchestrator().register_stage(Tracking("track"))
        await asyncio.gather(*(pipeline.execute({}) for _ in range(3)))
        assert peak == 1

        parallel = PipelineOrchestrator(OrchestratorConfig(enable_parallel=True, max_concurrency=2))
        parallel.register_stage(Tracking("track"))
        peak = 0
        await asyncio.gather(*(parallel.execute({}) for _ in range(4)))
        assert peak == 2

    async def test_cleanup(self, caplog):
        class BrokenCleanup(RecordingStage):
            async def cleanup(self):
                raise RuntimeError("cannot close")

        healthy = RecordingStage("healthy")
        pipeline = PipelineOrchestrator().register_stages([BrokenCleanup("broken"), healthy])

        with caplog.at_level(logging.WARNING):
            await pipeline.cleanup()

        assert healthy.cleaned
        assert "Cleanup of stage 'broken' failed" in caplog.text

    async def test_log_records_carry_the_run_id(self):
        seen: list[str | None] = []

        class RunIdStage(RecordingStage):
            async def execute(self, context):
                seen.append(current_run_id())
                return self.output

        pipeline = PipelineOrchestrator().register_stage(RunIdStage("a"))

        result = await pipeline.execute({})

        assert seen == [result.final_context.metadata.pipeline_id]
        assert current_run_id() is None

    def test_structured_formatter(self):
        record = logging.LogRecord(
            "clipnote.services.stages.enrichment_stage", logging.INFO, __file__, 1, "hello", None, None
        )
        token = bind_run_id("3f2a9c1e-0000-0000-0000-000000000000")
        try:
            line = StructuredFormatter().format(record)
        finally:
            reset_run_id(token)

        assert line.endswith("| INFO     | run 3f2a9c1e | stages.enrichment_stage  | hello")
        assert "| - " in StructuredFormatter().format(record)


class TestIsRecoverable:
    def test_classification(self):
        assert is_recoverable(StageTimeoutError("x", 1.0))
        assert is_recoverable(ConnectionError())
        assert is_recoverable(TimeoutError())
        assert not is_recoverable(StageError("x", "fatal"))
        assert not is_recoverable(KeyError("video_id"))


# ═══════════════════════════════════════════════════════════════════════════
# Middleware
# ═══════════════════════════════════════════════════════════════════════════


class TestMiddleware:
    async def test_cache_middleware_serves_second_run(self):
        validation = ValidationStage()
        pipeline = PipelineOrchestrator().register_stages([IngestionStage(), validation])
        pipeline.use(CacheMiddleware(ResponseCache(), stages=("validation",)))
        raw = {"raw_text": f"https://youtu.be/{VIDEO_ID}"}

        first = await pipeline.execute(raw)
        second = await pipeline.execute(raw)

        assert first.metrics.cache_misses == 1
        assert first.metrics.cache_hits == 0
        assert second.metrics.cache_hits == 1

        cached = second.final_context.get_execution("validation")
        assert cached.output["_cached"] is True
        assert "_cached" not in second.final_context.input
        assert second.final_context.input["url"] == VIDEO_URL

    async def test_cache_middleware_ignores_unlisted_stages(self):
        stage = RecordingStage("persistence")
        pipeline = PipelineOrchestrator().register_stage(stage)
        pipeline.use(CacheMiddleware(ResponseCache()))

        await pipeline.execute({})
        result = await pipeline.execute({})

        assert stage.calls == 2
        assert result.metrics.cache_hits == 0
        assert result.metrics.cache_misses == 0

    async def test_before_stage_short_circuits(self):
        class Canned(PipelineMiddleware):
            async def before_stage(self, context, stage_name):
                return {"canned": stage_name}

        stage = RecordingStage("real", requires="never-present")
        pipeline = PipelineOrchestrator().register_stage(stage).use(Canned())

        result = await pipeline.execute({})

        assert stage.calls == 0
        assert result.history[0].status == StageStatus.SUCCESS
        assert result.final_context.input["canned"] == "real"

    async def test_after_stage_runs_in_order(self):
        class Append(PipelineMiddleware):
            def __init__(self, mark):
                self.mark = mark

            async def after_stage(self, context, stage_name, output, duration_ms):
                return {**output, "marks": output.get("marks", "") + self.mark}

        pipeline = PipelineOrchestrator().register_stage(RecordingStage("one"))
        pipeline.use(Append("a")).use(Append("b"))

        result = await pipeline.execute({})

        assert result.final_context.input["marks"] == "ab"
        assert len(pipeline.middlewares) == 2

    async def test_failing_middleware_fails_the_stage(self):
        class Broken(PipelineMiddleware):
            async def after_stage(self, context, stage_name, output, duration_ms):
                raise RuntimeError("middleware exploded")

        pipeline = PipelineOrchestrator().register_stage(RecordingStage("one")).use(Broken())

        result = await pipeline.execute({})

        assert not result.success
        assert result.errors[0].error == "middleware exploded"

    async def test_telemetry(self):
        telemetry = TelemetryMiddleware()
        pipeline = PipelineOrchestrator().register_stages([RecordingStage("one"), RecordingStage("two")])
        pipeline.use(telemetry)

        await pipeline.execute({})
        await pipeline.execute({})

        metrics = telemetry.get_metrics()
        assert metrics["one"]["count"] == 2
        assert metrics["one"]["min"] <= metrics["one"]["avg"] <= metrics["one"]["max"]
        assert list(telemetry.get_metrics("two")) == ["two"]
        assert telemetry.get_metrics("missing") == {}

        telemetry.clear()
        assert telemetry.get_metrics() == {}

    async def test_telemetry_keeps_a_bounded_window(self):
        telemetry = TelemetryMiddleware(window=3)

        for duration_ms in [100.0, 1.0, 2.0, 3.0]:
            await telemetry.after_stage(None, "one", {}, duration_ms)

        assert telemetry.get_metrics("one")["one"] == {"count": 3, "avg": 2.0, "min": 1.0, "max": 3.0}

    async def test_logging(self, caplog):
        pipeline = PipelineOrchestrator().register_stage(RecordingStage("one")).use(LoggingMiddleware())

        with caplog.at_level(logging.INFO):
            await pipeline.execute({})

        assert "Stage 'one' completed in" in caplog.text


# ═══════════════════════════════════════════════════════════════════════════
# Default pipeline
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
async def container(settings):
    container = await build_container(
        settings,
        providers=[FakeProvider("Primary", responses=["# Never Gonna Give You Up\n\nA classic."])],
        start_sweeper=False,
    )
    container.metadata_source = FakeMetadataSource()
    container.storage = FakeStorage()
    yield container
    await container.close()


class TestDefaultPipeline:
    async def test_video_link_to_note(self, container):
        pipeline = create_pipeline(container)

        result = await pipeline.execute(
            {"source": "clipboard", "raw_text": f"https://youtu.be/{VIDEO_ID}"}
        )

        assert result.success, result.errors
        assert [e.stage for e in result.history] == DEFAULT_PIPELINE_STAGES
        assert all(e.status == StageStatus.SUCCESS for e in result.history)

        final = result.final_context.input
        assert final["url"] == VIDEO_URL
        assert final["video_id"] == VIDEO_ID
        assert final["provider"] == "Primary"
        assert final["file_path"] == "YouTube/Processed Videos/Never-Gonna-Give-You-Up.md"

        note = container.storage.files[final["file_path"]]
        header = yaml.safe_load(note.split("---\n")[1])
        assert header["youtube_url"] == VIDEO_URL
        assert header["ai_provider"] == "Primary"
        assert note.endswith("# Never Gonna Give You Up\n\nA classic.")

    async def test_text_without_link(self, container):
        result = await create_pipeline(container).execute({"raw_text": "not-a-url"})

        assert not result.success
        assert statuses(result) == [("ingestion", StageStatus.FAILED)]
        assert len(result.errors) == 1
        assert result.errors[0].stage == "ingestion"
        assert result.errors[0].error == "No valid URL found in input"

    async def test_validation_warns_without_api_keys(self, container):
        result = await create_pipeline(container).execute({"raw_text": VIDEO_URL})

        validation = result.final_context.get_execution("validation")
        assert validation.output["warnings"] == ["No API keys configured"]

    async def test_without_providers(self, settings):
        container = await build_container(settings, providers=[], start_sweeper=False)
        container.metadata_source = FakeMetadataSource()
        container.storage = FakeStorage()
        try:
            result = await create_pipeline(container).execute({"raw_text": VIDEO_URL})
        finally:
            await container.close()

        assert statuses(result)[-1] == ("processing", StageStatus.FAILED)
        assert "No AI providers configured" in result.errors[0].error

"""
Processing stage: build the prompt and generate the note.
"""

import logging
import time

from clipnote.models.context import PipelineContext
from clipnote.models.schemas import (
    OutputFormat,
    ProcessingMetrics,
    ProcessingOutput,
    VideoData,
)
from clipnote.services.ai import AIOrchestrator
from clipnote.services.collaborators import PromptBuilder
from clipnote.services.stages.base import BaseStage, StageError
from clipnote.utils.token_utils import estimate_tokens

logger = logging.getLogger(__name__)


class ProcessingStage(BaseStage):
    """
    Runs the analysis prompt through the AI orchestrator.

    A `provider` in the input pins the first provider. Its first model is
    `model`, else the performance preset's model for the format when the
    provider offers it. Fallback stays enabled either way.
    """

    name = "processing"
    timeout = 120.0

    def __init__(
        self,
        ai: AIOrchestrator | None,
        prompts: PromptBuilder,
        default_format: OutputFormat = OutputFormat.DETAILED_GUIDE,
    ):
        self.ai = ai
        self.prompts = prompts
        self.default_format = default_format

    def can_execute(self, context: PipelineContext) -> bool:
        return bool(context.input.get("video_data") and context.input.get("url"))

    async def execute(self, context: PipelineContext) -> ProcessingOutput:
        if self.ai is None:
            raise StageError(self.name, "No AI providers configured. Add at least one API key.")

        data = context.input
        video_data = VideoData.model_validate(data["video_data"])
        output_format = OutputFormat(data.get("format") or self.default_format)

        prompt = self.prompts.create_analysis_prompt(
            video_data,
            data["url"],
            output_format,
            custom_prompt=data.get("custom_prompt"),
            transcript=data.get("transcript"),
        )

        started = time.monotonic()
        try:
            if data.get("provider"):
                model = data.get("model") or self.ai.select_model(
                    data["provider"], output_format, video_data.duration_seconds
                )
                response = await self.ai.process_with(
                    data["provider"],
                    prompt,
                    override_model=model,
                )
            else:
                response = await self.ai.process(prompt)
        except Exception as e:
            raise StageError(self.name, f"AI processing failed: {e}", e) from e
        response_time_ms = (time.monotonic() - started) * 1000

        content = self.prompts.process_ai_response(
            response.content, response.provider, response.model
        )
        logger.info(
            f"Generated {output_format.value} note with {response.provider}/{response.model} "
            f"in {response_time_ms:.0f}ms"
        )

        return ProcessingOutput(
            generated_content=content,
            provider=response.provider,
            model=response.model,
            metrics=ProcessingMetrics(
                response_time_ms=response_time_ms,
                token_count=response.token_count or estimate_tokens(content),
            ),
            fallback_chain=response.fallback_chain,
        )

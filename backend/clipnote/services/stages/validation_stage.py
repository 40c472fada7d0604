"""
Validation stage: check the URL, extract the video id, canonicalise.
"""

import logging
from typing import Any, Mapping

from clipnote.models.context import PipelineContext
from clipnote.models.schemas import ValidationOutput
from clipnote.services.stages.base import BaseStage, StageError
from clipnote.utils.youtube_utils import canonical_url, extract_video_id, is_youtube_url

logger = logging.getLogger(__name__)


def configuration_warnings(config: Mapping[str, Any]) -> list[str]:
    """Non-fatal setup problems visible in the run's config snapshot."""
    if not config:
        return []

    warnings = []
    if not config.get("has_api_keys"):
        warnings.append("No API keys configured")
    if not config.get("output_path"):
        warnings.append("No output path configured")
    return warnings


class ValidationStage(BaseStage):
    """Validates `url`; outputs the canonical `url` and `video_id`.

    Running it again on its own output yields the same output.
    """

    name = "validation"
    timeout = 5.0

    def can_execute(self, context: PipelineContext) -> bool:
        return bool(context.input.get("url"))

    async def execute(self, context: PipelineContext) -> ValidationOutput:
        url = context.input["url"]

        if not is_youtube_url(url):
            raise StageError(self.name, f"Invalid YouTube URL format: {url}")

        video_id = extract_video_id(url)
        if video_id is None:
            raise StageError(self.name, f"Could not extract video ID from URL: {url}")

        warnings = configuration_warnings(context.config)
        for warning in warnings:
            logger.warning(f"Validation: {warning}")

        return ValidationOutput(
            is_valid=True,
            errors=[],
            warnings=warnings,
            url=canonical_url(video_id),
            video_id=video_id,
        )

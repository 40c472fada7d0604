"""
Analysis prompt builder.

Prompts are assembled from Markdown templates in config/prompts/analysis:
a base template chosen by performance mode (`base_fast`, `base_balanced`,
`base_quality`) wrapped by a format template (`brief`,
`executive-summary`, `detailed-guide`). Placeholders use `{name}` and are
filled with plain string replacement, since templates contain literal
braces meant for the model.
"""

import logging
import re
from datetime import datetime

from clipnote.config import Settings, load_prompt
from clipnote.models.schemas import OutputFormat, PerformanceMode, VideoData
from clipnote.utils.youtube_utils import embed_url, extract_video_id

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 20000

PROCESSING_MODES = {
    PerformanceMode.FAST: "Fast Mode: transcript only",
    PerformanceMode.BALANCED: "Balanced Mode: transcript + primary visuals",
    PerformanceMode.QUALITY: "Quality Mode: full multimodal analysis (audio, visuals, slides)",
}


def fill_placeholders(template: str, values: dict[str, str]) -> str:
    for key, value in values.items():
        template = template.replace(f"{{{key}}}", value)
    return template


class AnalysisPromptService:
    """
    Builds analysis prompts for the processing stage.

    Example:
        prompts = AnalysisPromptService(settings)
        prompt = prompts.create_analysis_prompt(video, url, OutputFormat.BRIEF)
    """

    def __init__(self, settings: Settings):
        """
        Initialize service.

        Args:
            settings: Application settings (performance mode, prompt dirs)
        """
        self.settings = settings

    @property
    def performance_mode(self) -> PerformanceMode:
        try:
            return PerformanceMode(self.settings.performance_mode)
        except ValueError:
            return PerformanceMode.BALANCED

    def create_analysis_prompt(
        self,
        video_data: VideoData,
        url: str,
        output_format: OutputFormat = OutputFormat.DETAILED_GUIDE,
        custom_prompt: str | None = None,
        transcript: str | None = None,
    ) -> str:
        """
        Build the prompt for one video.

        A non-blank custom prompt replaces the templates entirely; its
        `__VIDEO_*__` style placeholders are filled in.

        Args:
            video_data: Video metadata
            url: Canonical video URL
            output_format: Requested note format
            custom_prompt: User template (optional)
            transcript: Transcript text appended to the prompt (optional)

        Returns:
            Prompt text
        """
        if custom_prompt and custom_prompt.strip():
            prompt = self.apply_custom_prompt(custom_prompt, video_data, url)
        else:
            prompt = self._from_templates(video_data, url, OutputFormat(output_format))

        if transcript:
            if len(transcript) > MAX_TRANSCRIPT_CHARS:
                logger.debug(f"Transcript truncated to {MAX_TRANSCRIPT_CHARS} characters")
            prompt += f"\n\nTRANSCRIPT:\n{transcript[:MAX_TRANSCRIPT_CHARS]}"

        logger.debug(f"Built {output_format} prompt ({len(prompt)} chars) for {url}")
        return prompt

    def apply_custom_prompt(self, custom_prompt: str, video_data: VideoData, url: str) -> str:
        video_id = extract_video_id(url)
        now = datetime.now()
        replacements = {
            "__VIDEO_TITLE__": video_data.title or "Unknown Video",
            "__VIDEO_DESCRIPTION__": video_data.description or "No description available",
            "__VIDEO_URL__": url,
            "__VIDEO_ID__": video_id or "unknown",
            "__EMBED_URL__": embed_url(video_id) if video_id else url,
            "__DATE__": now.strftime("%Y-%m-%d"),
            "__TIMESTAMP__": now.isoformat(),
        }
        for marker, value in replacements.items():
            custom_prompt = custom_prompt.replace(marker, value)
        return custom_prompt

    def process_ai_response(self, content: str, provider: str, model: str) -> str:
        """
        Put provider and model into generated front matter.

        Replaces the `__AI_PROVIDER__` / `__AI_MODEL__` markers the
        templates ask the model to copy, then makes sure the keys exist.
        """
        if not content:
            return content

        provider = provider or "unknown"
        model = model or "unknown"
        content = content.replace("__AI_PROVIDER__", provider).replace("__AI_MODEL__", model)
        content = self._ensure_front_matter_value(content, "ai_provider", provider)
        return self._ensure_front_matter_value(content, "ai_model", model)

    def _from_templates(self, video_data: VideoData, url: str, output_format: OutputFormat) -> str:
        mode = self.performance_mode
        video_id = extract_video_id(url)
        now = datetime.now()
        values = {
            "title": video_data.title,
            "url": url,
            "description": video_data.description or "No description available",
            "video_id": video_id or "unknown",
            "embed_url": embed_url(video_id) if video_id else url,
            "date": now.strftime("%Y-%m-%d"),
            "timestamp": now.isoformat(),
            "processing_mode": PROCESSING_MODES[mode],
        }

        base = fill_placeholders(load_prompt("analysis", f"base_{mode.value}", self.settings), values)
        template = load_prompt("analysis", output_format.value, self.settings)
        return fill_placeholders(template, {**values, "base": base})

    @staticmethod
    def _ensure_front_matter_value(content: str, key: str, value: str) -> str:
        pattern = re.compile(rf"^({key}\s*:\s*)(.*)$", re.IGNORECASE | re.MULTILINE)
        if pattern.search(content):
            return pattern.sub(lambda m: f'{m.group(1)}"{value}"', content, count=1)
        if content.startswith("---"):
            return re.sub(r"^---\s*\n", f'---\n{key}: "{value}"\n', content, count=1)
        return content

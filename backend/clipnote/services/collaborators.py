"""
Interfaces of the services the pipeline stages depend on.

Stages receive these through the service container, so tests can pass
in-memory fakes and deployments can swap implementations.
"""

from pathlib import Path
from typing import Protocol, runtime_checkable

from clipnote.models.schemas import OutputFormat, VideoData


class VideoDataError(Exception):
    """Raised when video metadata cannot be fetched."""


@runtime_checkable
class VideoMetadataSource(Protocol):
    """Looks up video metadata (and optionally a transcript) by video id."""

    async def get_video_data(self, video_id: str) -> VideoData:
        """
        Raises:
            VideoDataError: If the video is unknown or unreachable
        """
        ...

    async def get_transcript(self, video_id: str) -> str | None:
        """Transcript text, or None if the source has none."""
        ...


@runtime_checkable
class PromptBuilder(Protocol):
    """Turns video metadata into a provider prompt."""

    def create_analysis_prompt(
        self,
        video_data: VideoData,
        url: str,
        output_format: OutputFormat = OutputFormat.DETAILED_GUIDE,
        custom_prompt: str | None = None,
        transcript: str | None = None,
    ) -> str: ...

    def process_ai_response(self, content: str, provider: str, model: str) -> str:
        """Fill provider/model markers left in generated content."""
        ...


@runtime_checkable
class StorageBackend(Protocol):
    """Writes generated notes."""

    async def save_to_file(self, title: str, content: str, output_path: str) -> Path:
        """
        Write `content` as `{title}.md` under `output_path`.

        An existing file is never replaced; implementations pick another
        name instead.

        Returns:
            Path of the written file
        """
        ...

    def exists(self, relative_path: str) -> bool:
        """True if a note already exists at `relative_path`."""
        ...

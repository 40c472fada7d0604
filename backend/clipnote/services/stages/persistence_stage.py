"""
Persistence stage: write the note with YAML front matter.
"""

import asyncio
import logging
import re
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any

import yaml

from clipnote.models.context import PipelineContext
from clipnote.models.schemas import PersistenceOutput, VideoData
from clipnote.services.cache import ResponseCache
from clipnote.services.collaborators import StorageBackend
from clipnote.services.saver import MAX_FILENAME_LENGTH, sanitize_filename
from clipnote.services.stages.base import BaseStage, StageError
from clipnote.utils.youtube_utils import extract_video_id

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATH = "YouTube/Processed Videos"
MAX_VIDEO_TAGS = 5

# Leading front matter block of generated content
FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\n.*?\n---[ \t]*(?:\n|\Z)", re.DOTALL)


def build_tags(video_data: VideoData) -> list[str]:
    """youtube, video, up to 5 video tags, category; first occurrence wins."""
    tags = ["youtube", "video", *video_data.tags[:MAX_VIDEO_TAGS]]
    if video_data.category:
        tags.append(video_data.category)
    return list(dict.fromkeys(tags))


def build_front_matter(
    video_data: VideoData,
    url: str,
    provider: str | None = None,
    model: str | None = None,
    date: datetime | None = None,
) -> dict[str, Any]:
    front_matter: dict[str, Any] = {
        "title": video_data.title,
        "tags": build_tags(video_data),
        "youtube_url": url,
        "video_id": extract_video_id(url) or "",
    }
    if provider:
        front_matter["ai_provider"] = provider
    if model:
        front_matter["ai_model"] = model
    front_matter["date"] = (date or datetime.now()).isoformat(timespec="seconds")
    return front_matter


def format_note(front_matter: dict[str, Any], content: str) -> str:
    """
    Render the note file.

    A front matter block already present in `content` is replaced.
    """
    body = FRONT_MATTER_RE.sub("", content or "", count=1).lstrip("\n")
    header = yaml.safe_dump(front_matter, allow_unicode=True, sort_keys=False)
    return f"---\n{header}---\n\n{body or 'No content generated'}"


class PersistenceStage(BaseStage):
    """Saves `generated_content` through the storage collaborator.

    An existing note with the same name is never overwritten: the new one
    gets a timestamp suffix and the clash is listed in `conflicts`.
    """

    name = "persistence"
    timeout = 10.0

    def __init__(
        self,
        storage: StorageBackend,
        cache: ResponseCache | None = None,
        default_output_path: str = DEFAULT_OUTPUT_PATH,
    ):
        """
        Initialize stage.

        Args:
            storage: Storage collaborator
            cache: Shared response cache for `processed:{id}` (optional)
            default_output_path: Folder used when input has no `output_path`
        """
        self.storage = storage
        self.cache = cache
        self.default_output_path = default_output_path
        self._saves: dict[str, asyncio.Future] = {}

    def can_execute(self, context: PipelineContext) -> bool:
        return bool(context.input.get("generated_content") and context.input.get("video_data"))

    async def execute(self, context: PipelineContext) -> PersistenceOutput:
        data = context.input
        video_data = VideoData.model_validate(data["video_data"])
        output_path = data.get("output_path") or self.default_output_path
        target = f"{output_path}/{sanitize_filename(video_data.title)}.md"

        # A timed-out attempt cannot stop its write; the retry waits for it
        save = self._saves.get(target)
        if save is None:
            save = asyncio.ensure_future(self._save(video_data, output_path, data))
            self._saves[target] = save
            save.add_done_callback(partial(self._forget_save, target))
        else:
            logger.info(f"Waiting for unfinished save of {target}")

        output = await asyncio.shield(save)
        output.cache_updated = self._update_cache(extract_video_id(data.get("url", "")) or "", data)
        return output

    async def _save(
        self, video_data: VideoData, output_path: str, data: dict[str, Any]
    ) -> PersistenceOutput:
        stem = sanitize_filename(video_data.title)
        existing = f"{output_path}/{stem}.md"
        conflicts = []
        if self.storage.exists(existing):
            suffix = datetime.now().strftime("-%Y%m%d-%H%M%S")
            stem = stem[: MAX_FILENAME_LENGTH - len(suffix)] + suffix
            conflicts.append(f"File already exists: {existing}")
            logger.info(f"Note exists, saving as {stem}.md")

        front_matter = build_front_matter(
            video_data, data.get("url", ""), data.get("provider"), data.get("model")
        )
        content = format_note(front_matter, data["generated_content"])

        try:
            file_path = await self.storage.save_to_file(stem, content, output_path)
        except Exception as e:
            raise StageError(self.name, f"Failed to save file: {e}", e) from e

        if Path(file_path).stem != stem:
            # Storage found the name taken after the check above
            conflicts.append(f"File already exists: {output_path}/{stem}.md")
            logger.info(f"Name {stem}.md was taken, saved as {Path(file_path).name}")

        return PersistenceOutput(
            file_path=str(file_path),
            file_size=len(content.encode("utf-8")),
            cache_updated=False,
            conflicts=conflicts,
        )

    def _forget_save(self, target: str, save: asyncio.Future) -> None:
        self._saves.pop(target, None)
        if not save.cancelled():
            # Mark the error as retrieved when no attempt is left waiting
            save.exception()

    def _update_cache(self, video_id: str, data: dict[str, Any]) -> bool:
        if self.cache is None or not video_id:
            return False
        try:
            return self.cache.set(
                f"processed:{video_id}",
                {
                    "content": data["generated_content"],
                    "timestamp": datetime.now().isoformat(),
                    "provider": data.get("provider"),
                    "model": data.get("model"),
                },
            )
        except Exception as e:
            logger.warning(f"Failed to update cache for {video_id}: {e}")
            return False

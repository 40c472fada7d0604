"""
Enrichment stage: video metadata, optional transcript, thumbnail.
"""

import logging

from clipnote.models.context import PipelineContext
from clipnote.models.schemas import CacheStatus, EnrichmentOutput, VideoData
from clipnote.services.cache import ResponseCache
from clipnote.services.collaborators import VideoMetadataSource
from clipnote.services.stages.base import BaseStage, StageError
from clipnote.utils.youtube_utils import thumbnail_url

logger = logging.getLogger(__name__)

ENRICHMENT_CACHE_TTL = 30 * 60.0  # seconds


class EnrichmentStage(BaseStage):
    """
    Fetches video data for `video_id`.

    Metadata and transcript are cached separately (keys `video:{id}` and
    `transcript:{id}`) in a cache owned by this stage. A missing or failing
    transcript is only a warning.
    """

    name = "enrichment"
    timeout = 30.0

    def __init__(
        self,
        metadata_source: VideoMetadataSource,
        cache: ResponseCache | None = None,
        cache_ttl: float = ENRICHMENT_CACHE_TTL,
    ):
        """
        Initialize stage.

        Args:
            metadata_source: Video metadata collaborator
            cache: Stage cache (a private one is created if None)
            cache_ttl: Seconds cached metadata stays valid
        """
        self.metadata_source = metadata_source
        if cache is None:
            cache = ResponseCache(max_items=500, default_ttl=cache_ttl)
        self.cache = cache
        self.cache_ttl = cache_ttl

    def can_execute(self, context: PipelineContext) -> bool:
        return bool(context.input.get("video_id"))

    async def execute(self, context: PipelineContext) -> EnrichmentOutput:
        video_id = context.input["video_id"]

        video_data, video_hit = await self._video_data(video_id)
        transcript, transcript_hit = await self._transcript(video_id)

        if video_hit and transcript_hit:
            cache_status = CacheStatus.HIT
        elif video_hit or transcript_hit:
            cache_status = CacheStatus.PARTIAL
        else:
            cache_status = CacheStatus.MISS

        logger.debug(f"Enriched {video_id}: '{video_data.title}' (cache {cache_status.value})")
        return EnrichmentOutput(
            video_data=video_data,
            transcript=transcript,
            thumbnail=thumbnail_url(video_id),
            cache_status=cache_status,
        )

    async def cleanup(self) -> None:
        self.cache.clear()

    async def _video_data(self, video_id: str) -> tuple[VideoData, bool]:
        key = f"video:{video_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return VideoData.model_validate(cached), True

        try:
            video_data = await self.metadata_source.get_video_data(video_id)
        except Exception as e:
            raise StageError(self.name, f"Failed to fetch video data: {e}", e) from e

        self.cache.set(key, video_data.model_dump(mode="json"), ttl=self.cache_ttl)
        return video_data, False

    async def _transcript(self, video_id: str) -> tuple[str | None, bool]:
        key = f"transcript:{video_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached, True

        try:
            transcript = await self.metadata_source.get_transcript(video_id)
        except Exception as e:
            logger.warning(f"Transcript unavailable for {video_id}: {e}")
            return None, False

        if transcript:
            self.cache.set(key, transcript, ttl=self.cache_ttl)
        return transcript, False

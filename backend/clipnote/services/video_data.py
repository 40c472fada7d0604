"""
YouTube metadata service.

Fetches title, channel and thumbnail through oEmbed. The official endpoint
and noembed.com are raced; the first usable answer wins. Transcripts come
from the public timedtext endpoint when the video has captions.
"""

import logging
import re
import xml.etree.ElementTree as ET
from html import unescape

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from clipnote.config import Settings
from clipnote.models.schemas import VideoData
from clipnote.services.ai.performance import resolve_timeouts
from clipnote.services.collaborators import VideoDataError
from clipnote.services.resilience import (
    OperationTimeoutError,
    RaceError,
    race_endpoints,
)

logger = logging.getLogger(__name__)

YOUTUBE_OEMBED_URL = "https://www.youtube.com/oembed"
NOEMBED_URL = "https://noembed.com/embed"
TIMEDTEXT_URL = "https://video.google.com/timedtext"

VIDEO_ID_PATTERN = re.compile(r"^[\w-]{11}$")


def _is_transient(error: BaseException) -> bool:
    """Timeouts and connection failures on every endpoint."""
    if isinstance(error, OperationTimeoutError):
        return True
    if isinstance(error, RaceError):
        return all(isinstance(e, httpx.TransportError) for _, e in error.errors)
    return False


# Retry configuration for transient errors
RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


def _reject_error_payload(response: httpx.Response) -> None:
    """noembed answers unknown videos with 200 and an `error` field."""
    data = response.json()
    if not isinstance(data, dict) or "error" in data or "title" not in data:
        raise ValueError(f"Unusable oEmbed payload from {response.url}")


class YouTubeMetadataService:
    """
    Video metadata via oEmbed.

    Example:
        service = YouTubeMetadataService(settings, http_client)
        video = await service.get_video_data("dQw4w9WgXcQ")
        print(video.title, video.channel)
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        """
        Initialize service.

        Args:
            settings: Application settings (metadata timeout)
            http_client: Shared HTTP client (a private one is created if None)
        """
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=None)

    @property
    def timeout(self) -> float:
        """Metadata request timeout in seconds."""
        return resolve_timeouts(self.settings).metadata_timeout / 1000

    async def get_video_data(self, video_id: str) -> VideoData:
        """
        Fetch metadata for a video.

        Args:
            video_id: 11-character YouTube id

        Returns:
            VideoData (description is empty, oEmbed does not expose it)

        Raises:
            VideoDataError: For invalid, missing or forbidden videos
        """
        if not VIDEO_ID_PATTERN.match(video_id or ""):
            raise VideoDataError("Invalid YouTube video ID")

        try:
            data = await self._fetch_oembed(video_id)
        except RaceError as e:
            status = self._official_status(e)
            if status == 401:
                # Embedding disabled: the video exists but oEmbed will not describe it
                logger.warning(f"oEmbed unauthorized for {video_id}, using fallback data")
                return VideoData(title=f"YouTube Video ({video_id})")
            raise VideoDataError(self._status_message(status, video_id, e)) from e
        except OperationTimeoutError as e:
            raise VideoDataError(
                f"Timed out fetching metadata for {video_id} after {self.timeout:.0f}s"
            ) from e

        logger.debug(f"Fetched metadata for {video_id}: {data.get('title')}")
        return VideoData(
            title=data.get("title") or f"YouTube Video ({video_id})",
            channel=data.get("author_name"),
            thumbnail=data.get("thumbnail_url"),
        )

    async def get_transcript(self, video_id: str) -> str | None:
        """
        Fetch English captions as plain text.

        Returns:
            Transcript, or None if the video has no captions

        Raises:
            VideoDataError: If the caption endpoint fails
        """
        try:
            response = await self.http_client.get(
                TIMEDTEXT_URL,
                params={"lang": "en", "v": video_id},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise VideoDataError(f"Failed to fetch transcript for {video_id}: {e}") from e

        if not response.text.strip():
            return None

        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise VideoDataError(f"Invalid transcript for {video_id}: {e}") from e

        lines = [unescape(node.text or "").strip() for node in root.iter("text")]
        transcript = " ".join(line for line in lines if line)
        return transcript or None

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    @RETRY_DECORATOR
    async def _fetch_oembed(self, video_id: str) -> dict:
        watch_url = f"https://www.youtube.com/watch?v={video_id}"
        urls = [
            f"{YOUTUBE_OEMBED_URL}?url={watch_url}&format=json",
            f"{NOEMBED_URL}?url={watch_url}",
        ]
        response = await race_endpoints(
            self.http_client,
            urls,
            timeout=self.timeout,
            validate=_reject_error_payload,
        )
        return response.json()

    @staticmethod
    def _official_status(error: RaceError) -> int | None:
        """HTTP status from youtube.com, which decides how a failure reads."""
        for label, cause in error.errors:
            if label.startswith(YOUTUBE_OEMBED_URL) and isinstance(cause, httpx.HTTPStatusError):
                return cause.response.status_code
        return None

    @staticmethod
    def _status_message(status: int | None, video_id: str, error: Exception) -> str:
        if status == 400:
            return "Invalid YouTube video ID"
        if status == 404:
            return (
                f"YouTube video not found: {video_id}. "
                "The video may be private, deleted, or the ID is incorrect."
            )
        if status == 403:
            return "Access denied to YouTube video"
        return f"Failed to fetch video metadata: {error}"

"""
Shared utilities.

Modules:
    youtube_utils: URL detection, video id extraction, derived URLs
    token_utils: Token estimation for responses without usage data
"""

from clipnote.utils.token_utils import estimate_tokens
from clipnote.utils.youtube_utils import (
    canonical_url,
    embed_url,
    extract_url,
    extract_video_id,
    is_youtube_url,
    thumbnail_url,
)

__all__ = [
    # youtube_utils
    "canonical_url",
    "embed_url",
    "extract_url",
    "extract_video_id",
    "is_youtube_url",
    "thumbnail_url",
    # token_utils
    "estimate_tokens",
]

"""
YouTube URL utilities.

Recognises the supported URL forms (watch, youtu.be, embed, v, shorts),
extracts 11-character video ids and builds the derived URLs used in notes.

Example:
    from clipnote.utils.youtube_utils import extract_url, extract_video_id

    url = extract_url("look: https://youtu.be/dQw4w9WgXcQ")
    video_id = extract_video_id(url)  # "dQw4w9WgXcQ"
    canonical_url(video_id)           # "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
"""

import re

YOUTUBE_URL_PATTERNS = [
    re.compile(r"^https?://(www\.)?youtube\.com/watch\?v=[\w-]+"),
    re.compile(r"^https?://youtu\.be/[\w-]+"),
    re.compile(r"^https?://(www\.)?youtube\.com/embed/[\w-]+"),
    re.compile(r"^https?://(www\.)?youtube\.com/v/[\w-]+"),
    re.compile(r"^https?://(www\.)?youtube\.com/shorts/[\w-]+"),
]

VIDEO_ID_PATTERNS = [
    re.compile(r"(?:[?&]v=|youtu\.be/|/embed/|/v/|/shorts/)([\w-]{11})"),
    re.compile(r"^([\w-]{11})$"),
]

EMBEDDED_URL = re.compile(r"(https?://[^\s]+)")


def is_youtube_url(text: str | None) -> bool:
    """True if `text` starts with a supported YouTube URL form."""
    return bool(text) and any(pattern.match(text) for pattern in YOUTUBE_URL_PATTERNS)


def extract_url(raw_text: str | None) -> str | None:
    """
    First YouTube URL in free text.

    The whole (trimmed) text is tried first, then the first URL-looking
    token embedded in it.

    Args:
        raw_text: Clipboard text, protocol payload, file contents, ...

    Returns:
        URL, or None if the text holds no YouTube URL

    Example:
        >>> extract_url("watch this https://youtu.be/dQw4w9WgXcQ later")
        'https://youtu.be/dQw4w9WgXcQ'
    """
    if not raw_text:
        return None

    text = raw_text.strip()
    if is_youtube_url(text):
        return text

    match = EMBEDDED_URL.search(text)
    if match and is_youtube_url(match.group(1)):
        return match.group(1)
    return None


def extract_video_id(url: str | None) -> str | None:
    """
    11-character video id from a URL (or a bare id).

    Example:
        >>> extract_video_id("https://www.youtube.com/shorts/dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
    """
    if not url:
        return None
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def canonical_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def embed_url(video_id: str) -> str:
    return f"https://www.youtube-nocookie.com/embed/{video_id}"


def thumbnail_url(video_id: str) -> str:
    return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"

"""clipnote: video links to structured Markdown notes."""

__version__ = "0.1.0"

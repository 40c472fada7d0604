"""
File saver service.

Writes generated notes as Markdown files under the vault directory.
"""

import asyncio
import logging
import re
from pathlib import Path

from clipnote.config import Settings

logger = logging.getLogger(__name__)

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
MAX_FILENAME_LENGTH = 100
MAX_NAME_ATTEMPTS = 100


def sanitize_filename(title: str) -> str:
    """
    Make a note title safe to use as a file name.

    Strips `<>:"/\\|?*`, turns whitespace runs into "-" and truncates.

    Example:
        >>> sanitize_filename('What is "AI"? Part 1/2')
        'What-is-AI-Part-12'
    """
    cleaned = INVALID_FILENAME_CHARS.sub("", title)
    cleaned = re.sub(r"\s+", "-", cleaned.strip())
    return cleaned[:MAX_FILENAME_LENGTH] or "untitled"


class FileSaver:
    """
    Note storage in a vault directory.

    Example:
        saver = FileSaver(settings)
        path = await saver.save_to_file("My Video", "# Notes", "YouTube/Processed Videos")
        print(path)  # vault/YouTube/Processed Videos/My-Video.md
    """

    def __init__(self, settings: Settings):
        """
        Initialize file saver.

        Args:
            settings: Application settings (vault_root)
        """
        self.settings = settings
        self.vault_root = Path(settings.vault_root)

    async def save_to_file(self, title: str, content: str, output_path: str) -> Path:
        """
        Write a note without replacing an existing file.

        If `{title}.md` is taken, `{title}-2.md`, `{title}-3.md`, ... are
        tried. A taken name whose file already holds exactly `content` is
        returned as is, so a repeated save does not leave a second copy.

        Args:
            title: Note title (sanitised into the file name)
            content: Markdown content
            output_path: Folder relative to the vault root

        Returns:
            Path to the file holding the note

        Raises:
            OSError: If the file cannot be written
        """
        directory = self._resolve(output_path)
        stem = sanitize_filename(title)

        file_path = await asyncio.to_thread(self._create, directory, stem, content)

        logger.info(f"Saved note: {file_path}")
        return file_path

    def exists(self, relative_path: str) -> bool:
        """True if `relative_path` (relative to the vault root) exists."""
        return self._resolve(relative_path).exists()

    def _resolve(self, relative_path: str) -> Path:
        path = (self.vault_root / relative_path).resolve()
        root = self.vault_root.resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"Path escapes the vault: {relative_path}")
        return path

    @staticmethod
    def _create(directory: Path, stem: str, content: str) -> Path:
        directory.mkdir(parents=True, exist_ok=True)

        for counter in range(1, MAX_NAME_ATTEMPTS + 1):
            suffix = f"-{counter}" if counter > 1 else ""
            file_path = directory / f"{stem[: MAX_FILENAME_LENGTH - len(suffix)]}{suffix}.md"
            try:
                # "x" fails instead of truncating a note created meanwhile
                with open(file_path, "x", encoding="utf-8") as f:
                    f.write(content)
            except FileExistsError:
                if file_path.read_text(encoding="utf-8") == content:
                    logger.info(f"Note already saved with same content: {file_path}")
                    return file_path
                continue
            return file_path

        raise FileExistsError(f"No free file name for {stem}.md in {directory}")

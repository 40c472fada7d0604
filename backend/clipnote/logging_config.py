"""
Logging configuration for the application.

Log levels come from settings (environment variables):
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: simple or structured (default: structured)
- LOG_LEVEL_<AREA>: Per-area override, one of PIPELINE, STAGES, AI,
  PROVIDERS, RESILIENCE, CACHE (e.g., LOG_LEVEL_RESILIENCE=DEBUG)

Structured lines carry the id of the pipeline run that emitted them, so
interleaved runs can be told apart:

    2025-01-12 10:04:31 | INFO     | run 3f2a9c1e | stages.enrichment_stage  | ...
"""

import logging
import sys
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clipnote.config import Settings


# Settings field suffix -> logger subtree
AREA_LOGGERS = {
    "pipeline": "clipnote.services.pipeline",
    "stages": "clipnote.services.stages",
    "ai": "clipnote.services.ai",
    "providers": "clipnote.services.ai_clients",
    "resilience": "clipnote.services.resilience",
    "cache": "clipnote.services.cache",
}

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)


def bind_run_id(pipeline_id: str) -> Token:
    """
    Tag log records from the current task with a pipeline run id.

    Returns:
        Token for reset_run_id()
    """
    return _run_id.set(pipeline_id)


def reset_run_id(token: Token) -> None:
    _run_id.reset(token)


def current_run_id() -> str | None:
    return _run_id.get()


def _short_name(name: str) -> str:
    for prefix, replacement in (
        ("clipnote.services.", ""),
        ("clipnote.api.", "api."),
        ("clipnote.", ""),
    ):
        if name.startswith(prefix):
            return replacement + name[len(prefix):]
    return name


class StructuredFormatter(logging.Formatter):
    """
    Pipe-separated formatter.

    Format: timestamp | level | run | logger | message
    """

    def format(self, record: logging.LogRecord) -> str:
        run_id = current_run_id()
        run = f"run {run_id[:8]}" if run_id else "-"

        message = (
            f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} | "
            f"{record.levelname:8} | "
            f"{run:12} | "
            f"{_short_name(record.name):24} | "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(settings: "Settings") -> None:
    """
    Configure root handler, formatter and per-area levels.

    Args:
        settings: Application settings with log configuration
    """
    root_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "structured":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(root_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    # Replace handlers so repeated setup does not duplicate output
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for area, logger_name in AREA_LOGGERS.items():
        level_name = getattr(settings, f"log_level_{area}", None)
        if level_name:
            logging.getLogger(logger_name).setLevel(
                getattr(logging, level_name.upper(), root_level)
            )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""
Ingestion stage: find the video URL in raw input.
"""

import logging
from datetime import datetime

from clipnote.models.context import PipelineContext
from clipnote.models.schemas import IngestionOutput, SourceChannel
from clipnote.services.stages.base import BaseStage, StageError
from clipnote.utils.youtube_utils import extract_url

logger = logging.getLogger(__name__)


class IngestionStage(BaseStage):
    """Detects the source URL.

    Reads `raw_text`, `source`, `source_ref`; outputs `url`, `source`,
    `source_ref`, `ingested_at`.
    """

    name = "ingestion"
    timeout = 5.0

    def can_execute(self, context: PipelineContext) -> bool:
        return bool(context.input.get("raw_text") or context.input.get("source"))

    async def execute(self, context: PipelineContext) -> IngestionOutput:
        url = extract_url(context.input.get("raw_text"))
        if url is None:
            raise StageError(self.name, "No valid URL found in input")

        source = context.input.get("source") or context.metadata.source or SourceChannel.MANUAL
        logger.debug(f"Ingested {url} from {source}")

        return IngestionOutput(
            url=url,
            source=source,
            source_ref=context.input.get("source_ref") or context.metadata.source_ref,
            ingested_at=datetime.now(),
        )

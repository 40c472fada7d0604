"""
HTTP API routes for the note pipeline.

Provides endpoints for:
- Running the full pipeline on a piece of text or a URL
"""

import logging

from fastapi import APIRouter, Request

from clipnote.models.schemas import PipelineInput
from clipnote.services.container import ServiceContainer
from clipnote.services.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["pipeline"])


def get_container(request: Request) -> ServiceContainer:
    """Service container built by the application lifespan."""
    return request.app.state.container


def get_pipeline(request: Request) -> PipelineOrchestrator:
    """Pipeline orchestrator built by the application lifespan."""
    return request.app.state.pipeline


@router.post("/process")
async def process(payload: PipelineInput, request: Request) -> dict:
    """
    Run the pipeline.

    Stage failures do not produce an error status: the returned result has
    `success: false` and the failing stage in `final_context.errors`.

    Args:
        payload: PipelineInput (source, raw_text, optional overrides)

    Returns:
        PipelineResult as JSON
    """
    pipeline = get_pipeline(request)
    result = await pipeline.execute(payload)

    if not result.success:
        failed = [f"{e.stage}: {e.error}" for e in result.errors]
        logger.info(f"Pipeline {result.final_context.metadata.pipeline_id} failed: {failed}")

    return result.to_dict()

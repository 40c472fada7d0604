"""
FastAPI application for the video note pipeline.

Provides the pipeline entry point, provider catalogs and diagnostics.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipnote.api import diagnostics_routes, models_routes, routes
from clipnote.config import Settings, get_settings
from clipnote.logging_config import setup_logging
from clipnote.services.ai_clients import AIProvider
from clipnote.services.container import build_container
from clipnote.services.pipeline import LoggingMiddleware, create_pipeline

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    providers: list[AIProvider] | None = None,
) -> FastAPI:
    """
    Create the application.

    Args:
        settings: Application settings (cached settings if None)
        providers: Providers to use instead of the ones built from settings

    Returns:
        FastAPI app whose lifespan owns the service container
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Builds the service container and pipeline; closes them on shutdown.
        """
        logger.info("Starting clipnote API")
        logger.info(f"Log level: {settings.log_level}")
        logger.info(f"Vault: {settings.vault_root} / {settings.output_path}")

        container = await build_container(settings, providers=providers)
        pipeline = create_pipeline(container)
        pipeline.use(LoggingMiddleware())

        app.state.container = container
        app.state.pipeline = pipeline
        logger.info(f"AI providers: {container.manager.get_provider_names() or 'none'}")

        yield

        logger.info("Shutting down clipnote API")
        await pipeline.cleanup()
        await container.close()

    app = FastAPI(
        title="clipnote API",
        description="Turns video links into structured Markdown notes",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware for browser extensions and the desktop helper
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(routes.router)
    app.include_router(models_routes.router)
    app.include_router(diagnostics_routes.router)

    @app.get("/health")
    async def health_check() -> dict:
        """
        Health check endpoint.

        Returns:
            Status plus whether any provider circuit admits calls
        """
        container = app.state.container
        ai = container.ai
        return {
            "status": "ok",
            "providers": container.manager.get_provider_names(),
            "ai_available": ai is not None and ai.has_available_providers(),
        }

    return app


# Configure logging before anything else
setup_logging(get_settings())
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clipnote.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )

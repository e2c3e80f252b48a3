"""FastAPI application factory for Shelf Agent."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from shelf_agent import __version__
from shelf_agent.db.engine import init_db
from shelf_agent.pipeline.factory import PipelineComponents, build_pipeline

logger = logging.getLogger(__name__)

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def create_app(components: PipelineComponents | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        components: Prebuilt pipeline components. When omitted they are
            built from configuration at startup and the database tables
            are created.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if components is None:
            init_db()
            app.state.components = build_pipeline()
        else:
            app.state.components = components
        tracker = app.state.components.tracker
        tracker.start_sweeper()
        logger.info("Shelf Agent started")
        try:
            yield
        finally:
            await tracker.stop_sweeper()
            logger.info("Shelf Agent stopped")

    app = FastAPI(
        title="Shelf Agent",
        description="Turns shelf photos into catalogued collectables",
        version=__version__,
        lifespan=lifespan,
    )

    # Include routers (import here to avoid circular imports)
    from shelf_agent.web.routes import collectables, review, vision

    app.include_router(vision.router)
    app.include_router(review.router)
    app.include_router(collectables.router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    return app


# Application instance
app = create_app()

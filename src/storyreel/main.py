"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storyreel import __version__
from storyreel.api.routes import assets, health, stories, tasks
from storyreel.config import settings
from storyreel.db.session import init_db
from storyreel.logging import get_logger, setup_logging
from storyreel.services.repository import StoryRepository, create_story_repository
from storyreel.utils.async_utils import run_blocking

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Prepare the store and the repository; close the pipeline client on shutdown."""
    logger.info("application_starting", version=__version__, pipeline=settings.pipeline_client)

    try:
        await run_blocking(init_db)
        logger.info("database_ready", url=settings.database_url)
    except Exception as e:
        # Readiness reports the database as down
        logger.error("database_init_failed", error=str(e))

    if app.state.repository is None:
        app.state.repository = create_story_repository()
    repository: StoryRepository = app.state.repository

    if settings.seed_demo_story:
        seeded = await repository.ensure_seed_data()
        if not seeded.ok:
            logger.warning("seed_story_failed", error=seeded.error)

    yield

    logger.info("application_shutting_down")
    await repository.close()


def create_app(repository: StoryRepository | None = None) -> FastAPI:
    """Build the API app. A repository passed in is used instead of one from settings."""
    application = FastAPI(
        title="storyreel",
        description="Turns a synopsis into a storyboard, shot videos and one exported short video",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.repository = repository

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health.router)
    for router in (stories.router, tasks.router, assets.router):
        application.include_router(router, prefix="/api/v1")

    @application.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {"name": "storyreel", "version": __version__, "docs": "/docs"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storyreel.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )

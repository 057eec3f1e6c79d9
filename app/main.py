from contextlib import asynccontextmanager
import logging

import httpx
from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import settings, setup_logging
from app.database import close_db, get_session_factory, init_db
from app.dependencies import get_service_locator
from app.services.channel_listing_service import ChannelListingService
from app.services.fetch_coordinator import get_refresh_coordinator, reset_refresh_coordinator
from app.services.guide_cache_service import GuideCache
from app.services.scheduler_service import prune_scheduler

from app.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)


def register_services(client: httpx.AsyncClient) -> None:
    """Build the long-lived services on top of the initialized database"""
    session_factory = get_session_factory()
    guide_cache = GuideCache(session_factory, client, coordinator=get_refresh_coordinator())

    locator = get_service_locator()
    locator.register_singleton(httpx.AsyncClient, client)
    locator.register_singleton(GuideCache, guide_cache)
    locator.register_singleton(
        ChannelListingService,
        ChannelListingService(client, guide_cache, session_factory),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting Playlist Guide Service...")

    client = httpx.AsyncClient(
        timeout=settings.http_timeout_sec,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    )
    try:
        logger.info("Initializing database...")
        await init_db()

        register_services(client)

        logger.info("Starting scheduler...")
        prune_scheduler.start()

        logger.info("Playlist Guide Service started successfully")
    except Exception as e:
        logger.error(f"Failed to start Playlist Guide Service: {e}", exc_info=True)
        await client.aclose()
        raise

    yield

    logger.info("Shutting down Playlist Guide Service...")

    try:
        prune_scheduler.shutdown()
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    await client.aclose()
    await close_db()
    get_service_locator().reset()
    reset_refresh_coordinator()

    logger.info("Playlist Guide Service stopped")


app = FastAPI(
    title="Playlist Guide Service",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with details"""
    logger.error(f"Validation error for {request.method} {request.url.path}")
    logger.error(f"Validation details: {exc.errors()}")

    # Create a properly serializable error response
    errors = []
    for error in exc.errors():
        error_dict = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100]
        }
        errors.append(error_dict)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors
        }
    )

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from clickpipe_app.config import settings
from clickpipe_app.database.connection import engine, Base, SessionLocal
from clickpipe_app.api import redirect
from clickpipe_app.api.v1 import analytics, shortener
from clickpipe_app.dependencies import get_cache, get_consumer, get_producer, get_queue
from clickpipe_app.errors import ClickpipeError
from clickpipe_app.logging_config import setup_logging
from clickpipe_app.services.link_purger import ExpiredLinkPurger

# Import models to ensure they're registered with Base
from clickpipe_app.models import Link  # noqa: F401


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)

    # Create database tables
    Base.metadata.create_all(bind=engine)

    # Opening the channel is fatal on failure (ChannelUnavailable propagates)
    consumer = get_consumer()
    consumer.start()

    purger = ExpiredLinkPurger(SessionLocal, settings, cache=get_cache())
    purger.start()
    app.state.link_purger = purger

    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    try:
        yield
    finally:
        await purger.stop()
        await consumer.stop()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Short link resolution with click analytics",
    debug=settings.debug,
    lifespan=lifespan,
)


@app.exception_handler(ClickpipeError)
async def clickpipe_error_handler(request: Request, exc: ClickpipeError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Service health, including the ingestion pipeline"""
    consumer = get_consumer()
    healthy = consumer.healthy and consumer.running
    body = {
        "status": "healthy" if healthy else "degraded",
        "environment": settings.environment,
        "queue_length": await get_queue().get_queue_length(),
        "producer": get_producer().stats(),
        "consumer": consumer.stats(),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


######## Include routers
app.include_router(shortener.router, prefix="/api/v1")
app.include_router(analytics.router, prefix="/api/v1")
# Catch-all /{key} must come last
app.include_router(redirect.router)

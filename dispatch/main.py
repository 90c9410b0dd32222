"""
FastAPI application with New Relic APM, CORS, lifespan, error mapping and all routers.
"""
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dispatch.config import get_settings
from dispatch.database import engine
from dispatch.dependencies import get_notifier
from dispatch.exceptions import DispatchError
from dispatch.redis_client import get_redis, close_redis
from dispatch.routers import bookings, providers, shared_rides

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    await get_redis()          # warm up connection pool
    yield
    notifier = get_notifier()
    if notifier.pending:
        logger.info("Draining %d pending notification(s)", notifier.pending)
    await notifier.drain()
    await close_redis()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Multi-service dispatch core: shared-ride formation, provider matching and booking lifecycle",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors -> HTTP
@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error_code, request.url, exc.message)
    else:
        logger.info("%s on %s: %s", exc.error_code, request.url, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Liveness (no auth), with the notification backlog
@app.get("/health", tags=["Health"])
async def health():
    return {
        "status": "ok",
        "service": settings.app_name,
        "env": settings.env,
        "pending_notifications": get_notifier().pending,
    }


# Register routers
app.include_router(bookings.router)
app.include_router(shared_rides.router)
app.include_router(providers.router)

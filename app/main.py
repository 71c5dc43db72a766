"""
FastAPI application with New Relic APM, CORS, lifespan (activation scheduler) and all routers.
"""
import logging
import os

from app.config import get_settings

settings = get_settings()

# New Relic must be initialized BEFORE any other imports that it instruments.
if settings.new_relic_license_key:
    os.environ.setdefault("NEW_RELIC_LICENSE_KEY", settings.new_relic_license_key)
    os.environ.setdefault("NEW_RELIC_APP_NAME", settings.new_relic_app_name)
    import newrelic.agent
    newrelic.agent.initialize()

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.database import AsyncSessionLocal
from app.redis_client import get_redis, close_redis
from app.routers import admin, drivers, rides
from app.services.activation import ActivationScheduler
from app.services.exceptions import (
    InsufficientWalletBalance,
    NotFoundError,
    NotOwnerError,
    ScheduledRideError,
    ValidationError,
    WrongStateError,
)
from app.services.notifications import drain_pending, get_notifier

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    await get_redis()          # warm up connection pool

    scheduler = ActivationScheduler(AsyncSessionLocal, get_notifier(), settings)
    app.state.activation_scheduler = scheduler
    if settings.activation_enabled:
        scheduler.start()
    yield
    await scheduler.stop()
    await drain_pending()
    await close_redis()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Prepaid scheduled rides: booking, activation and cancellation",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors → HTTP
ERROR_STATUS: dict[type, int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    InsufficientWalletBalance: status.HTTP_402_PAYMENT_REQUIRED,
    NotOwnerError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    WrongStateError: status.HTTP_409_CONFLICT,
}


@app.exception_handler(ScheduledRideError)
async def scheduled_ride_error_handler(request: Request, exc: ScheduledRideError):
    code = next(
        (c for err, c in ERROR_STATUS.items() if isinstance(exc, err)),
        status.HTTP_400_BAD_REQUEST,
    )
    return JSONResponse(status_code=code, content={"detail": exc.message})


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Register routers
app.include_router(rides.router)
app.include_router(drivers.router)
app.include_router(admin.router)

"""
Seat Hold API - Main Application Entry Point

The seat-claim core of a movie ticket booking service:
- All-or-nothing seat holds with a per-show critical section and
  optimistic version check, so no seat is ever sold twice
- Reservation lifecycle (pending -> confirmed | cancelled) with
  idempotent payment confirmation and hold expiry
- Live seat availability over Server-Sent Events
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from seathold.core.config import get_settings
from seathold.core.exceptions import BookingCoreError
from seathold.core.logging import setup_logging, get_logger
from seathold.core.metrics import metrics_endpoint
from seathold.api.router import api_router
from seathold.api.middleware import RequestLoggingMiddleware
from seathold.db.session import engine
from seathold.infrastructure.redis_client import get_redis, close_redis
from seathold.services.cache_service import get_cache_stats
from seathold.services.expiry_worker import expiry_worker
from seathold.services.fulfillment import dispatcher
from seathold.services.notifier import notifier
from seathold.services.reservation_service import expiry_scheduler

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    # Initialize Redis connection
    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without snapshot cache and distributed lock")

    if settings.EXPIRY_SWEEPER_ENABLED:
        await expiry_worker.start()

    yield

    # Cleanup
    await expiry_worker.stop()
    await expiry_scheduler.shutdown()
    await dispatcher.shutdown()
    await close_redis()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Seat holds, reservations and live seat availability for movie shows",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.exception_handler(BookingCoreError)
async def booking_core_error_handler(request: Request, exc: BookingCoreError):
    if exc.status_code >= 500:
        logger.error("booking_core_error", error=exc.message, error_type=type(exc).__name__)
    else:
        logger.warning("booking_core_error", error=exc.message, error_type=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
        "expiry_worker": "running" if expiry_worker.running else "stopped",
        "pending_expiry_checks": expiry_scheduler.pending_count(),
        "seat_stream_subscriptions": notifier.active_subscriptions(),
    }


@app.get("/metrics", tags=["Health"])
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }

"""
Slot Hold Booking API - Main Application Entry Point

Serves booking sessions that hold a time slot while the user fills in
their details:
- Server-authoritative slot holds with a 10 minute TTL
- Countdown and tab-visibility revalidation per session
- Explicit-only release (cancel, confirm, or server expiry)
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slothold.core.config import get_settings
from slothold.core.logging import setup_logging, get_logger
from slothold.core.metrics import metrics_endpoint
from slothold.api.router import api_router
from slothold.api.middleware import RequestLoggingMiddleware
from slothold.api.dependencies import get_system_guard
from slothold.infrastructure.redis_client import get_redis, close_redis
from slothold.infrastructure.rpc_client import get_rpc_client, close_rpc_client
from slothold.services.cache_service import get_cache_stats
from slothold.services.health_service import BookingSystemGuard
from slothold.services.rpc_backend import RpcBookingBackend
from slothold.services.session_registry import BookingSessionRegistry

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        backend=settings.BOOKING_BACKEND_URL,
    )

    client = get_rpc_client()
    app.state.catalog_backend = RpcBookingBackend(client)
    app.state.session_registry = BookingSessionRegistry(
        lambda session_id: RpcBookingBackend(client, session_id=session_id),
    )
    app.state.system_guard = BookingSystemGuard(client, cache_seconds=settings.HEALTH_CHECK_CACHE_SECONDS)

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without slot cache")

    yield

    # Sessions are dropped without releasing holds; the server TTL reclaims them
    app.state.session_registry.close_all()
    await close_rpc_client()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Booking sessions with server-authoritative time slot holds",
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

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(guard: BookingSystemGuard = Depends(get_system_guard)):
    """Health check endpoint for Docker and load balancers."""
    booking_system = await guard.check()
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy" if booking_system.is_healthy else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "booking_system": booking_system.model_dump(),
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }

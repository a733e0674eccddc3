"""Main application entry point."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import redis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from storefront.config import (
    API_VERSION,
    PAYPAL_TIMEOUT_SECONDS,
    PROFILING_ENABLED,
    RATE_LIMIT_PER_MINUTE_IP,
    RATE_LIMIT_PER_MINUTE_USER,
    REDIS_URL,
    validate_config,
)
from storefront.database import init_db, engine
from storefront.errors import StoreError
from storefront.monitoring import init_profiling
from storefront.logging_config import setup_logging
from storefront.rate_limiter import RedisRateLimiter
from storefront.routers import admin, cart, orders, payments, products

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)


# Sync client shared by the rate limiter and the cart count cache
redis_client = redis.from_url(REDIS_URL, decode_responses=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting application...")

    validate_config()

    # Initialize database
    init_db()

    # Instrument and attach Redis client
    RedisInstrumentor().instrument(redis_client=redis_client)
    app.state.redis_client = redis_client
    logger.info("Redis client initialized")

    # HTTP client for PayPal and the media host
    http_client = httpx.AsyncClient(timeout=PAYPAL_TIMEOUT_SECONDS)
    HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    logger.info("HTTP client initialized")

    if PROFILING_ENABLED:
        init_profiling()

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await http_client.aclose()
    redis_client.close()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Grocery Storefront Service",
    version=API_VERSION,
    lifespan=lifespan
)

# Redis-backed dual-tier rate limiting
app.add_middleware(
    RedisRateLimiter,
    requests_per_minute_ip=RATE_LIMIT_PER_MINUTE_IP,
    requests_per_minute_user=RATE_LIMIT_PER_MINUTE_USER
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def jsonable_errors(exc: RequestValidationError):
    """Field errors without the raw input or exception context."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("Request failed", extra={
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error": exc.message
        })
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("Request validation failed", extra={
        "path": request.url.path,
        "error_count": len(exc.errors())
    })
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_errors(exc)}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


# Instrument FastAPI and SQLAlchemy
FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)

# Health check endpoint
@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}

# Include routers
app.include_router(products.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(admin.router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""
Main FastAPI application module for StoreBot.

This module initializes the FastAPI application, configures middleware,
sets up health check endpoints, and registers the webhook routers.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .db import SessionLocal, init_db
from .routers import whatsapp
from .utils.logging import correlation_id_var, get_logger, setup_logging

# Set up structured logging
setup_logging(level="DEBUG" if settings.debug else "INFO")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Creates missing tables on startup.

    Args:
        app: The FastAPI application instance

    Yields:
        None
    """
    logger.info("Application starting up", extra={"environment": settings.environment})
    await init_db()

    yield

    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    description="WhatsApp storefront bot with balance purchases, Pix top-ups and a merchant admin bot",
    version="1.0.0",
    lifespan=lifespan,
)

# Attach rate limiter to app
app.state.limiter = whatsapp.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next) -> Response:
    """
    Correlation ID middleware.

    Reuses the caller's X-Correlation-ID or generates one, exposes it to the
    log formatter for the duration of the request and echoes it back.

    Args:
        request: The incoming HTTP request
        call_next: The next middleware or route handler

    Returns:
        The HTTP response with X-Correlation-ID header
    """
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    request.state.correlation_id = correlation_id
    token = correlation_id_var.set(correlation_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token)

    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next) -> Response:
    """
    Request logging middleware.

    Logs method, path, status and processing time for every request.
    """
    start_time = time.time()
    correlation_id = getattr(request.state, "correlation_id", None)

    logger.info(
        f"Incoming request: {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "correlation_id": correlation_id,
        },
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        f"Request completed: {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time": f"{process_time:.4f}s",
            "correlation_id": correlation_id,
        },
    )

    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Logs the exception with its stack trace and returns a 500 carrying a
    unique error ID. Technical details are never exposed.

    Args:
        request: The incoming HTTP request
        exc: The unhandled exception

    Returns:
        JSON response with error ID and generic message
    """
    error_id = str(uuid.uuid4())
    correlation_id = getattr(request.state, "correlation_id", None)

    logger.error(
        "Unhandled exception occurred",
        extra={
            "error_id": error_id,
            "correlation_id": correlation_id,
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "error_id": error_id,
            "message": "An unexpected error occurred. Please contact support with the error ID if the issue persists.",
        },
        headers={"X-Error-ID": error_id},
    )


# Health check endpoints
@app.get("/healthz", tags=["health"])
async def health_check() -> dict[str, str]:
    """Basic liveness check."""
    return {"status": "ok"}


@app.get("/readyz", tags=["health"])
async def readiness_check() -> dict[str, str]:
    """
    Readiness check endpoint.

    Verifies the database answers a trivial query.

    Raises:
        HTTPException: 503 if database is not accessible
    """
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(
            "Readiness check failed - database connection error",
            extra={"error_type": type(e).__name__},
            exc_info=True,
        )
        raise HTTPException(status_code=503, detail="Database connection unavailable")

    return {"status": "ready", "database": "connected"}


# Register routers
app.include_router(whatsapp.router, prefix="/whatsapp", tags=["whatsapp"])

logger.info("StoreBot application initialized successfully")

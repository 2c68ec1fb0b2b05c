"""
Exam Session Engine - FastAPI Application Entry Point.

This is the main application module that:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Maps engine errors to HTTP responses
5. Registers the attempt routes and a health check
6. Runs the expiry sweeper for the lifetime of the app

The application follows a modular architecture:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models
- services/: session store, section clock, sync, transitions, scoring
- logging_config.py: Structured logging configuration
- database.py: Database connection management
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine import config
from exam_engine.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from exam_engine.errors import EngineError, Transient
from exam_engine.routes import attempts
from exam_engine.database import DATABASE_URL, SessionLocal, create_tables
from exam_engine.services.sweeper import ExpirySweeper

# Import all models so they are registered with Base.metadata
import exam_engine.models  # noqa: F401

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")

# Auto-create tables for SQLite local development
if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite, creating tables directly")
    create_tables()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if config.EXPIRY_SWEEP_ENABLED:
        sweeper = ExpirySweeper(SessionLocal)
        sweeper.start()
    yield
    if sweeper is not None:
        sweeper.stop()


# ──────────────────────────────────────────────────────────────
# Create FastAPI application
# ──────────────────────────────────────────────────────────────
app = FastAPI(
    title="Exam Session Engine",
    description=(
        "Timed multi-section exam attempts: server-authoritative section clocks, "
        "resumable progress via periodic sync, ordered section transitions "
        "and negative-marking scoring."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ──────────────────────────────────────────────────────────────
# CORS Middleware
#
# The attempt screen is served from the course frontend's origin.
# ──────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"]
)


# ──────────────────────────────────────────────────────────────
# Request ID Middleware
#
# Generates a unique UUID per incoming request, stores it in the
# context variable read by the log formatter, returns it in the
# X-Request-ID header and logs start/end with latency.
# ──────────────────────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = generate_request_id()
    request_id_var.set(req_id)

    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", ""),
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


# ──────────────────────────────────────────────────────────────
# Engine errors → JSON
#
# SectionLocked and Conflict are non-blocking notices for the UI,
# Transient tells the client to keep its state and retry.
# ──────────────────────────────────────────────────────────────
@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    log_with_context(logger, "WARNING" if exc.status_code < 500 else "ERROR",
        f"{exc.code}: {exc.detail}",
        extra_data={"path": request.url.path, "status_code": exc.status_code})
    headers = {}
    if isinstance(exc, Transient):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# ──────────────────────────────────────────────────────────────
# Register API routes
# ──────────────────────────────────────────────────────────────
app.include_router(attempts.router, tags=["Attempts"])


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for container health checks and monitoring."""
    return {"status": "healthy", "service": "exam-session-engine", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "Exam Session Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "sync_interval_seconds": config.SYNC_INTERVAL_SECONDS,
        "endpoints": {
            "start": "POST /api/attempt/start",
            "attempt": "GET /api/attempt/{id}",
            "sync": "POST /api/attempt/{id}/sync",
            "response": "PUT /api/attempt/{id}/response",
            "transition": "POST /api/attempt/{id}/transition-section",
            "section_expired": "POST /api/attempt/{id}/section-expired",
            "submit": "POST /api/attempt/{id}/submit",
            "results": "GET /api/attempt/{id}/results"
        }
    }

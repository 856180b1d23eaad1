"""
SmartNotes Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       uvicorn serves the module-level `app` (uvicorn smartnotes.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Rate Limit → Request ID → Logging          │
    │                                                          │
    │  Routers:                                                │
    │    /api/auth     /api/notes    /api/shared               │
    │    /api/search   /api/voice    /api/users                │
    │    /api/collaboration (REST + WebSocket)                 │
    │    /api/storage  /api/files    /health                   │
    │                                                          │
    │  Exception Handlers:                                     │
    │    SmartNotesError → status_code / error_code of the     │
    │                      exception class                     │
    │    Exception       → 500, generic message                │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check, storage directories
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from smartnotes import __version__
from smartnotes.config import settings
from smartnotes.database import dispose_engine
from smartnotes.exceptions import (
    CircuitBreakerOpenError,
    LLMServiceError,
    RateLimitExceededError,
    SmartNotesError,
)
from smartnotes.middleware.logging import RequestLoggingMiddleware
from smartnotes.middleware.rate_limit import RateLimitMiddleware
from smartnotes.middleware.request_id import RequestIDMiddleware, request_id_var
from smartnotes.routes import auth, collaboration, health, notes, search, storage, users, voice
from smartnotes.services.file_service import BUCKETS

logger = logging.getLogger(__name__)

SERVER_ERROR_MESSAGE = "An internal error occurred. Please try again later."


# ══════════════════════════════════════════════════════════════════════════
# Structured Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Request IDs are added to access log lines by RequestLoggingMiddleware.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),  # Docker captures stdout
        ],
        force=True,
    )

    # These log every operation at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("SmartNotes Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: notes work without Gemini and /health reports the problem
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    storage = Path(settings.storage_root)
    for bucket in sorted(BUCKETS):
        (storage / bucket).mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("SmartNotes Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def retry_after_header(exc: SmartNotesError) -> Dict[str, str]:
    if isinstance(exc, RateLimitExceededError):
        return {"Retry-After": str(exc.retry_after)}
    if isinstance(exc, CircuitBreakerOpenError):
        return {"Retry-After": str(exc.recovery_time)}
    if isinstance(exc, LLMServiceError) and exc.retry_after:
        return {"Retry-After": str(exc.retry_after)}
    return {}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Every SmartNotesError subclass declares its HTTP status and error code, so a
    single handler covers the whole hierarchy:

        ValidationError         → 400    ConflictError           → 409
        AuthenticationError     → 401    RateLimitExceededError  → 429
        PermissionDeniedError   → 403    DatabaseError & co.     → 500
        NotFoundError           → 404    LLM / circuit breaker   → 503

    Security: 500 responses never include the exception's message or context
    (SQL, file paths); those are logged server-side only.
    """

    @app.exception_handler(SmartNotesError)
    async def handle_smartnotes_error(request: Request, exc: SmartNotesError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error(
                "[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context
            )
        else:
            logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)

        content = {"error": exc.error_code, "message": exc.message, "request_id": rid}
        if exc.status_code == 500:
            content["message"] = SERVER_ERROR_MESSAGE if exc.error_code == "server_error" else exc.message
        elif exc.context:
            content["details"] = exc.context

        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=retry_after_header(exc),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: stack trace goes to the log, a request ID goes to the client."""
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="SmartNotes API",
        description=(
            "Backend for the SmartNotes mobile app: notes, voice transcription and "
            "AI summaries, semantic search, collaboration and offline sync."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Executed in reverse order of addition: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Total-Count",
            "Retry-After",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(notes.router)
    app.include_router(search.router)
    app.include_router(voice.router)
    app.include_router(users.router)
    app.include_router(collaboration.router)
    app.include_router(storage.router)
    app.include_router(health.router)

    return app


app = create_app()

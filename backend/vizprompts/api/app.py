"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vizprompts import __version__, validate_dependencies
from vizprompts.api.routes import SESSIONS, router
from vizprompts.config import settings
from vizprompts.db import async_session, init_database, shutdown
from vizprompts.errors import (
    BackendError,
    EmptyMediaError,
    NormalizationError,
    UnsupportedMediaError,
    UploadValidationError,
    VizPromptsError,
)
from vizprompts.orchestrator.pipeline import PromptPipeline
from vizprompts.services.history import SqlHistorySink
from vizprompts.services.inference import get_gateway

logger = logging.getLogger(__name__)

# Status code per error family; anything else is a 500
_ERROR_STATUS = (
    (UploadValidationError, 422),
    (UnsupportedMediaError, 422),
    (EmptyMediaError, 422),
    (BackendError, 502),
    (NormalizationError, 502),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Validate system dependencies (OpenCV with FFmpeg)
        - Initialize database schema
        - Build the inference gateway and pipeline from settings

    Shutdown:
        - Cancel open sessions
        - Close the gateway and database connections
    """
    logger.info("Starting VizPrompts API...")
    validate_dependencies()
    await init_database()

    history = SqlHistorySink(async_session)
    gateway = get_gateway(settings.inference)
    app.state.history = history
    app.state.pipeline = PromptPipeline(gateway, settings, history=history)
    logger.info(f"API startup complete (model: {gateway.model_id})")

    yield

    logger.info("Shutting down VizPrompts API...")
    SESSIONS.clear()
    await gateway.aclose()
    await shutdown()
    logger.info("API shutdown complete")


app = FastAPI(
    title="VizPrompts API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(VizPromptsError)
async def pipeline_exception_handler(request: Request, exc: VizPromptsError):
    """Map pipeline errors to status codes with a user-facing message."""
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    logger.warning(f"{request.method} {request.url.path} failed with {exc.error_code}: {exc.message}")
    content = {"error": exc.message, "code": exc.error_code}
    if isinstance(exc, NormalizationError):
        content["details"] = exc.raw
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )

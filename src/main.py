import logging
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.core.config import settings
from src.core.errors import EngineError
from src.core.logging_config import setup_logging
from src.routers import exports, migrations
from src.services.migrations.registry import MigrationRegistry

setup_logging()
logger = logging.getLogger(__name__)

SERVICE_NAME = "ffc-batch-engine"
SERVICE_VERSION = "0.1.0"

app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION)
app.state.migration_registry = MigrationRegistry()

# ---------------------------------------------------------------------------
# Middleware: request-id injection
# ---------------------------------------------------------------------------


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.warning("%r", exc, extra={"request_id": _request_id(request)})
    else:
        logger.info("%r", exc, extra={"request_id": _request_id(request)})
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_dict(), "request_id": _request_id(request)},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "detail": exc.errors(),
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": str(exc.detail),
            "detail": None,
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", extra={"request_id": _request_id(request)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "detail": str(exc) if settings.DEBUG else None,
            "request_id": _request_id(request),
        },
    )


# ---------------------------------------------------------------------------
# Public endpoints (no auth)
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}


# ---------------------------------------------------------------------------
# Migrations and exports (API key + caller identity)
# ---------------------------------------------------------------------------

app.include_router(migrations.router)
app.include_router(exports.router)

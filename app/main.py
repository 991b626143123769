"""
CivicConnect - FastAPI Application Entry Point

Citizens file location-tagged issues; administrators and field authorities
track and resolve them.

DESIGN PRINCIPLES:
- Every issue carries a deadline derived from priority and upvotes
- Duplicate detection is advisory, never blocks a report
- New and reopened issues go to the nearest active authority of their department
- Each state change is one atomic read-modify-write
"""

import logging
import traceback
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    ConflictError,
    DependencyError,
    EngineError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.settings import settings
from app.routes import admin, dashboard, health, issues

logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Civic issue reporting with deadline tracking and nearest-authority assignment",
    debug=settings.DEBUG
)


ENGINE_ERROR_STATUS = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DependencyError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    """Map engine errors to HTTP responses carrying a machine-readable code."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ENGINE_ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if isinstance(exc, DependencyError):
        logger.error(f"{request.method} {request.url.path} - store failure: {exc.message}")
        content = {**exc.to_dict(), "retryable": True}
    else:
        logger.warning(f"{request.method} {request.url.path} rejected [{exc.code}]: {exc.message}")
        content = exc.to_dict()

    return JSONResponse(status_code=status_code, content=content)


# Global exception handler to catch ALL exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and log them with full traceback."""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}\n{traceback.format_exc()}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Internal server error: {str(exc)}"}
    )


# Pydantic validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Catch Pydantic validation errors and log them."""
    logger.warning(f"{request.method} {request.url.path} validation failed: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc), "code": ValidationError.code}
    )


def jsonable_errors(exc: RequestValidationError):
    # ctx may hold exception instances that JSONResponse cannot encode
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Application lifecycle events
@app.on_event("startup")
async def startup_event():
    """
    Resolve the issue store on startup so misconfiguration shows up early.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    from app.services.store import get_issue_store
    try:
        get_issue_store()
    except RuntimeError as e:
        logger.warning(f"Store initialization failed: {e}")
        logger.warning("The app will start but database operations may fail.")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.APP_NAME}")


# Include routers
app.include_router(health.router)
app.include_router(issues.router)
app.include_router(admin.router)
app.include_router(dashboard.router)


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }

"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from railops.config import settings
from railops.exceptions import ErrorType, OperationsError
from railops.routers import layout, operations
from railops.services.operations.database import init_db
from railops.utils.helpers import setup_logging


# Setup logging
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("Application starting...")
    logger.info(f"CORS allowed origins: {settings.allowed_origins}")
    init_db()
    logger.info("Operations database initialized")

    yield
    # Shutdown
    logger.info("Application shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.api_title,
    description=settings.api_description,
    version=settings.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(layout.router)
app.include_router(operations.router)


@app.exception_handler(OperationsError)
async def operations_error_handler(request: Request, exc: OperationsError):
    """Render service errors with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Turn anything unexpected into a 500 without leaking internals."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "type": ErrorType.INTERNAL.value}
    )


# Root endpoint
@app.get("/", summary="API root")
async def root():
    """Root endpoint for API information."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "documentation": "/docs"
    }


# Health check endpoint
@app.get("/health", summary="Application health check")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": settings.api_title
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "railops.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )

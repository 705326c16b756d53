"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
FaceID capture engine.

The application provides:
- REST endpoints for enrollment and verification
- REST endpoints for enrollment record management
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes.enrollment import router as enrollment_router
from api.routes.verification import router as verification_router
from api.routes.management import router as management_router
from api.schemas import HealthResponse
from core.config import get_logging_config, get_server_config
from core.record_store import get_record_store


# Configure logging
_logging_config = get_logging_config()
logging.basicConfig(
    level=getattr(logging, str(_logging_config.get("level", "INFO")).upper(), logging.INFO),
    format=_logging_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Open the record store

    Runs on shutdown:
    - Close the record store
    """
    logger.info("=" * 60)
    logger.info("Starting FaceID API")
    logger.info("=" * 60)

    store = get_record_store()
    stats = store.get_stats()
    logger.info(f"Record store ready: {stats['total_records']} identities enrolled")

    logger.info("API startup complete!")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down API...")
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="FaceID API",
    description="""
API for camera-based face enrollment and verification.

## Features
- **Enrollment**: Store reference descriptors for an identity
- **Verification**: Check frames against the stored record
- **Record Management**: List, view, and delete enrollment records

## Frames
Frames are sent as base64-encoded JPEG strings and replayed in order as if
they came from a camera: `{"frames": ["<base64 JPEG>", ...]}`
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(enrollment_router)
app.include_router(verification_router)
app.include_router(management_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the API and its record store.

    Returns:
    - Whether the store answered
    - Number of enrolled identities
    - Verification counters from the attempt log
    """
    try:
        stats = get_record_store().get_stats()
    except Exception as e:
        logger.error(f"Record store unavailable: {e}")
        return HealthResponse(status="degraded", storage_ready=False)

    return HealthResponse(
        status="healthy",
        storage_ready=True,
        enrolled_identities=stats["total_records"],
        total_verifications=stats["total_verifications"],
        successful_verifications=stats["successful_verifications"],
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "FaceID API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server_config = get_server_config()
    host = server_config["host"]
    port = server_config["port"]

    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(
        "api.app:app",
        host=host,
        port=port,
        reload=True,
        log_level="info",
    )

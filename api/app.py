"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
Face Recognition Door Lock API.

The application provides:
- REST endpoints to activate, deactivate and monitor the lock
- WebSocket endpoint for enrollment
- REST endpoints for enrolled users and access history
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

from api.routes.access import get_lock_service, router as access_router
from api.routes.enrollment import router as enrollment_router
from api.routes.management import router as management_router
from api.schemas import HealthResponse
from doorlock.identity_store import get_identity_store
from doorlock.config import get_config, get_server_config


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Apply the configured log level
    - Initialize the identity store

    Runs on shutdown:
    - Deactivate the lock (releases the camera) and stop speech
    - Close the identity store
    """
    logger.info("=" * 60)
    logger.info("Starting Face Recognition Door Lock API")
    logger.info("=" * 60)

    level = get_config().get("logging", {}).get("level", "INFO")
    logging.getLogger().setLevel(level)

    logger.info("Initializing identity store...")
    store = get_identity_store()
    stats = store.get_stats()
    logger.info(f"Identity store ready: {stats['total_users']} users enrolled")

    logger.info("API startup complete!")

    yield

    logger.info("Shutting down API...")
    await get_lock_service().close()
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Face Recognition Door Lock API",
    description="""
API for a camera-gated door lock driven by face recognition.

## Features
- **Lock**: Activate scanning, watch the lock state, deactivate
- **Enrollment**: Register a new user over a WebSocket
- **Access History**: Granted and denied access attempts, newest first

## WebSocket Enrollment
Connect to `/ws/enroll/{user_name}` to start an enrollment session.
Send frames as JSON: `{"type": "frame", "data": "<base64 JPEG>"}`
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins (adjust for production)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(access_router)
app.include_router(enrollment_router)
app.include_router(management_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the API and its dependencies.

    Returns:
    - Lock state (degraded when the camera has failed)
    - Number of enrolled users and logged access attempts
    """
    store = get_identity_store()
    stats = store.get_stats()
    lock_status = get_lock_service().status()

    status = "degraded" if lock_status.state == "error" else "healthy"

    return HealthResponse(
        status=status,
        lock_state=lock_status.state,
        enrolled_users=stats["total_users"],
        access_events=stats["total_access_events"],
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Face Recognition Door Lock API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server_config = get_server_config()

    logger.info(f"Starting server on {server_config['host']}:{server_config['port']}")
    uvicorn.run(
        "api.app:app",
        host=server_config["host"],
        port=server_config["port"],
        reload=True,
        log_level="info",
    )

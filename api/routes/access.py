"""
Door Lock API Routes

This module provides REST endpoints for operating the lock:
- POST /lock/activate: Load the gallery, open the camera and start scanning
- POST /lock/deactivate: Stop scanning and release the camera
- GET /lock/status: Current lock state and recognition display state
- GET /access-logs: Access history, newest first

The API process owns a single AccessController at a time. Each activation
builds a fresh controller with a freshly loaded gallery, so users enrolled
since the last activation are picked up on the next one.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from api.schemas import (
    AccessLogEntry,
    AccessLogResponse,
    LockStatusResponse,
)
from doorlock.access_controller import AccessController, AccessSettings, LockState
from doorlock.camera import Camera, CameraConfig
from doorlock.config import (
    get_access_config,
    get_api_config,
    get_camera_config,
    get_matching_config,
    get_speech_config,
)
from doorlock.errors import CameraUnavailable
from doorlock.face_embedder import get_face_embedder
from doorlock.identity_store import get_identity_store
from doorlock.speech import Announcer, get_announcer

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["lock"])

MAX_ACCESS_LOG_LIMIT = 500


def build_controller(announcer: Announcer) -> AccessController:
    """
    Build an AccessController from config.yaml.

    The gallery is loaded here, once, and stays fixed for the session.
    The announcer is shared across sessions and not owned by the controller.
    """
    store = get_identity_store()
    gallery = store.load_gallery()

    return AccessController(
        camera=Camera(CameraConfig.from_dict(get_camera_config())),
        embedding_source=get_face_embedder(),
        store=store,
        gallery=gallery,
        settings=AccessSettings.from_config(get_matching_config(), get_access_config()),
        announcer=announcer,
    )


class LockService:
    """
    Holds the API's current AccessController.

    One announcer is created on first activation and reused by every later
    controller, so at most one speech worker runs per process. close()
    stops it.
    """

    def __init__(self):
        self.controller: Optional[AccessController] = None
        self.announcer: Optional[Announcer] = None
        self._lock = asyncio.Lock()

    def _get_announcer(self) -> Announcer:
        if self.announcer is None:
            self.announcer = get_announcer(get_speech_config())
        return self.announcer

    async def activate(self) -> AccessController:
        async with self._lock:
            # An errored controller is inactive and gets replaced
            if self.controller is not None and self.controller.is_active:
                raise HTTPException(status_code=409, detail="Door lock is already active")

            if self.controller is not None:
                await self.controller.deactivate()

            self.controller = build_controller(self._get_announcer())
            try:
                await self.controller.activate()
            except CameraUnavailable as e:
                raise HTTPException(status_code=503, detail=f"Camera unavailable: {e}")

            return self.controller

    async def deactivate(self) -> None:
        async with self._lock:
            if self.controller is not None:
                await self.controller.deactivate()

    async def close(self) -> None:
        """Deactivate the lock and stop the shared announcer."""
        await self.deactivate()
        if self.announcer is not None:
            self.announcer.stop()
            self.announcer = None

    def status(self) -> LockStatusResponse:
        if self.controller is None:
            return LockStatusResponse(
                state=LockState.LOCKED.value,
                is_active=False,
                message="Locked",
            )

        status = self.controller.status()
        return LockStatusResponse(
            **status.to_dict(),
            gallery_size=len(self.controller.gallery),
        )


_lock_service = LockService()


def get_lock_service() -> LockService:
    """Get the process-wide LockService."""
    return _lock_service


@router.post("/lock/activate", response_model=LockStatusResponse)
async def activate_lock():
    """
    Activate the door lock.

    Loads the enrolled users, opens the camera and starts scanning.

    Raises:
        409: If the lock is already active.
        503: If the camera cannot be opened.
    """
    service = get_lock_service()
    await service.activate()
    return service.status()


@router.post("/lock/deactivate", response_model=LockStatusResponse)
async def deactivate_lock():
    """
    Deactivate the door lock.

    Stops scanning, cancels any relock countdown and releases the camera.
    Always succeeds.
    """
    service = get_lock_service()
    await service.deactivate()
    return service.status()


@router.get("/lock/status", response_model=LockStatusResponse)
async def lock_status():
    """Get the current lock state, recognized user, confidence and countdown."""
    return get_lock_service().status()


@router.get("/access-logs", response_model=AccessLogResponse)
async def list_access_logs(
    limit: Optional[int] = Query(None, ge=1, le=MAX_ACCESS_LOG_LIMIT, description="Maximum entries to return"),
):
    """
    Get the access history, newest first.

    Without a limit, returns api.access_log_limit entries (default 50).
    """
    if limit is None:
        limit = int(get_api_config().get("access_log_limit", 50))

    store = get_identity_store()
    events = store.list_access_events(limit=limit)

    return AccessLogResponse(
        events=[AccessLogEntry(**event.to_dict()) for event in events],
        total=len(events),
    )

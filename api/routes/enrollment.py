"""
Enrollment API Routes

This module provides the WebSocket endpoint for enrolling a new user. The
client streams camera frames; each frame is one capture request. Frames
without a detectable face are reported and discarded, and once the target
number of samples is reached the user is saved and the session ends.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.schemas import (
    CaptureStatusResponse,
    EnrollmentCancelledResponse,
    EnrollmentCompleteResponse,
    EnrollmentErrorResponse,
)
from doorlock.camera import decode_frame
from doorlock.config import get_enrollment_config
from doorlock.enrollment import CaptureResult, EnrollmentSession
from doorlock.errors import DuplicateIdentity, PersistenceFailure
from doorlock.face_embedder import get_face_embedder
from doorlock.identity_store import get_identity_store

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/ws", tags=["enrollment"])


def capture_status(result: CaptureResult) -> CaptureStatusResponse:
    return CaptureStatusResponse(
        type="capture_status",
        face_detected=result.face_detected,
        samples_collected=result.samples_collected,
        target_count=result.target_count,
        message=result.message,
    )


async def send_error(websocket: WebSocket, error: str, code: str) -> None:
    response = EnrollmentErrorResponse(type="error", error=error, code=code)
    await websocket.send_json(response.model_dump())


@router.websocket("/enroll/{user_name}")
async def websocket_enroll(websocket: WebSocket, user_name: str):
    """
    WebSocket endpoint for face enrollment.

    Protocol:
        Client -> Server (per capture):
        {
            "type": "frame",
            "data": "<base64-encoded JPEG>"
        }

        Client -> Server (abort, discards every sample):
        {"type": "cancel"}

        Server -> Client (per frame):
        {
            "type": "capture_status",
            "face_detected": true/false,
            "samples_collected": int,
            "target_count": int,
            "message": "Sample 3/10 captured!"
        }

        Server -> Client (on completion):
        {
            "type": "enrollment_complete",
            "user_id": "usr_xxx",
            "user_name": "...",
            "n_samples": int
        }

        Server -> Client (on failure):
        {"type": "error", "error": "...", "code": "USER_EXISTS" | "INVALID_NAME" |
                                                 "INVALID_IMAGE" | "DETECTION_FAILED" |
                                                 "ENROLLMENT_FAILED" | "UNEXPECTED_ERROR"}

    Args:
        websocket: The WebSocket connection.
        user_name: Display name for the user being enrolled.
    """
    await websocket.accept()

    session: Optional[EnrollmentSession] = None

    try:
        store = get_identity_store()
        sample_count = int(get_enrollment_config().get("sample_count", 10))
        session = EnrollmentSession(user_name, store, sample_count=sample_count)

        try:
            session.start()
        except DuplicateIdentity as e:
            await send_error(websocket, str(e), "USER_EXISTS")
            return
        except ValueError as e:
            await send_error(websocket, str(e), "INVALID_NAME")
            return

        embedder = get_face_embedder()

        while session.is_active:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.warning(f"Failed to receive message: {e}")
                break

            message_type = message.get("type")

            if message_type == "cancel":
                discarded = session.samples_collected
                session.cancel()
                response = EnrollmentCancelledResponse(
                    user_name=session.name,
                    discarded_samples=discarded,
                )
                await websocket.send_json(response.model_dump())
                break

            if message_type != "frame":
                logger.warning(f"Unknown message type: {message_type}")
                continue

            frame = decode_frame(message.get("data", ""))
            if frame is None:
                await send_error(websocket, "Invalid image data", "INVALID_IMAGE")
                continue

            try:
                embedding = await asyncio.to_thread(embedder.detect, frame)
            except Exception as e:
                logger.warning(f"Face detection failed: {e}")
                await send_error(websocket, f"Error detecting face: {e}", "DETECTION_FAILED")
                continue

            try:
                result = await asyncio.to_thread(session.add_embedding, embedding)
            except (PersistenceFailure, DuplicateIdentity) as e:
                await send_error(websocket, f"Error saving to database: {e}", "ENROLLMENT_FAILED")
                break

            await websocket.send_json(capture_status(result).model_dump())

            if result.completed:
                complete_response = EnrollmentCompleteResponse(
                    type="enrollment_complete",
                    user_id=result.identity.identity_id,
                    user_name=result.identity.name,
                    n_samples=result.identity.n_samples,
                    message=result.message,
                )
                await websocket.send_json(complete_response.model_dump())
                logger.info(f"Enrollment complete for {user_name}")

    except WebSocketDisconnect:
        logger.info(f"Client disconnected during enrollment: {user_name}")

    except Exception as e:
        logger.error(f"Unexpected error during enrollment: {e}")
        try:
            await send_error(websocket, f"Unexpected error: {e}", "UNEXPECTED_ERROR")
        except Exception:
            pass

    finally:
        if session is not None and not session.is_complete:
            session.cancel()
        try:
            await websocket.close()
        except Exception:
            pass

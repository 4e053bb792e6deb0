"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used by the door lock API.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import List, Optional
from pydantic import BaseModel, Field


# ============================================================
# Enrollment Schemas
# ============================================================

class FrameMessage(BaseModel):
    """Message sent by client for each capture during enrollment."""
    type: str = Field(default="frame", description="Message type: 'frame' or 'cancel'")
    data: str = Field("", description="Base64-encoded JPEG image data")


class CaptureStatusResponse(BaseModel):
    """Response sent to client for each processed frame."""
    type: str = Field(default="capture_status", description="Message type")
    face_detected: bool = Field(..., description="Whether a face was detected")
    samples_collected: int = Field(0, description="Samples captured so far")
    target_count: int = Field(10, description="Samples needed to complete enrollment")
    message: str = Field("", description="Progress message")


class EnrollmentCompleteResponse(BaseModel):
    """Response sent when enrollment is complete."""
    type: str = Field(default="enrollment_complete", description="Message type")
    user_id: str = Field(..., description="Generated unique user ID")
    user_name: str = Field(..., description="User's display name")
    n_samples: int = Field(..., description="Number of face samples stored")
    message: str = Field("", description="Completion message")


class EnrollmentCancelledResponse(BaseModel):
    """Response sent when the client cancels enrollment."""
    type: str = Field(default="enrollment_cancelled", description="Message type")
    user_name: str = Field(..., description="User's display name")
    discarded_samples: int = Field(0, description="Samples discarded")


class EnrollmentErrorResponse(BaseModel):
    """Error response during enrollment."""
    type: str = Field(default="error", description="Message type")
    error: str = Field(..., description="Error message")
    code: str = Field(default="ENROLLMENT_ERROR", description="Error code")


# ============================================================
# Lock Schemas
# ============================================================

class LockStatusResponse(BaseModel):
    """Current state of the door lock."""
    state: str = Field(..., description="'locked', 'scanning', 'unlocked' or 'error'")
    is_active: bool = Field(..., description="Whether a recognition session is running")
    recognized_identity_id: Optional[str] = Field(None, description="ID of the unlocked user")
    recognized_name: Optional[str] = Field(None, description="Name of the unlocked user")
    confidence: int = Field(0, description="Confidence of the last recognition (0-100)")
    countdown: int = Field(0, description="Seconds until the door relocks")
    message: str = Field("", description="Status message")
    gallery_size: int = Field(0, description="Identities loaded for this session")


class AccessLogEntry(BaseModel):
    """A single access attempt."""
    event_id: Optional[int] = Field(None, description="Log entry ID")
    identity_id: Optional[str] = Field(None, description="Matched user ID (granted only)")
    name: Optional[str] = Field(None, description="Matched user name (granted only)")
    outcome: str = Field(..., description="'granted', 'denied' or 'unknown'")
    confidence: Optional[int] = Field(None, description="Match confidence (0-100)")
    unlock_duration: Optional[int] = Field(None, description="Seconds unlocked (granted only)")
    timestamp: str = Field(..., description="ISO timestamp of the attempt")


class AccessLogResponse(BaseModel):
    """Access history, newest first."""
    events: List[AccessLogEntry] = Field(default_factory=list)
    total: int = Field(0, description="Number of entries returned")


# ============================================================
# User Management Schemas
# ============================================================

class UserInfo(BaseModel):
    """User information summary."""
    user_id: str = Field(..., description="Unique user identifier")
    user_name: str = Field(..., description="User's display name")
    enrolled_at: str = Field(..., description="ISO timestamp of enrollment")
    n_samples: Optional[int] = Field(None, description="Number of face samples stored")
    embedding_dim: Optional[int] = Field(None, description="Embedding dimension")


class UserListResponse(BaseModel):
    """Response containing list of enrolled users."""
    users: List[UserInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of enrolled users")


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """System health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    lock_state: str = Field(..., description="Current lock state")
    enrolled_users: int = Field(..., description="Number of enrolled users")
    access_events: int = Field(0, description="Number of logged access attempts")

"""
Core Module for the Face Recognition Door Lock

This package contains the face-matching decision logic and the lock state
machine, plus the camera, embedding, storage and speech collaborators they
run against.

Main components:
    - config: Configuration loading and management
    - camera: OpenCV webcam wrapper
    - face_embedder: Face embedding extraction (face_recognition / facenet)
    - identity_store: Enrolled identities and the access log (SQLite + .npz)
    - matching: Nearest-sample identity matcher
    - access_controller: Lock/scan/unlock state machine with auto-relock
    - enrollment: Multi-sample enrollment sessions
    - speech: Spoken feedback

Usage:
    from doorlock.config import get_config
    from doorlock.access_controller import AccessController
    from doorlock.identity_store import get_identity_store
"""

from doorlock.config import (
    get_config,
    get_section,
    get_matching_config,
    get_access_config,
    get_enrollment_config,
    get_camera_config,
    get_embedder_config,
    get_speech_config,
    get_storage_config,
    get_api_config,
    get_server_config,
)

from doorlock.errors import (
    DoorLockError,
    CameraUnavailable,
    NoFaceDetected,
    PersistenceFailure,
    DuplicateIdentity,
)

from doorlock.identity_store import (
    IdentityStore,
    Identity,
    Gallery,
    AccessEvent,
    AccessOutcome,
    get_identity_store,
    generate_identity_id,
)

from doorlock.matching import (
    MatchResult,
    NearestSampleMatcher,
    compute_confidence,
)

from doorlock.access_controller import (
    AccessController,
    AccessSettings,
    ControllerStatus,
    LockState,
)

from doorlock.enrollment import EnrollmentSession, CaptureResult

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_matching_config",
    "get_access_config",
    "get_enrollment_config",
    "get_camera_config",
    "get_embedder_config",
    "get_speech_config",
    "get_storage_config",
    "get_api_config",
    "get_server_config",
    # Errors
    "DoorLockError",
    "CameraUnavailable",
    "NoFaceDetected",
    "PersistenceFailure",
    "DuplicateIdentity",
    # Identity Store
    "IdentityStore",
    "Identity",
    "Gallery",
    "AccessEvent",
    "AccessOutcome",
    "get_identity_store",
    "generate_identity_id",
    # Matching
    "MatchResult",
    "NearestSampleMatcher",
    "compute_confidence",
    # Access Control
    "AccessController",
    "AccessSettings",
    "ControllerStatus",
    "LockState",
    # Enrollment
    "EnrollmentSession",
    "CaptureResult",
]

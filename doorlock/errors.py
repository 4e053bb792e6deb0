"""
Error types for the door lock system.

    - CameraUnavailable: the camera could not be acquired (fatal for a session)
    - NoFaceDetected: a frame contained no usable face (expected, per tick)
    - PersistenceFailure: the identity store rejected a write
    - DuplicateIdentity: enrollment requested for a name already in use
"""


class DoorLockError(Exception):
    """Base class for all door lock errors."""


class CameraUnavailable(DoorLockError):
    """Raised when the camera cannot be opened or has been lost."""


class NoFaceDetected(DoorLockError):
    """Raised when a frame does not contain a detectable face."""


class PersistenceFailure(DoorLockError):
    """Raised when the identity store cannot complete a write."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class DuplicateIdentity(DoorLockError):
    """Raised when enrolling a display name that is already taken."""

    def __init__(self, name: str):
        super().__init__(f"User '{name}' already exists. Choose a different name.")
        self.name = name

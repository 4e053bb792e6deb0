"""
Enrollment Module

Collects a fixed number of face embeddings for a new user and commits them
as a single identity once the target count is reached.

    - The display name is checked for uniqueness once, when the session starts.
    - Captures with no detectable face are discarded and do not count.
    - Nothing is persisted until the last sample; cancel() discards everything.
    - A failed commit is reported to the caller and never retried; the
      operator cancels and starts a new session.

Usage:
    with EnrollmentSession("Alice", store, embedder, camera) as session:
        while not session.is_complete:
            result = session.capture()
            print(result.message)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from doorlock.errors import DuplicateIdentity, PersistenceFailure
from doorlock.identity_store import Identity, IdentityStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_COUNT = 10


@dataclass(frozen=True)
class CaptureResult:
    """
    Outcome of one capture request.

    Attributes:
        face_detected: Whether the frame yielded an embedding.
        samples_collected: Samples held after this capture.
        target_count: Samples needed to commit.
        message: Human-readable progress message.
        identity: The committed Identity once enrollment completes.
    """

    face_detected: bool
    samples_collected: int
    target_count: int
    message: str
    identity: Optional[Identity] = None

    @property
    def completed(self) -> bool:
        return self.identity is not None


class EnrollmentSession:
    """
    Manages state for a single enrollment session.

    Args:
        name: Display name for the user being enrolled.
        store: IdentityStore the finished identity is written to.
        embedding_source: Object with detect(frame) -> embedding or None.
        camera: Optional frame source with open(), read() and release().
                Without one, callers pass frames to capture() or embeddings
                to add_embedding() directly.
        sample_count: Embeddings required before committing.
    """

    def __init__(
        self,
        name: str,
        store: IdentityStore,
        embedding_source=None,
        camera=None,
        sample_count: int = DEFAULT_SAMPLE_COUNT,
    ):
        if sample_count < 1:
            raise ValueError(f"sample_count must be at least 1, got {sample_count}")

        self.name = name.strip()
        self.store = store
        self.embedding_source = embedding_source
        self.camera = camera
        self.sample_count = sample_count

        self._embeddings: List[np.ndarray] = []
        self._started = False
        self._failed = False
        self.identity: Optional[Identity] = None

    @property
    def samples_collected(self) -> int:
        return len(self._embeddings)

    @property
    def is_active(self) -> bool:
        return self._started and self.identity is None

    @property
    def is_complete(self) -> bool:
        return self.identity is not None

    def start(self) -> None:
        """
        Validate the name and acquire the camera.

        Raises:
            ValueError: If the name is blank.
            DuplicateIdentity: If the name is already enrolled.
            CameraUnavailable: If the camera cannot be opened.
        """
        if not self.name:
            raise ValueError("Please enter a username")

        if self.store.identity_exists(self.name):
            raise DuplicateIdentity(self.name)

        if self.camera is not None:
            self.camera.open()

        self._embeddings = []
        self._failed = False
        self._started = True
        logger.info(f"Enrollment session started for user: {self.name}")

    def capture(self, frame: Optional[np.ndarray] = None) -> CaptureResult:
        """
        Capture one sample.

        Reads a frame from the camera unless one is given, then extracts an
        embedding from it.

        Raises:
            RuntimeError: If the session has not started, or already holds
                          every sample it needs.
            PersistenceFailure: If the final sample's commit fails.
        """
        self._check_can_capture()

        if frame is None:
            if self.camera is None:
                raise RuntimeError("No frame given and no camera attached")
            frame = self.camera.read()

        embedding = self.embedding_source.detect(frame) if frame is not None else None
        return self.add_embedding(embedding)

    def add_embedding(self, embedding: Optional[np.ndarray]) -> CaptureResult:
        """
        Count one already-extracted embedding towards the session.

        A None embedding means no face was detected; it is discarded.
        """
        self._check_can_capture()

        if embedding is None:
            return CaptureResult(
                face_detected=False,
                samples_collected=self.samples_collected,
                target_count=self.sample_count,
                message="No face detected. Please try again.",
            )

        self._embeddings.append(np.asarray(embedding, dtype=np.float32).ravel())
        count = self.samples_collected
        logger.debug(f"Captured sample {count}/{self.sample_count} for {self.name}")

        if count < self.sample_count:
            return CaptureResult(
                face_detected=True,
                samples_collected=count,
                target_count=self.sample_count,
                message=f"Sample {count}/{self.sample_count} captured!",
            )

        identity = self._commit()
        return CaptureResult(
            face_detected=True,
            samples_collected=count,
            target_count=self.sample_count,
            message=f"Success! {identity.name} registered with {count} face samples.",
            identity=identity,
        )

    def _check_can_capture(self) -> None:
        if not self._started:
            raise RuntimeError("Enrollment session has not been started")
        if self.identity is not None:
            raise RuntimeError(f"Enrollment for {self.name} is already complete")
        if self._failed or self.samples_collected >= self.sample_count:
            raise RuntimeError(
                f"Enrollment for {self.name} already holds {self.samples_collected} samples; "
                "cancel and start again"
            )

    def _commit(self) -> Identity:
        try:
            identity = self.store.create_identity(self.name, self._embeddings)
        except (PersistenceFailure, DuplicateIdentity) as e:
            self._failed = True
            logger.error(f"Error saving enrollment for {self.name}: {e}")
            self._release_camera()
            raise

        self.identity = identity
        self._embeddings = []
        self._release_camera()
        logger.info(f"Enrollment complete for {self.name} (id={identity.identity_id})")
        return identity

    def cancel(self) -> None:
        """Discard all collected samples and release the camera. Idempotent."""
        if self._embeddings:
            logger.info(f"Enrollment cancelled for {self.name}: "
                        f"discarded {len(self._embeddings)} samples")
        self._embeddings = []
        self._started = False
        self._failed = False
        self._release_camera()

    def _release_camera(self) -> None:
        if self.camera is not None:
            self.camera.release()

    def __enter__(self) -> "EnrollmentSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.identity is None:
            self.cancel()
        else:
            self._release_camera()
        return False

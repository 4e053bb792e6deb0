"""
Access Controller Module

Drives the door lock: scans camera frames for enrolled faces, unlocks on a
confident match and relocks automatically after a countdown.

States:
    locked   - inactive; the camera is released
    scanning - a recognition attempt runs every tick_interval seconds
    unlocked - recognition is suspended while the relock countdown runs
    error    - the camera could not be acquired; only deactivate() leaves it

Transitions:
    activate()              locked   -> scanning  (camera opened)
                            locked   -> error     (camera unavailable)
    confident match         scanning -> unlocked  ("granted" event logged)
    countdown reaches zero  unlocked -> scanning  (no event)
    deactivate()            any      -> locked

A match below the confidence threshold keeps the lock scanning and logs a
"denied" event carrying the candidate's confidence but no identity. A probe
with no candidate at all (empty gallery or every identity beyond the
distance threshold) is not logged.

The recognition loop and the countdown each run as an asyncio task owned by
the controller. Both are cancelled, and the camera released, on every
deactivation path including `async with` exit on error.

Usage:
    controller = AccessController(camera, embedder, store, store.load_gallery())

    async with controller:
        await asyncio.sleep(60)
"""

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from doorlock.errors import CameraUnavailable
from doorlock.identity_store import AccessEvent, AccessOutcome, Gallery, IdentityStore
from doorlock.matching import IdentityMatcher, MatchResult, NearestSampleMatcher
from doorlock.speech import Announcer, SilentAnnouncer

logger = logging.getLogger(__name__)


class LockState(str, enum.Enum):
    LOCKED = "locked"
    SCANNING = "scanning"
    UNLOCKED = "unlocked"
    ERROR = "error"


@dataclass
class AccessSettings:
    """
    Tunable parameters of the access controller.

    Attributes:
        distance_threshold: Matcher distance at or above which no identity
                            is reported.
        confidence_threshold: Minimum confidence (0-100) needed to unlock.
        unlock_duration: Countdown steps before the door relocks.
        tick_interval: Seconds between recognition attempts.
        countdown_interval: Seconds per countdown step.
    """

    distance_threshold: float = 0.6
    confidence_threshold: int = 85
    unlock_duration: int = 10
    tick_interval: float = 1.0
    countdown_interval: float = 1.0

    @classmethod
    def from_config(
        cls,
        matching_config: Optional[dict] = None,
        access_config: Optional[dict] = None,
    ) -> "AccessSettings":
        matching_config = matching_config or {}
        access_config = access_config or {}
        return cls(
            distance_threshold=float(matching_config.get("distance_threshold", 0.6)),
            confidence_threshold=int(access_config.get("confidence_threshold", 85)),
            unlock_duration=int(access_config.get("unlock_duration", 10)),
            tick_interval=float(access_config.get("tick_interval", 1.0)),
            countdown_interval=float(access_config.get("countdown_interval", 1.0)),
        )


@dataclass(frozen=True)
class ControllerStatus:
    """Snapshot of the controller's display state."""

    state: LockState
    is_active: bool
    recognized_identity_id: Optional[str]
    recognized_name: Optional[str]
    confidence: int
    countdown: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "is_active": self.is_active,
            "recognized_identity_id": self.recognized_identity_id,
            "recognized_name": self.recognized_name,
            "confidence": self.confidence,
            "countdown": self.countdown,
            "message": self.message,
        }


class AccessController:
    """
    Lock/scan/unlock state machine over a camera and a gallery snapshot.

    Args:
        camera: Frame source with open(), read() and release().
        embedding_source: Object with detect(frame) -> embedding or None.
        store: Identity store that receives access events.
        gallery: Identities to recognize; fixed for the controller's life.
        settings: Thresholds and timings. Defaults to AccessSettings().
        matcher: IdentityMatcher. Defaults to NearestSampleMatcher.
        announcer: Spoken feedback. Defaults to SilentAnnouncer.
    """

    def __init__(
        self,
        camera,
        embedding_source,
        store: IdentityStore,
        gallery: Gallery,
        settings: Optional[AccessSettings] = None,
        matcher: Optional[IdentityMatcher] = None,
        announcer: Optional[Announcer] = None,
    ):
        self.camera = camera
        self.embedding_source = embedding_source
        self.store = store
        self.gallery = gallery if isinstance(gallery, Gallery) else Gallery(gallery)
        self.settings = settings or AccessSettings()
        self.matcher = matcher or NearestSampleMatcher(
            {"distance_threshold": self.settings.distance_threshold}
        )
        self.announcer = announcer or SilentAnnouncer()

        self._state = LockState.LOCKED
        self._active = False
        self._recognized_identity_id: Optional[str] = None
        self._recognized_name: Optional[str] = None
        self._confidence = 0
        self._countdown = 0
        self._message = "Locked"

        self._scan_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None

        # Held by worker threads while they use the camera, so release()
        # never races an in-flight read
        self._camera_lock = threading.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._active

    def status(self) -> ControllerStatus:
        return ControllerStatus(
            state=self._state,
            is_active=self._active,
            recognized_identity_id=self._recognized_identity_id,
            recognized_name=self._recognized_name,
            confidence=self._confidence,
            countdown=self._countdown,
            message=self._message,
        )

    def _clear_display(self) -> None:
        self._recognized_identity_id = None
        self._recognized_name = None
        self._confidence = 0
        self._countdown = 0

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def activate(self) -> None:
        """
        Acquire the camera and start scanning.

        Raises:
            CameraUnavailable: If the camera cannot be opened. The controller
                               is left in the error state.
            RuntimeError: If the controller is in the error state; call
                          deactivate() first.
        """
        if self._state is LockState.ERROR:
            raise RuntimeError("Access controller is in error state; deactivate before reactivating")

        if self._active:
            logger.warning("Access controller already active")
            return

        try:
            await asyncio.to_thread(self.camera.open)
        except CameraUnavailable as e:
            self._state = LockState.ERROR
            self._message = f"Camera unavailable: {e}"
            logger.error(f"Camera access failed: {e}")
            raise

        self._active = True
        self._state = LockState.SCANNING
        self._clear_display()
        self._message = "Scanning..."
        logger.info(f"Access controller active: {len(self.gallery)} identities in gallery")

        self._start_scanning()

    async def deactivate(self) -> None:
        """
        Stop scanning, cancel any countdown and release the camera.

        Safe to call from any state and more than once.
        """
        current = asyncio.current_task()
        tasks = [
            task for task in (self._scan_task, self._countdown_task)
            if task is not None and task is not current and not task.done()
        ]
        self._scan_task = None
        self._countdown_task = None

        was_active = self._active
        self._active = False
        self._state = LockState.LOCKED
        self._clear_display()
        self._message = "Locked"

        try:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            await asyncio.to_thread(self._release_camera)

        if was_active:
            logger.info("Access controller deactivated")

    async def __aenter__(self) -> "AccessController":
        await self.activate()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.deactivate()
        return False

    def _release_camera(self) -> None:
        with self._camera_lock:
            self.camera.release()

    def _enter_error(self, reason: str) -> None:
        """Camera lost mid-session: halt recognition until deactivate()."""
        self._state = LockState.ERROR
        self._active = False
        self._clear_display()
        self._message = f"Camera unavailable: {reason}"
        logger.error(f"Camera lost, recognition halted: {reason}")

    # ------------------------------------------------------------------
    # Recognition loop
    # ------------------------------------------------------------------

    def _start_scanning(self) -> None:
        if self._scan_task is not None and not self._scan_task.done():
            if self._scan_task is not asyncio.current_task():
                self._scan_task.cancel()
        self._scan_task = asyncio.create_task(self._scan_loop(), name="doorlock-scan")

    def _stop_scanning(self) -> None:
        task = self._scan_task
        self._scan_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _scan_loop(self) -> None:
        while self._state is LockState.SCANNING:
            await asyncio.sleep(self.settings.tick_interval)
            if self._state is not LockState.SCANNING:
                break
            await self.recognize_once()

        if self._state is LockState.ERROR:
            await asyncio.to_thread(self._release_camera)

    def _capture_embedding(self) -> Optional[np.ndarray]:
        with self._camera_lock:
            frame = self.camera.read()
        if frame is None:
            return None
        return self.embedding_source.detect(frame)

    async def recognize_once(self) -> Optional[MatchResult]:
        """
        Run one recognition attempt.

        Does nothing unless the controller is scanning. Detection and
        matching errors are logged and leave the state unchanged; losing
        the camera moves the controller to the error state.

        Returns:
            The MatchResult that was acted on, or None.
        """
        if self._state is not LockState.SCANNING:
            return None

        try:
            embedding = await asyncio.to_thread(self._capture_embedding)

            # Deactivated or unlocked while the frame was being processed
            if self._state is not LockState.SCANNING:
                return None

            if embedding is None:
                self._recognized_identity_id = None
                self._recognized_name = None
                self._confidence = 0
                self._message = "Scanning..."
                return None

            result = self.matcher.match(
                embedding, self.gallery, self.settings.distance_threshold
            )
        except CameraUnavailable as e:
            self._enter_error(str(e))
            return None
        except Exception:
            logger.exception("Recognition error")
            return None

        if result is not None and result.confidence >= self.settings.confidence_threshold:
            await self.unlock(result.identity_id, result.name, result.confidence)
            return result

        self._recognized_identity_id = None
        self._recognized_name = None

        if result is None:
            self._confidence = 0
            self._message = "Scanning..."
            return None

        self._confidence = result.confidence
        self._message = "Access denied"
        logger.info(
            f"Access denied: best candidate confidence {result.confidence} "
            f"< {self.settings.confidence_threshold}"
        )
        await self._log_event(AccessEvent(
            outcome=AccessOutcome.DENIED,
            confidence=result.confidence,
        ))
        return result

    # ------------------------------------------------------------------
    # Unlock / relock
    # ------------------------------------------------------------------

    async def unlock(self, identity_id: str, name: str, confidence: int) -> bool:
        """
        Unlock the door for a recognized identity and start the relock countdown.

        A no-op while already unlocked: the countdown is neither restarted
        nor extended and nothing is logged.

        Returns:
            True if the door was unlocked by this call.
        """
        if self._state is LockState.UNLOCKED:
            logger.debug(f"Unlock for {name} ignored: already unlocked")
            return False

        if not self._active or self._state is not LockState.SCANNING:
            logger.warning(f"Unlock for {name} ignored: controller is {self._state.value}")
            return False

        duration = self.settings.unlock_duration

        self._stop_scanning()
        self._state = LockState.UNLOCKED
        self._recognized_identity_id = identity_id
        self._recognized_name = name
        self._confidence = confidence
        self._countdown = duration
        self._message = f"Unlocked: {name}"

        logger.info(f"Access granted: {name} (confidence={confidence}), relocking in {duration}s")

        await self._log_event(AccessEvent(
            outcome=AccessOutcome.GRANTED,
            confidence=confidence,
            identity_id=identity_id,
            name=name,
            unlock_duration=duration,
        ))

        # deactivate() may have run while the event was being written
        if self._state is not LockState.UNLOCKED:
            return True

        self._announce(f"Welcome {name}. Door unlocked. It will lock in {duration} seconds.")

        self._countdown_task = asyncio.create_task(self._run_countdown(), name="doorlock-countdown")
        return True

    async def _run_countdown(self) -> None:
        while self._countdown > 0:
            await asyncio.sleep(self.settings.countdown_interval)
            if self._state is not LockState.UNLOCKED:
                return
            self._countdown -= 1

        self._relock()

    def _relock(self) -> None:
        """Countdown finished: back to scanning. Not an access decision, so nothing is logged."""
        self._countdown_task = None
        self._state = LockState.SCANNING
        self._clear_display()
        self._message = "Scanning..."

        logger.info("Door relocked")
        self._announce("Door locked for your safety.")

        self._start_scanning()

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    async def _log_event(self, event: AccessEvent) -> None:
        # A failed log write must never interrupt door operation
        try:
            await asyncio.to_thread(self.store.append_access_event, event)
        except Exception as e:
            logger.error(f"Error logging access ({event.outcome.value}): {e}")

    def _announce(self, text: str) -> None:
        try:
            self.announcer.announce(text)
        except Exception as e:
            logger.warning(f"Announcement failed: {e}")

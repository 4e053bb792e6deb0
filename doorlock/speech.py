"""
Spoken feedback for lock events.

Announcements are best effort: a missing or failing text-to-speech engine
never affects the lock state. SpeechAnnouncer speaks through pyttsx3 on a
background thread so announce() never blocks the caller; SilentAnnouncer
only logs.
"""

import logging
import queue
import threading
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

_PYTTSX3_AVAILABLE = False

try:
    import pyttsx3
    _PYTTSX3_AVAILABLE = True
except ImportError:
    pass


class Announcer(Protocol):
    def announce(self, text: str) -> None:
        ...

    def stop(self) -> None:
        ...


class SilentAnnouncer:
    """Announcer used when speech is disabled or unavailable."""

    def announce(self, text: str) -> None:
        logger.info(f"[speech] {text}")

    def stop(self) -> None:
        pass


class SpeechAnnouncer:
    """
    Queue-backed pyttsx3 announcer.

    The engine is created on the worker thread, which owns it for its whole
    lifetime. Engine errors are logged and the announcement is dropped.

    Args:
        config: Dictionary with optional keys:
            - rate: Words per minute (default 150)
            - volume: 0.0 to 1.0 (default 0.9)
    """

    def __init__(self, config: Optional[dict] = None):
        if not _PYTTSX3_AVAILABLE:
            raise ImportError("pyttsx3 not installed. Run: pip install pyttsx3")

        config = config or {}
        self.rate = int(config.get("rate", 150))
        self.volume = float(config.get("volume", 0.9))

        self._queue: "queue.Queue[Optional[str]]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="speech", daemon=True)
        self._thread.start()

    def announce(self, text: str) -> None:
        logger.info(f"[speech] {text}")
        self._queue.put(text)

    def stop(self) -> None:
        """Stop the worker thread after pending announcements."""
        self._queue.put(None)

    def _run(self) -> None:
        try:
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
            engine.setProperty("volume", self.volume)
        except Exception as e:
            logger.warning(f"Speech engine unavailable, announcements disabled: {e}")
            return

        while True:
            text = self._queue.get()
            if text is None:
                break
            try:
                engine.say(text)
                engine.runAndWait()
            except Exception as e:
                logger.warning(f"Speech error: {e}")


def get_announcer(config: Optional[dict] = None):
    """
    Build the announcer described by the ``speech`` config section.

    Falls back to SilentAnnouncer when speech is disabled or pyttsx3 is
    not installed.
    """
    config = config or {}

    if not config.get("enabled", True):
        return SilentAnnouncer()

    if not _PYTTSX3_AVAILABLE:
        logger.warning("pyttsx3 not installed - voice announcements disabled")
        return SilentAnnouncer()

    return SpeechAnnouncer(config)

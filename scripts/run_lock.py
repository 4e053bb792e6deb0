"""
Run the door lock on the local webcam.

Loads every enrolled user, opens the camera and scans for faces until
interrupted. Prints a status line whenever the lock state, recognized user
or countdown changes.

Usage:
    python scripts/run_lock.py

    # Stricter unlock threshold, faster relock
    python scripts/run_lock.py --confidence-threshold 90 --unlock-duration 5

    # No voice announcements
    python scripts/run_lock.py --no-speech

Press Ctrl+C to deactivate the lock and exit.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from doorlock.access_controller import AccessController, AccessSettings, LockState
from doorlock.camera import Camera, CameraConfig
from doorlock.config import (
    get_access_config,
    get_camera_config,
    get_embedder_config,
    get_matching_config,
    get_speech_config,
)
from doorlock.errors import CameraUnavailable
from doorlock.face_embedder import FaceEmbedder
from doorlock.identity_store import get_identity_store
from doorlock.speech import SilentAnnouncer, get_announcer


def print_banner(text: str, char: str = "="):
    line = char * 60
    print(f"\n{line}")
    print(text)
    print(line)


def format_status(status) -> str:
    if status.state is LockState.UNLOCKED:
        return (f"[{status.state.value}] {status.recognized_name} "
                f"({status.confidence}%) - locking in {status.countdown}s")
    if status.state is LockState.SCANNING and status.confidence:
        return f"[{status.state.value}] {status.message} ({status.confidence}%)"
    return f"[{status.state.value}] {status.message}"


async def run(controller: AccessController, poll_interval: float) -> bool:
    """Scan until interrupted. Returns False if the camera was lost."""
    last_line = None
    async with controller:
        while controller.state is not LockState.ERROR:
            line = format_status(controller.status())
            if line != last_line:
                print(line)
                last_line = line
            await asyncio.sleep(poll_interval)

        print(format_status(controller.status()))
        return False


def main():
    parser = argparse.ArgumentParser(
        description="Run the face recognition door lock on the local webcam",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--confidence-threshold", type=int, default=None,
        help="Minimum confidence (0-100) to unlock (default: access.confidence_threshold)",
    )
    parser.add_argument(
        "--unlock-duration", type=int, default=None,
        help="Seconds before the door relocks (default: access.unlock_duration)",
    )
    parser.add_argument(
        "--no-speech", action="store_true",
        help="Disable voice announcements",
    )
    parser.add_argument(
        "--poll-interval", type=float, default=0.25,
        help="Seconds between status checks (default: 0.25)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    settings = AccessSettings.from_config(get_matching_config(), get_access_config())
    if args.confidence_threshold is not None:
        settings.confidence_threshold = args.confidence_threshold
    if args.unlock_duration is not None:
        settings.unlock_duration = args.unlock_duration

    store = get_identity_store()
    gallery = store.load_gallery()

    print_banner("Face Recognition Door Lock")
    print(f"  Enrolled users:       {len(gallery)}")
    if gallery:
        print(f"  Names:                {', '.join(gallery.names)}")
    print(f"  Confidence threshold: {settings.confidence_threshold}%")
    print(f"  Unlock duration:      {settings.unlock_duration}s")

    if not gallery:
        print("\nWARNING: No users enrolled. Run scripts/run_enroll.py first.")

    announcer = SilentAnnouncer() if args.no_speech else get_announcer(get_speech_config())

    controller = AccessController(
        camera=Camera(CameraConfig.from_dict(get_camera_config())),
        embedding_source=FaceEmbedder(get_embedder_config()),
        store=store,
        gallery=gallery,
        settings=settings,
        announcer=announcer,
    )

    ok = True
    try:
        ok = asyncio.run(run(controller, args.poll_interval))
    except CameraUnavailable as e:
        print(f"\nERROR: Camera unavailable: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nLock deactivated.")
    finally:
        announcer.stop()
        store.close()

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())

"""
Enroll a user from the local webcam.

Opens the camera, shows a live preview and captures one face sample per
SPACE press (or automatically every --interval seconds). Frames without a
detectable face are reported and do not count. Once the target number of
samples is reached the user is saved to the identity store.

Usage:
    # Press SPACE to capture each sample
    python scripts/run_enroll.py --user-name "Alice"

    # Capture automatically every 0.5 s
    python scripts/run_enroll.py --user-name "Alice" --interval 0.5

    # Headless (no preview window)
    python scripts/run_enroll.py --user-name "Alice" --interval 1 --no-preview

Controls (preview window):
    - SPACE: capture a sample
    - q / ESC: cancel enrollment (nothing is saved)
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import cv2

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from doorlock.camera import Camera, CameraConfig
from doorlock.config import get_camera_config, get_embedder_config, get_enrollment_config
from doorlock.enrollment import EnrollmentSession
from doorlock.errors import CameraUnavailable, DuplicateIdentity, PersistenceFailure
from doorlock.face_embedder import FaceEmbedder
from doorlock.identity_store import get_identity_store

WINDOW_NAME = "Enrollment"


def print_banner(text: str, char: str = "="):
    line = char * 60
    print(f"\n{line}")
    print(text)
    print(line)


def draw_progress(frame, collected: int, target: int, message: str):
    """Overlay the sample counter and last message on a preview frame."""
    display = frame.copy()
    cv2.putText(display, f"Samples: {collected}/{target}", (10, 30),
                cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 255, 0), 2)
    if message:
        cv2.putText(display, message, (10, 65),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)
    cv2.putText(display, "SPACE: capture   q: cancel", (10, display.shape[0] - 15),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)
    return display


def main():
    parser = argparse.ArgumentParser(
        description="Enroll a new user for the face recognition door lock",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--user-name", type=str, required=True,
        help="Display name of the user to enroll",
    )
    parser.add_argument(
        "--samples", type=int, default=None,
        help="Number of face samples to collect (default: enrollment.sample_count)",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Capture automatically every N seconds instead of on SPACE",
    )
    parser.add_argument(
        "--no-preview", action="store_true",
        help="Do not open a preview window (requires --interval)",
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

    if args.no_preview and args.interval is None:
        parser.error("--no-preview requires --interval")

    sample_count = args.samples or int(get_enrollment_config().get("sample_count", 10))

    print_banner(f"Enrolling: {args.user_name} ({sample_count} samples)")

    store = get_identity_store()
    embedder = FaceEmbedder(get_embedder_config())
    camera = Camera(CameraConfig.from_dict(get_camera_config()))

    session = EnrollmentSession(
        args.user_name, store,
        embedding_source=embedder,
        camera=camera,
        sample_count=sample_count,
    )

    try:
        session.start()
    except (ValueError, DuplicateIdentity) as e:
        print(f"\nERROR: {e}")
        return 1
    except CameraUnavailable as e:
        print(f"\nERROR: Camera unavailable: {e}")
        return 1

    message = ""
    last_capture = 0.0

    try:
        while not session.is_complete:
            frame = camera.read()
            if frame is None:
                continue

            capture_now = False
            if args.interval is not None and time.time() - last_capture >= args.interval:
                capture_now = True

            if not args.no_preview:
                cv2.imshow(WINDOW_NAME, draw_progress(
                    frame, session.samples_collected, sample_count, message))
                key = cv2.waitKey(1) & 0xFF
                if key in (ord("q"), 27):
                    print("\nEnrollment cancelled.")
                    session.cancel()
                    return 1
                if key == ord(" "):
                    capture_now = True

            if not capture_now:
                continue

            last_capture = time.time()
            try:
                result = session.capture(frame)
            except PersistenceFailure as e:
                print(f"\nERROR: Error saving to database: {e}")
                session.cancel()
                return 1
            except DuplicateIdentity as e:
                print(f"\nERROR: {e}")
                session.cancel()
                return 1

            message = result.message
            print(f"  {message}")

    except KeyboardInterrupt:
        print("\nEnrollment cancelled.")
        session.cancel()
        return 1
    finally:
        if not args.no_preview:
            cv2.destroyAllWindows()

    identity = session.identity
    print_banner("Enrollment complete")
    print(f"  User ID:   {identity.identity_id}")
    print(f"  User name: {identity.name}")
    print(f"  Samples:   {identity.n_samples}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Camera source for the door lock.

Wraps an OpenCV VideoCapture device with an explicit open/read/release
lifecycle. The access controller and enrollment sessions open the camera
when they start and release it on every exit path.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from doorlock.errors import CameraUnavailable

logger = logging.getLogger(__name__)


@dataclass
class CameraConfig:
    """Configuration for camera capture."""
    device_index: int = 0
    width: int = 640
    height: int = 480

    @classmethod
    def from_dict(cls, config: Optional[dict]) -> "CameraConfig":
        config = config or {}
        return cls(
            device_index=int(config.get("device_index", 0)),
            width=int(config.get("width", 640)),
            height=int(config.get("height", 480)),
        )


class Camera:
    """
    Manages a webcam device.

    This component handles:
    - Opening/releasing the device
    - Reading single BGR frames

    Raises CameraUnavailable when the device cannot be opened, or when a
    frame is requested from a camera that is not open.
    """

    def __init__(self, config: Optional[CameraConfig] = None):
        self.config = config or CameraConfig()
        self._cap: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        """
        Open the webcam device.

        Raises:
            CameraUnavailable: If OpenCV cannot open the device.
        """
        if self._cap is not None:
            self.release()

        cap = cv2.VideoCapture(self.config.device_index)

        if not cap.isOpened():
            cap.release()
            raise CameraUnavailable(
                f"Could not open camera {self.config.device_index}. "
                "Check that it is connected and not in use."
            )

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)

        self._cap = cap
        logger.info(
            f"Opened camera {self.config.device_index} at "
            f"{self.config.width}x{self.config.height}"
        )

    def release(self) -> None:
        """Release the webcam device. Safe to call more than once."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"Released camera {self.config.device_index}")

    def read(self) -> Optional[np.ndarray]:
        """
        Read a single frame.

        Returns:
            BGR frame, or None if the device dropped the frame.

        Raises:
            CameraUnavailable: If the camera is not open.
        """
        if self._cap is None:
            raise CameraUnavailable("Camera is not open")

        ret, frame = self._cap.read()
        if not ret:
            logger.debug("Camera returned no frame")
            return None

        return frame

    @property
    def is_open(self) -> bool:
        """Check if the camera is currently open."""
        return self._cap is not None and self._cap.isOpened()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def decode_frame(frame_b64: str) -> Optional[np.ndarray]:
    """
    Decode a base64-encoded JPEG image to a BGR numpy array.

    Returns:
        BGR numpy array, or None if decoding fails.
    """
    try:
        img_bytes = base64.b64decode(frame_b64, validate=True)
    except ValueError as e:
        logger.warning(f"Failed to decode frame: {e}")
        return None

    np_arr = np.frombuffer(img_bytes, np.uint8)
    if np_arr.size == 0:
        return None
    return cv2.imdecode(np_arr, cv2.IMREAD_COLOR)

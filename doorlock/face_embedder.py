"""
Face Embedding Extractor

Extracts a fixed-length identity embedding from the single most prominent
face in a camera frame. The embedding model is treated as an opaque
capability: frame in, vector (or nothing) out.

Supports two backends:
  - face_recognition (preferred): dlib ResNet, 128-dim embeddings on the
    same Euclidean scale as the default 0.6 distance threshold
  - facenet-pytorch (alternative): InceptionResnetV1 with VGGFace2
    pretraining, 512-dim L2-normalized embeddings. Distances run on a
    different scale, so retune matching.distance_threshold when using it.

Usage:
    from doorlock.face_embedder import FaceEmbedder

    embedder = FaceEmbedder(config)
    embedding = embedder.detect(frame_bgr)   # (128,) or None
"""

import logging
from typing import Optional

import cv2
import numpy as np

from doorlock.errors import NoFaceDetected

logger = logging.getLogger(__name__)

# Backend availability flags
_FACE_RECOGNITION_AVAILABLE = False
_FACENET_AVAILABLE = False

try:
    import face_recognition
    _FACE_RECOGNITION_AVAILABLE = True
except ImportError:
    pass

try:
    from facenet_pytorch import MTCNN, InceptionResnetV1
    import torch
    _FACENET_AVAILABLE = True
except ImportError:
    pass


class FaceEmbedder:
    """
    Extract identity embeddings from camera frames.

    detect() is side-effect free beyond reading the frame: the same frame
    always yields the same embedding.

    Args:
        config: Dictionary with keys:
            - backend: "face_recognition", "facenet" or "auto"
            - model: face_recognition encoder, "small" or "large"
            - upsample: Times to upsample when locating faces (default 1)
            - device: "cuda" or "cpu" (facenet only)
    """

    def __init__(self, config: Optional[dict] = None):
        if config is None:
            config = {}

        self.model_name = config.get("model", "small")
        self.upsample = int(config.get("upsample", 1))
        self.device = config.get("device", "cpu")

        requested_backend = config.get("backend", "auto")
        if requested_backend == "auto":
            if _FACE_RECOGNITION_AVAILABLE:
                self.backend = "face_recognition"
            elif _FACENET_AVAILABLE:
                self.backend = "facenet"
            else:
                raise ImportError(
                    "No face embedding backend available. "
                    "Install face_recognition: pip install face_recognition\n"
                    "Or facenet-pytorch: pip install facenet-pytorch"
                )
        else:
            self.backend = requested_backend

        self._model = None
        self._detector = None  # For facenet backend
        self.is_loaded = False

    @property
    def embedding_dim(self) -> int:
        return 128 if self.backend == "face_recognition" else 512

    def load_model(self) -> None:
        """Load the face recognition model. Called lazily by detect()."""
        if self.is_loaded:
            return

        if self.backend == "face_recognition":
            if not _FACE_RECOGNITION_AVAILABLE:
                raise ImportError("face_recognition not installed. Run: pip install face_recognition")
            # dlib models ship with face_recognition_models and load on import
        elif self.backend == "facenet":
            self._load_facenet()
        else:
            raise ValueError(f"Unknown backend: {self.backend}")

        self.is_loaded = True
        logger.info(f"FaceEmbedder loaded (backend={self.backend}, model={self.model_name})")

    def _load_facenet(self) -> None:
        """Load facenet-pytorch model."""
        if not _FACENET_AVAILABLE:
            raise ImportError("facenet-pytorch not installed. Run: pip install facenet-pytorch")

        device = torch.device(self.device if torch.cuda.is_available() else "cpu")

        self._detector = MTCNN(
            image_size=160,
            margin=20,
            device=device,
            select_largest=True,
        )
        self._model = InceptionResnetV1(pretrained="vggface2").eval().to(device)

    def detect(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """
        Extract the embedding of the largest face in a frame.

        Args:
            frame: Camera frame in BGR format (H, W, 3), uint8.

        Returns:
            Embedding as float32 ndarray, or None if no face is found.
        """
        if frame is None:
            return None

        if not self.is_loaded:
            self.load_model()

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        if self.backend == "face_recognition":
            return self._detect_face_recognition(rgb)
        return self._detect_facenet(rgb)

    def embed(self, frame: np.ndarray) -> np.ndarray:
        """
        Extract the embedding of the largest face, which must be present.

        Raises:
            NoFaceDetected: If the frame contains no detectable face.
        """
        embedding = self.detect(frame)
        if embedding is None:
            raise NoFaceDetected("No face detected in frame")
        return embedding

    def _detect_face_recognition(self, rgb: np.ndarray) -> Optional[np.ndarray]:
        """Extract embedding using face_recognition (dlib)."""
        locations = face_recognition.face_locations(
            rgb, number_of_times_to_upsample=self.upsample
        )
        if not locations:
            return None

        # (top, right, bottom, left); keep the largest face only
        largest = max(locations, key=lambda box: (box[2] - box[0]) * (box[1] - box[3]))

        encodings = face_recognition.face_encodings(
            rgb, known_face_locations=[largest], model=self.model_name
        )
        if not encodings:
            return None

        return np.asarray(encodings[0], dtype=np.float32)

    def _detect_facenet(self, rgb: np.ndarray) -> Optional[np.ndarray]:
        """Extract embedding using facenet-pytorch."""
        face_tensor = self._detector(rgb)
        if face_tensor is None:
            return None

        if face_tensor.dim() == 3:
            face_tensor = face_tensor.unsqueeze(0)

        device = next(self._model.parameters()).device
        face_tensor = face_tensor.to(device)

        with torch.no_grad():
            embedding = self._model(face_tensor).cpu().numpy().flatten()

        # L2 normalize
        norm = np.linalg.norm(embedding)
        if norm > 1e-8:
            embedding = embedding / norm

        return embedding.astype(np.float32)


# Singleton instance for the embedder
_embedder_instance: Optional[FaceEmbedder] = None


def get_face_embedder(config: Optional[dict] = None) -> FaceEmbedder:
    """
    Get or create the shared FaceEmbedder.

    Args:
        config: Embedder configuration. If None, uses the "embedder"
                section of config.yaml.
    """
    global _embedder_instance

    if _embedder_instance is None:
        if config is None:
            from doorlock.config import get_embedder_config
            config = get_embedder_config()
        _embedder_instance = FaceEmbedder(config)

    return _embedder_instance

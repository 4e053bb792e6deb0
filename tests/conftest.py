"""
Shared fixtures for the door lock test suite.

Provides in-memory stand-ins for the camera, the embedding model and the
speech engine, plus a throwaway IdentityStore per test.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from doorlock.errors import CameraUnavailable
from doorlock.identity_store import Identity, IdentityStore

EMBEDDING_DIM = 128


class FakeCamera:
    """Camera double that hands out blank frames."""

    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.lost = False
        self.is_open = False
        self.open_count = 0
        self.release_count = 0
        self.reads = 0

    def open(self):
        if self.fail_open:
            raise CameraUnavailable("No camera found")
        self.is_open = True
        self.open_count += 1

    def read(self):
        if self.lost or not self.is_open:
            raise CameraUnavailable("Camera is not open")
        self.reads += 1
        return np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self):
        self.is_open = False
        self.release_count += 1


class ScriptedEmbedder:
    """
    Embedding source that replays a fixed list of results.

    Once the script runs out, ``default`` is returned for every frame.
    """

    def __init__(self, script=(), default=None):
        self.script = list(script)
        self.default = default
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if self.script:
            return self.script.pop(0)
        return self.default


class RecordingAnnouncer:
    def __init__(self):
        self.spoken = []
        self.stopped = False

    def announce(self, text):
        self.spoken.append(text)

    def stop(self):
        self.stopped = True


def embedding_at(distance: float, axis: int = 0, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Embedding at exactly ``distance`` from the origin along one axis."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[axis] = distance
    return vec


def make_identity(identity_id: str, name: str, distances, axis: int = 0) -> Identity:
    """Identity whose samples sit at the given distances from the origin probe."""
    return Identity(
        identity_id=identity_id,
        name=name,
        embeddings=np.stack([embedding_at(d, axis) for d in distances]),
    )


@pytest.fixture
def probe():
    """Query embedding at the origin."""
    return np.zeros(EMBEDDING_DIM, dtype=np.float32)


@pytest.fixture
def store(tmp_path):
    """IdentityStore backed by a temporary directory."""
    store = IdentityStore(
        identities_dir=str(tmp_path / "identities"),
        db_path=str(tmp_path / "doorlock.sqlite"),
    )
    yield store
    store.close()


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def announcer():
    return RecordingAnnouncer()

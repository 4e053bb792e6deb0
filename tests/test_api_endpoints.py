"""
Tests for API Endpoints

This test suite verifies:
- Health check endpoint
- Lock activation, status and deactivation endpoints
- Access history endpoint
- User listing endpoints
- WebSocket enrollment endpoint

The camera and the embedding model are replaced with in-memory doubles, and
each test gets its own temporary identity store.

Run with: pytest tests/test_api_endpoints.py -v
"""

import asyncio
import base64
import threading
import time
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import EMBEDDING_DIM, FakeCamera, RecordingAnnouncer, ScriptedEmbedder

import doorlock.identity_store as identity_store_module
import doorlock.speech as speech_module
import api.routes.access as access_routes
from doorlock.access_controller import AccessController, AccessSettings
from doorlock.identity_store import AccessEvent, AccessOutcome


def sample(seed: int) -> np.ndarray:
    return np.random.default_rng(seed).normal(size=EMBEDDING_DIM).astype(np.float32)


def encode_frame() -> str:
    ok, buffer = cv2.imencode(".jpg", np.zeros((32, 32, 3), dtype=np.uint8))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


# ============================================================
# Test Fixtures
# ============================================================

@pytest.fixture
def app_env(store, monkeypatch):
    """Point the API at a temporary store and a fresh lock service."""
    monkeypatch.setattr(identity_store_module, "_store_instance", store)
    monkeypatch.setattr(access_routes, "_lock_service", access_routes.LockService())
    monkeypatch.setattr(access_routes, "get_speech_config", lambda: {"enabled": False})
    return store


@pytest.fixture
def client(app_env):
    from api.app import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def fake_controller(app_env, monkeypatch):
    """Make lock activation build a controller over a fake camera."""
    cameras = []

    def build_controller(announcer=None):
        camera = FakeCamera()
        cameras.append(camera)
        return AccessController(
            camera=camera,
            embedding_source=ScriptedEmbedder(),
            store=app_env,
            gallery=app_env.load_gallery(),
            settings=AccessSettings(tick_interval=3600),
        )

    monkeypatch.setattr(access_routes, "build_controller", build_controller)
    return cameras


# ============================================================
# System endpoints
# ============================================================

class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_status(self, client, app_env):
        app_env.create_identity("Alice", [sample(0)])

        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["lock_state"] == "locked"
        assert data["enrolled_users"] == 1
        assert data["access_events"] == 0

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "docs" in data


# ============================================================
# Lock endpoints
# ============================================================

class TestLockEndpoints:

    def test_initial_status(self, client):
        response = client.get("/lock/status")
        assert response.status_code == 200

        data = response.json()
        assert data["state"] == "locked"
        assert data["is_active"] is False

    def test_activate_and_deactivate(self, client, app_env, fake_controller):
        app_env.create_identity("Alice", [sample(0)])

        response = client.post("/lock/activate")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "scanning"
        assert data["is_active"] is True
        assert data["gallery_size"] == 1
        assert fake_controller[0].is_open

        response = client.post("/lock/deactivate")
        assert response.status_code == 200
        assert response.json()["state"] == "locked"
        assert not fake_controller[0].is_open

    def test_activate_twice_conflicts(self, client, fake_controller):
        assert client.post("/lock/activate").status_code == 200
        assert client.post("/lock/activate").status_code == 409
        assert len(fake_controller) == 1

    def test_deactivate_when_inactive(self, client):
        response = client.post("/lock/deactivate")
        assert response.status_code == 200
        assert response.json()["state"] == "locked"

    def test_reactivate_builds_new_session(self, client, app_env, fake_controller):
        client.post("/lock/activate")
        client.post("/lock/deactivate")

        app_env.create_identity("Bob", [sample(1)])
        response = client.post("/lock/activate")

        assert response.json()["gallery_size"] == 1
        assert len(fake_controller) == 2

    def test_camera_unavailable(self, client, app_env, monkeypatch):
        def build_controller(announcer=None):
            return AccessController(
                camera=FakeCamera(fail_open=True),
                embedding_source=ScriptedEmbedder(),
                store=app_env,
                gallery=app_env.load_gallery(),
                settings=AccessSettings(tick_interval=3600),
            )

        monkeypatch.setattr(access_routes, "build_controller", build_controller)

        response = client.post("/lock/activate")
        assert response.status_code == 503

        assert client.get("/lock/status").json()["state"] == "error"
        health = client.get("/health").json()
        assert health["status"] == "degraded"
        assert health["lock_state"] == "error"

        # Deactivating clears the error
        assert client.post("/lock/deactivate").json()["state"] == "locked"

    def test_activate_replaces_controller_after_camera_loss(self, client, app_env, monkeypatch):
        cameras = []

        def build_controller(announcer=None):
            camera = FakeCamera()
            cameras.append(camera)
            return AccessController(
                camera=camera,
                embedding_source=ScriptedEmbedder(),
                store=app_env,
                gallery=app_env.load_gallery(),
                settings=AccessSettings(tick_interval=0.01),
            )

        monkeypatch.setattr(access_routes, "build_controller", build_controller)

        assert client.post("/lock/activate").status_code == 200
        cameras[0].lost = True

        deadline = time.monotonic() + 5
        status = client.get("/lock/status").json()
        while status["state"] != "error" and time.monotonic() < deadline:
            time.sleep(0.02)
            status = client.get("/lock/status").json()

        assert status["state"] == "error"
        assert status["is_active"] is False

        response = client.post("/lock/activate")
        assert response.status_code == 200
        assert response.json()["state"] == "scanning"
        assert len(cameras) == 2

        client.post("/lock/deactivate")

    def test_shutdown_stops_announcer(self, app_env, fake_controller, monkeypatch):
        from api.app import app

        announcer = RecordingAnnouncer()
        monkeypatch.setattr(access_routes, "get_announcer", lambda config: announcer)

        with TestClient(app) as client:
            client.post("/lock/activate")
            client.post("/lock/deactivate")
            client.post("/lock/activate")
            assert not announcer.stopped

        assert announcer.stopped
        assert access_routes.get_lock_service().announcer is None


class TestLockService:
    """The API's holder for the current AccessController."""

    @staticmethod
    def speech_threads():
        return [t for t in threading.enumerate() if t.name == "speech" and t.is_alive()]

    def test_activation_cycles_share_one_speech_worker(self, app_env, monkeypatch):
        fake_pyttsx3 = MagicMock()
        monkeypatch.setattr(speech_module, "pyttsx3", fake_pyttsx3, raising=False)
        monkeypatch.setattr(speech_module, "_PYTTSX3_AVAILABLE", True)
        monkeypatch.setattr(access_routes, "get_speech_config", lambda: {"enabled": True})
        monkeypatch.setattr(access_routes, "Camera", lambda config: FakeCamera())
        monkeypatch.setattr(access_routes, "get_face_embedder", lambda: ScriptedEmbedder())

        before = len(self.speech_threads())
        service = access_routes.LockService()

        async def scenario():
            for _ in range(5):
                await service.activate()
                await service.deactivate()
            during = len(self.speech_threads())

            worker = service.announcer._thread
            await service.close()
            worker.join(timeout=5)
            return during, worker

        during, worker = asyncio.run(scenario())

        assert during == before + 1
        assert not worker.is_alive()
        assert len(self.speech_threads()) == before
        assert fake_pyttsx3.init.call_count == 1

    def test_close_without_activation(self, app_env):
        service = access_routes.LockService()
        asyncio.run(service.close())
        assert service.announcer is None
        assert service.controller is None


class TestAccessLogEndpoint:

    def test_empty(self, client):
        response = client.get("/access-logs")
        assert response.status_code == 200
        assert response.json() == {"events": [], "total": 0}

    def test_newest_first_with_limit(self, client, app_env):
        app_env.append_access_event(AccessEvent(
            outcome=AccessOutcome.DENIED, confidence=70, timestamp="2024-05-01T09:00:00",
        ))
        app_env.append_access_event(AccessEvent(
            outcome=AccessOutcome.GRANTED, confidence=90, identity_id="usr_bob00001",
            name="Bob", unlock_duration=10, timestamp="2024-05-01T09:00:05",
        ))

        data = client.get("/access-logs", params={"limit": 1}).json()
        assert data["total"] == 1
        event = data["events"][0]
        assert event["outcome"] == "granted"
        assert event["name"] == "Bob"
        assert event["unlock_duration"] == 10

        data = client.get("/access-logs").json()
        assert [e["outcome"] for e in data["events"]] == ["granted", "denied"]
        assert data["events"][1]["identity_id"] is None

    def test_invalid_limit(self, client):
        assert client.get("/access-logs", params={"limit": 0}).status_code == 422


# ============================================================
# User endpoints
# ============================================================

class TestUserManagementEndpoints:
    """Tests for user management endpoints."""

    def test_list_users(self, client, app_env):
        app_env.create_identity("Alice", [sample(0), sample(1)])
        app_env.create_identity("Bob", [sample(2)])

        response = client.get("/users")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 2
        user = data["users"][0]
        assert "user_id" in user
        assert "user_name" in user
        assert "enrolled_at" in user
        assert "n_samples" in user

    def test_get_user(self, client, app_env):
        identity = app_env.create_identity("Alice", [sample(0), sample(1)])

        response = client.get(f"/users/{identity.identity_id}")
        assert response.status_code == 200

        data = response.json()
        assert data["user_name"] == "Alice"
        assert data["n_samples"] == 2
        assert data["embedding_dim"] == EMBEDDING_DIM

    def test_get_nonexistent_user(self, client):
        response = client.get("/users/usr_nonexistent")
        assert response.status_code == 404


# ============================================================
# Enrollment WebSocket
# ============================================================

class TestEnrollmentWebSocket:

    @pytest.fixture
    def embedder(self, app_env, monkeypatch):
        embedder = ScriptedEmbedder([sample(0), None, sample(1)])
        monkeypatch.setattr("api.routes.enrollment.get_face_embedder", lambda: embedder)
        monkeypatch.setattr(
            "api.routes.enrollment.get_enrollment_config", lambda: {"sample_count": 2}
        )
        return embedder

    def test_full_enrollment(self, client, app_env, embedder):
        frame = {"type": "frame", "data": encode_frame()}

        with client.websocket_connect("/ws/enroll/Alice") as ws:
            ws.send_json(frame)
            first = ws.receive_json()
            assert first["type"] == "capture_status"
            assert first["face_detected"] is True
            assert first["samples_collected"] == 1
            assert first["target_count"] == 2

            ws.send_json(frame)
            no_face = ws.receive_json()
            assert no_face["face_detected"] is False
            assert no_face["samples_collected"] == 1

            ws.send_json(frame)
            last = ws.receive_json()
            assert last["samples_collected"] == 2

            complete = ws.receive_json()
            assert complete["type"] == "enrollment_complete"
            assert complete["user_name"] == "Alice"
            assert complete["n_samples"] == 2

        assert app_env.identity_exists("Alice")

    def test_duplicate_name(self, client, app_env, embedder):
        app_env.create_identity("Alice", [sample(9)])

        with client.websocket_connect("/ws/enroll/Alice") as ws:
            error = ws.receive_json()

        assert error["type"] == "error"
        assert error["code"] == "USER_EXISTS"

    def test_invalid_image(self, client, app_env, embedder):
        with client.websocket_connect("/ws/enroll/Alice") as ws:
            ws.send_json({"type": "frame", "data": "not an image!"})
            error = ws.receive_json()
            assert error["code"] == "INVALID_IMAGE"

            ws.send_json({"type": "cancel"})
            cancelled = ws.receive_json()

        assert cancelled["type"] == "enrollment_cancelled"
        assert embedder.calls == 0

    def test_cancel_discards_samples(self, client, app_env, embedder):
        with client.websocket_connect("/ws/enroll/Alice") as ws:
            ws.send_json({"type": "frame", "data": encode_frame()})
            ws.receive_json()

            ws.send_json({"type": "cancel"})
            cancelled = ws.receive_json()

        assert cancelled["type"] == "enrollment_cancelled"
        assert cancelled["discarded_samples"] == 1
        assert not app_env.identity_exists("Alice")

    def test_blank_name(self, client, app_env, embedder):
        with client.websocket_connect("/ws/enroll/%20") as ws:
            error = ws.receive_json()

        assert error["type"] == "error"
        assert error["code"] == "INVALID_NAME"

    def test_detection_failure_keeps_session(self, client, app_env, monkeypatch):
        embedder = MagicMock()
        embedder.detect.side_effect = RuntimeError("model crashed")
        monkeypatch.setattr("api.routes.enrollment.get_face_embedder", lambda: embedder)

        with client.websocket_connect("/ws/enroll/Alice") as ws:
            ws.send_json({"type": "frame", "data": encode_frame()})
            error = ws.receive_json()
            assert error["code"] == "DETECTION_FAILED"

            ws.send_json({"type": "cancel"})
            cancelled = ws.receive_json()

        assert cancelled["type"] == "enrollment_cancelled"
        assert cancelled["discarded_samples"] == 0

    def test_commit_runs_off_event_loop(self, client, app_env, embedder, monkeypatch):
        import api.routes.enrollment as enrollment_routes

        loop_threads = []
        commit_threads = []
        original_decode = enrollment_routes.decode_frame
        original_create = app_env.create_identity

        def decode_frame(data):
            loop_threads.append(threading.get_ident())
            return original_decode(data)

        def create_identity(name, embeddings):
            commit_threads.append(threading.get_ident())
            return original_create(name, embeddings)

        monkeypatch.setattr(enrollment_routes, "decode_frame", decode_frame)
        monkeypatch.setattr(app_env, "create_identity", create_identity)

        frame = {"type": "frame", "data": encode_frame()}
        with client.websocket_connect("/ws/enroll/Alice") as ws:
            for _ in range(3):
                ws.send_json(frame)
                ws.receive_json()
            complete = ws.receive_json()

        assert complete["type"] == "enrollment_complete"
        assert len(commit_threads) == 1
        assert commit_threads[0] not in set(loop_threads)


# ============================================================
# Schemas
# ============================================================

class TestSchemas:
    """Tests for Pydantic schemas."""

    def test_capture_status_response(self):
        from api.schemas import CaptureStatusResponse

        response = CaptureStatusResponse(
            face_detected=True,
            samples_collected=3,
            target_count=10,
            message="Sample 3/10 captured!",
        )

        data = response.model_dump()
        assert data["type"] == "capture_status"
        assert data["samples_collected"] == 3

    def test_enrollment_complete_response(self):
        from api.schemas import EnrollmentCompleteResponse

        response = EnrollmentCompleteResponse(
            user_id="usr_abc12345",
            user_name="TestUser",
            n_samples=10,
        )

        data = response.model_dump()
        assert data["type"] == "enrollment_complete"
        assert data["n_samples"] == 10


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Tests for API Endpoints

This test suite verifies:
- Health check and root endpoints
- Enrollment and verification from uploaded frames
- Record management endpoints (list, get, logs, delete)
- Error mapping (400 undecodable frames, 404 unknown identity)

The record store is replaced by an InMemoryRecordStore so no files are
written.

Run with: pytest tests/test_api_endpoints.py -v
"""

import asyncio
import base64
import os
import sys
from unittest.mock import MagicMock, patch

import cv2
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from core.record_store import InMemoryRecordStore
from conftest import make_face_pixels, make_uniform_pixels


def encode_frame(rgb) -> str:
    """RGB array -> base64 PNG (lossless, so the gate sees the exact pixels)."""
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


FACE = encode_frame(make_face_pixels())
OTHER_FACE = encode_frame(make_face_pixels(shifted=True))
DARK = encode_frame(make_uniform_pixels((15, 15, 15)))


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def client(store):
    """Create test client backed by an in-memory record store."""
    with patch("api.app.get_record_store", return_value=store), \
            patch("api.routes.enrollment.get_record_store", return_value=store), \
            patch("api.routes.verification.get_record_store", return_value=store), \
            patch("api.routes.management.get_record_store", return_value=store):
        from api.app import app
        yield TestClient(app)


class TestSystemEndpoints:
    """Tests for health and root endpoints."""

    def test_health_check_returns_status(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage_ready"] is True
        assert data["enrolled_identities"] == 0

    def test_health_check_degraded(self):
        broken = MagicMock()
        broken.get_stats.side_effect = RuntimeError("database is locked")

        with patch("api.app.get_record_store", return_value=broken):
            from api.app import app
            response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["storage_ready"] is False

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "docs" in data


class TestEnrollEndpoint:
    """Tests for POST /enroll/{identity}."""

    def test_enroll_success(self, client, store):
        response = client.post("/enroll/alice", json={"frames": [FACE] * 5})
        assert response.status_code == 200

        data = response.json()
        assert data["success"] is True
        assert data["state"] == "completed"
        assert data["n_descriptors"] == 5
        assert data["captured"] == 5
        assert data["failure"] is None
        assert store.exists("alice")

    def test_enroll_timeout(self, client, store):
        response = client.post("/enroll/bob", json={"frames": [DARK] * 3})
        assert response.status_code == 200

        data = response.json()
        assert data["success"] is False
        assert data["failure"]["kind"] == "timeout"
        assert data["attempts"] == 50
        assert not store.exists("bob")

    def test_enroll_undecodable_frame(self, client, store):
        garbage = base64.b64encode(b"definitely not an image").decode("ascii")
        response = client.post("/enroll/alice", json={"frames": [FACE, garbage]})

        assert response.status_code == 400
        assert "frame 1" in response.json()["detail"]
        assert not store.exists("alice")

    def test_enroll_requires_frames(self, client):
        response = client.post("/enroll/alice", json={"frames": []})
        assert response.status_code == 422

    def test_enroll_too_many_frames(self, client):
        response = client.post("/enroll/alice", json={"frames": [FACE] * 41})
        assert response.status_code == 400


class TestVerifyEndpoint:
    """Tests for POST /verify/{identity}."""

    def test_verify_unknown_identity(self, client):
        response = client.post("/verify/nobody", json={"frames": [FACE] * 3})
        assert response.status_code == 404

    def test_enroll_then_verify(self, client):
        client.post("/enroll/alice", json={"frames": [FACE] * 5})
        response = client.post("/verify/alice", json={"frames": [FACE] * 3})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["max_similarity"] == pytest.approx(1.0)
        assert data["good_match_count"] == 15
        assert data["required_good_matches"] == 3

    def test_verify_different_face(self, client):
        client.post("/enroll/alice", json={"frames": [FACE] * 5})
        response = client.post("/verify/alice", json={"frames": [OTHER_FACE] * 3})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["failure"]["kind"] == "verification_failed"
        assert data["max_similarity"] < 0.88


class TestRecordEndpoints:
    """Tests for record management endpoints."""

    @pytest.fixture
    def enrolled(self, client):
        response = client.post("/enroll/alice", json={"frames": [FACE] * 5})
        assert response.json()["success"]
        return client

    def test_list_records(self, enrolled):
        response = enrolled.get("/records")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 1
        assert data["records"][0]["identity"] == "alice"
        assert data["records"][0]["n_descriptors"] == 5

    def test_get_record(self, enrolled):
        response = enrolled.get("/records/alice")
        assert response.status_code == 200

        data = response.json()
        assert data["identity"] == "alice"
        assert data["descriptor_length"] == 3492
        assert data["metadata"]["valid"] == 5

    def test_get_record_not_found(self, client):
        response = client.get("/records/nobody")
        assert response.status_code == 404

    def test_record_logs(self, enrolled):
        enrolled.post("/verify/alice", json={"frames": [FACE] * 3})
        response = enrolled.get("/records/alice/logs")
        assert response.status_code == 200

        logs = response.json()["logs"]
        assert [log["operation"] for log in logs] == ["verify", "enroll"]
        assert logs[0]["success"] is True

    def test_delete_record(self, enrolled, store):
        response = enrolled.delete("/records/alice")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert not store.exists("alice")

        response = enrolled.post("/verify/alice", json={"frames": [FACE] * 3})
        assert response.status_code == 404

    def test_delete_record_not_found(self, client):
        response = client.delete("/records/nobody")
        assert response.status_code == 404


class TestIdentityLocks:
    """Tests for the per-identity request lock registry."""

    def test_same_identity_serialized(self):
        from api.routes import common

        async def scenario():
            order = []
            waiting = []

            async def worker(name):
                async with common.identity_lock("alice"):
                    order.append(f"{name}-in")
                    await asyncio.sleep(0)
                    waiting.append(common._lock_users["alice"])
                    order.append(f"{name}-out")

            await asyncio.gather(worker("a"), worker("b"))
            return order, waiting

        order, waiting = asyncio.run(scenario())

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert waiting == [2, 1]
        assert "alice" not in common._identity_locks
        assert "alice" not in common._lock_users

    def test_released_on_error(self):
        from api.routes import common

        async def scenario():
            async with common.identity_lock("bob"):
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())
        assert "bob" not in common._identity_locks

    def test_unknown_identities_do_not_accumulate(self, client):
        from api.routes import common

        for i in range(5):
            response = client.post(f"/verify/ghost-{i}", json={"frames": [FACE]})
            assert response.status_code == 404

        assert not any(key.startswith("ghost-") for key in common._identity_locks)

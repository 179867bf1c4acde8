"""Test collaboration API endpoints."""

import pytest
from fastapi.testclient import TestClient


def change(change_id, user_id, timestamp, value):
    return {
        "id": change_id,
        "type": "cell-update",
        "position": {"row": 1, "col": 0},
        "newValue": value,
        "userId": user_id,
        "timestamp": timestamp,
        "sessionId": "s1",
    }


@pytest.mark.integration
class TestCollaborationAPI:
    """Test /api/v1/collaboration."""

    def test_create_and_get_session(self, client: TestClient):
        response = client.post("/api/v1/collaboration/sessions", json={
            "sessionId": "s1",
            "createdBy": "alice",
            "settings": {"conflictResolution": "first-write-wins"},
        })
        assert response.status_code == 201
        session = response.json()["session"]
        assert session["createdBy"] == "alice"
        assert session["settings"]["conflictResolution"] == "first-write-wins"
        assert session["settings"]["maxUsers"] == 50

        data = client.get("/api/v1/collaboration/sessions/s1").json()
        assert data["metrics"]["totalParticipants"] == 0

        listing = client.get("/api/v1/collaboration/sessions").json()
        assert listing["total"] == 1

    def test_duplicate_session(self, client: TestClient):
        body = {"sessionId": "s1", "createdBy": "alice"}
        client.post("/api/v1/collaboration/sessions", json=body)
        response = client.post("/api/v1/collaboration/sessions", json=body)
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_unknown_session(self, client: TestClient):
        response = client.get("/api/v1/collaboration/sessions/missing")
        assert response.status_code == 404
        assert client.delete("/api/v1/collaboration/sessions/missing").status_code == 404
        users = client.get("/api/v1/collaboration/sessions/missing/users").json()
        assert users == {"sessionId": "missing", "users": []}

    def test_destroy_session(self, client: TestClient):
        client.post("/api/v1/collaboration/sessions", json={"sessionId": "s1", "createdBy": "alice"})
        assert client.delete("/api/v1/collaboration/sessions/s1").status_code == 204
        assert client.get("/api/v1/collaboration/sessions/s1").status_code == 404

    def test_resolve_conflict(self, client: TestClient):
        client.post("/api/v1/collaboration/sessions", json={"sessionId": "s1", "createdBy": "alice"})
        response = client.post("/api/v1/collaboration/sessions/s1/conflicts", json={
            "sessionId": "s1",
            "position": {"row": 1, "col": 0},
            "conflictingChanges": [change("c2", "bob", 200, "b"), change("c1", "alice", 100, "a")],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["resolution"] == "accept-local"
        assert data["resolvedValue"] == "b"
        assert data["winningChangeId"] == "c2"

    def test_resolve_conflict_errors(self, client: TestClient):
        body = {
            "sessionId": "nope",
            "position": {"row": 0, "col": 0},
            "conflictingChanges": [change("c1", "alice", 1, "a"), change("c2", "bob", 2, "b")],
        }
        response = client.post("/api/v1/collaboration/sessions/nope/conflicts", json=body)
        assert response.status_code == 400
        assert response.json() == {
            "error": "conflict_resolution_error",
            "message": "Session not found: nope",
            "retryable": False,
        }

"""
Tests for the voice signaling REST API and health endpoint.

Runs against the in-memory store (Redis disabled in conftest).
"""

from fastapi.testclient import TestClient

from voicerelay.tests.conftest import CANDIDATE_HOST, CANDIDATE_SRFLX

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _start(client: TestClient, room: str = "r1") -> None:
    resp = client.post(f"/api/rooms/{room}/voice/start")
    assert resp.status_code == 204


def _state(client: TestClient, room: str = "r1"):
    resp = client.get(f"/api/rooms/{room}/voice")
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestVoiceSessionLifecycle:
    def test_empty_room_returns_null(self, client: TestClient):
        assert _state(client) is None

    def test_start_creates_empty_session(self, client: TestClient):
        _start(client)
        assert _state(client) == {"offer": None, "answer": None, "iceCandidates": []}

    def test_scenario_a_offer_then_answer(self, client: TestClient):
        _start(client)
        assert client.put("/api/rooms/r1/voice/offer", json={"sdp": "sdp-A"}).status_code == 204
        assert _state(client) == {"offer": "sdp-A", "answer": None, "iceCandidates": []}

        assert client.put("/api/rooms/r1/voice/answer", json={"sdp": "sdp-B"}).status_code == 204
        body = _state(client)
        assert body["offer"] == "sdp-A"
        assert body["answer"] == "sdp-B"

    def test_candidates_are_appended_with_camel_case_fields(self, client: TestClient):
        _start(client)
        client.post("/api/rooms/r1/voice/candidates", json={"candidate": CANDIDATE_HOST, "lineIndex": 0})
        client.post("/api/rooms/r1/voice/candidates", json={"candidate": CANDIDATE_HOST, "lineIndex": 0})
        client.post("/api/rooms/r1/voice/candidates", json={"candidate": CANDIDATE_SRFLX, "lineIndex": 1})
        assert _state(client)["iceCandidates"] == [
            {"candidate": CANDIDATE_HOST, "lineIndex": 0},
            {"candidate": CANDIDATE_HOST, "lineIndex": 0},
            {"candidate": CANDIDATE_SRFLX, "lineIndex": 1},
        ]

    def test_scenario_c_end_then_fresh_session(self, client: TestClient):
        _start(client)
        client.put("/api/rooms/r1/voice/offer", json={"sdp": "sdp-A"})
        client.post("/api/rooms/r1/voice/candidates", json={"candidate": CANDIDATE_HOST, "lineIndex": 0})

        assert client.delete("/api/rooms/r1/voice").status_code == 204
        assert _state(client) is None

        _start(client)
        client.put("/api/rooms/r1/voice/offer", json={"sdp": "sdp-C"})
        assert _state(client) == {"offer": "sdp-C", "answer": None, "iceCandidates": []}

    def test_end_without_session_is_noop(self, client: TestClient):
        assert client.delete("/api/rooms/r1/voice").status_code == 204


# ---------------------------------------------------------------------------
# Contract violations and validation
# ---------------------------------------------------------------------------


class TestVoiceSessionErrors:
    def test_answer_before_offer_conflicts(self, client: TestClient):
        _start(client)
        resp = client.put("/api/rooms/r1/voice/answer", json={"sdp": "sdp-B"})
        assert resp.status_code == 409
        assert "no offer" in resp.json()["detail"]
        assert _state(client)["answer"] is None

    def test_offer_without_session_conflicts(self, client: TestClient):
        resp = client.put("/api/rooms/r1/voice/offer", json={"sdp": "sdp-A"})
        assert resp.status_code == 409
        assert _state(client) is None

    def test_candidate_after_end_conflicts(self, client: TestClient):
        _start(client)
        client.delete("/api/rooms/r1/voice")
        resp = client.post("/api/rooms/r1/voice/candidates", json={"candidate": CANDIDATE_HOST, "lineIndex": 0})
        assert resp.status_code == 409
        assert _state(client) is None

    def test_empty_sdp_is_rejected(self, client: TestClient):
        _start(client)
        resp = client.put("/api/rooms/r1/voice/offer", json={"sdp": ""})
        assert resp.status_code == 422

    def test_whitespace_sdp_is_rejected(self, client: TestClient):
        _start(client)
        resp = client.put("/api/rooms/r1/voice/offer", json={"sdp": "   "})
        assert resp.status_code == 400

    def test_negative_line_index_is_rejected(self, client: TestClient):
        _start(client)
        resp = client.post("/api/rooms/r1/voice/candidates", json={"candidate": CANDIDATE_HOST, "lineIndex": -1})
        assert resp.status_code == 422

    def test_invalid_room_id_is_rejected(self, client: TestClient):
        resp = client.post("/api/rooms/bad%20room/voice/start")
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def test_health_reports_memory_store(client: TestClient):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "store": "memory", "redis": "disabled"}

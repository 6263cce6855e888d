"""
Tests for the FastAPI signaling and exam endpoints.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from proctor_app.core.proctor_manager import ProctorManager
from proctor_app.server.api_server import HttpMailboxes, create_api_app


@pytest.fixture
def manager(signaling, fake_loop):
    return ProctorManager("EXAM1", signaling, loop=fake_loop)


@pytest.fixture
def client(manager):
    app = create_api_app(manager, monitor=False)
    with TestClient(app) as test_client:
        yield test_client


def _join(client, student_id="s1", name="Ada"):
    response = client.post("/exams/EXAM1/join", json={"student_id": student_id, "display_name": name})
    assert response.status_code == 201
    return response.json()


class TestStudentPage:
    """Tests for the embedded browser page."""

    def test_page_is_served_with_configuration(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "ProctorQt Exam" in response.text
        assert "stun:stun.l.google.com:19302" in response.text
        assert "__ICE_SERVERS__" not in response.text


class TestSignalingEndpoints:
    """Tests for HTTP signaling mailboxes."""

    def test_join_poll_and_no_redelivery(self, client, manager):
        """A message addressed to a browser peer is returned by exactly one poll."""
        response = client.post("/signaling/EXAM1/join", json={"peer_id": "s1"})
        assert response.status_code == 201
        manager.signaling.send_message(
            "EXAM1", {"type": "answer", "from": "instructor", "payload": {"type": "answer", "sdp": "x"}}, "s1"
        )

        first = client.get("/signaling/EXAM1/messages", params={"peer_id": "s1"})
        second = client.get("/signaling/EXAM1/messages", params={"peer_id": "s1"})

        assert first.status_code == 200
        (message,) = first.json()
        assert message["type"] == "answer"
        assert message["from"] == "instructor"
        assert message["to"] == "s1"
        assert second.json() == []

    def test_sent_message_reaches_store(self, client, manager):
        response = client.post(
            "/signaling/EXAM1/messages",
            json={"from": "s1", "to": "instructor", "type": "offer", "payload": {"type": "offer", "sdp": "x"}},
        )

        assert response.status_code == 201
        (stored,) = manager.signaling.store.read("EXAM1")
        assert stored.sender == "s1"
        assert stored.recipient == "instructor"
        assert stored.id == response.json()["id"]

    def test_message_without_type_is_rejected(self, client):
        response = client.post("/signaling/EXAM1/messages", json={"from": "s1", "payload": {}})
        assert response.status_code == 422

    def test_poll_without_joining_is_not_found(self, client):
        response = client.get("/signaling/EXAM1/messages", params={"peer_id": "s1"})
        assert response.status_code == 404

    def test_instructor_id_is_reserved(self, client):
        response = client.post("/signaling/EXAM1/join", json={"peer_id": "instructor"})
        assert response.status_code == 409

    def test_leave_and_stats(self, client):
        client.post("/signaling/EXAM1/join", json={"peer_id": "s1"})
        client.post("/signaling/EXAM1/join", json={"peer_id": "s2"})
        client.post("/signaling/EXAM1/messages", json={"from": "s1", "to": "instructor", "type": "offer"})

        stats = client.get("/signaling/EXAM1/stats").json()
        assert stats["peerCount"] == 2
        assert stats["messageCount"] == 1

        client.post("/signaling/EXAM1/leave", json={"peer_id": "s2"})
        assert client.get("/signaling/EXAM1/stats").json()["peerCount"] == 1

    def test_signaling_endpoints_read_store_off_the_event_loop(self, client, manager, monkeypatch):
        """Database access stays out of the loop that drives the countdown timers."""
        reads = []
        read = manager.signaling.store.read

        def recording_read(channel_id):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                reads.append("worker")
            else:
                reads.append("loop")
            return read(channel_id)

        monkeypatch.setattr(manager.signaling.store, "read", recording_read)
        client.post("/signaling/EXAM1/join", json={"peer_id": "s1"})
        client.get("/signaling/EXAM1/messages", params={"peer_id": "s1"})
        client.get("/signaling/EXAM1/stats")

        assert len(reads) == 3
        assert set(reads) == {"worker"}


class TestExamEndpoints:
    """Tests for joining, violations, tab switches and submission."""

    def test_join_exam(self, client):
        data = _join(client)

        assert data["student_id"] == "s1"
        assert data["display_name"] == "Ada"
        assert data["exam_code"] == "EXAM1"

    def test_wrong_exam_code_is_not_found(self, client):
        response = client.post("/exams/OTHER/join", json={"student_id": "s1"})
        assert response.status_code == 404

    def test_blank_student_id_is_rejected(self, client):
        response = client.post("/exams/EXAM1/join", json={"student_id": "  "})
        assert response.status_code == 422

    def test_violation_starts_countdown(self, client):
        _join(client)

        response = client.post(
            "/exams/EXAM1/students/s1/violations",
            json={"type": "no_face", "description": "No face detected"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_countdown_active"] is True
        assert data["remaining_seconds"] == 7
        assert data["violations"] == ["no_face:No face detected"]

    def test_cleared_violation_stops_countdown(self, client):
        _join(client)
        payload = {"type": "no_face", "description": "No face detected"}
        client.post("/exams/EXAM1/students/s1/violations", json=payload)

        response = client.post("/exams/EXAM1/students/s1/violations", json={**payload, "active": False})

        assert response.json()["is_countdown_active"] is False

    def test_countdown_expiry_is_visible_in_status(self, client, fake_loop):
        _join(client)
        client.post(
            "/exams/EXAM1/students/s1/violations",
            json={"type": "no_face", "description": "No face detected"},
        )

        fake_loop.advance(7)
        status = client.get("/exams/EXAM1/students/s1/status").json()

        assert status["submitted"] is True
        assert status["submit_reason"] == "violations"

    def test_violation_for_unknown_student(self, client):
        response = client.post(
            "/exams/EXAM1/students/ghost/violations",
            json={"type": "no_face", "description": "No face detected"},
        )
        assert response.status_code == 404

    def test_tab_switch_warnings_then_submission(self, client):
        _join(client)

        results = [client.post("/exams/EXAM1/students/s1/tab-switch").json() for _ in range(3)]

        assert [r["count"] for r in results] == [1, 2, 3]
        assert [r["submitted"] for r in results] == [False, False, True]
        again = client.post("/exams/EXAM1/students/s1/tab-switch")
        assert again.status_code == 409

    def test_submit_closes_exam(self, client):
        _join(client)

        response = client.post("/exams/EXAM1/students/s1/submit", json={})

        assert response.status_code == 200
        assert response.json()["submit_reason"] == "student"
        rejoin = client.post("/exams/EXAM1/join", json={"student_id": "s1"})
        assert rejoin.status_code == 409
        late = client.post(
            "/exams/EXAM1/students/s1/violations",
            json={"type": "no_face", "description": "No face detected"},
        )
        assert late.status_code == 409

    def test_submit_unknown_student(self, client):
        response = client.post("/exams/EXAM1/students/ghost/submit", json={})
        assert response.status_code == 404

    def test_status_and_roster(self, client):
        _join(client, "s1", "Ada")
        _join(client, "s2", "Grace")

        status = client.get("/exams/EXAM1/students/s1/status").json()
        roster = client.get("/exams/EXAM1/students").json()

        assert status["countdown"]["is_countdown_active"] is False
        assert [s["student_id"] for s in roster] == ["s1", "s2"]

    def test_status_for_unknown_student(self, client):
        assert client.get("/exams/EXAM1/students/ghost/status").status_code == 404


class TestHttpMailboxes:
    """Tests for the per-peer delivery buffers."""

    def test_drain_empties_box(self):
        mailboxes = HttpMailboxes()
        handler = mailboxes.open("EXAM1", "s1")
        handler("first")
        handler("second")

        assert mailboxes.drain("EXAM1", "s1") == ["first", "second"]
        assert mailboxes.drain("EXAM1", "s1") == []

    def test_closed_peer_drains_nothing(self):
        """Closing a peer empties its boxes in every channel."""
        mailboxes = HttpMailboxes()
        mailboxes.open("EXAM1", "s1")("message")
        mailboxes.open("EXAM2", "s1")("message")
        mailboxes.open("EXAM1", "s2")("kept")

        mailboxes.close("s1")

        assert mailboxes.drain("EXAM1", "s1") == []
        assert mailboxes.drain("EXAM2", "s1") == []
        assert mailboxes.drain("EXAM1", "s2") == ["kept"]

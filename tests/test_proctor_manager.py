"""
Tests for the exam session facade shared by the API and the console.
"""
import pytest

from proctor_app.core.errors import ExamClosedError, UnknownStudentError
from proctor_app.core.proctor_manager import MANUAL_FLAG_TYPE, ProctorManager
from proctor_app.core.services.peer_sessions import PeerSessionManager

OFFER = {"type": "offer", "sdp": "v=0 remote offer"}


class RecordingRelay:
    """Frame relay double that only records attachments."""

    def __init__(self):
        self.attached = {}
        self.closed = False

    def attach(self, student_id, track):
        self.attached[student_id] = track

    def detach(self, student_id):
        self.attached.pop(student_id, None)

    def get_frame(self, student_id):
        return None

    async def close(self):
        self.closed = True


@pytest.fixture
def relay():
    return RecordingRelay()


@pytest.fixture
def manager(signaling, fake_loop, relay):
    return ProctorManager("EXAM1", signaling, frame_relay=relay, loop=fake_loop)


class TestRoster:
    """Tests for joining the exam."""

    def test_join_registers_student(self, manager):
        student = manager.join_exam("s1", "Ada")

        assert student.display_name == "Ada"
        assert manager.has_student("s1")
        assert [s.student_id for s in manager.get_students()] == ["s1"]

    def test_join_without_name_uses_id(self, manager):
        assert manager.join_exam(" s2 ").display_name == "s2"

    def test_empty_id_is_rejected(self, manager):
        with pytest.raises(ValueError):
            manager.join_exam("   ")

    def test_rejoin_after_submission_is_refused(self, manager):
        manager.join_exam("s1")
        manager.submit_exam("s1", "student")

        with pytest.raises(ExamClosedError):
            manager.join_exam("s1")

    def test_rejoin_keeps_single_entry(self, manager):
        manager.join_exam("s1", "Ada")
        manager.join_exam("s1", "Ada L.")

        (student,) = manager.get_students()
        assert student.display_name == "Ada L."


class TestViolations:
    """Tests for violations feeding the per-student countdown."""

    def test_violation_starts_countdown_and_logs(self, manager):
        manager.join_exam("s1", "Ada")

        status = manager.report_violation("s1", "no_face", "No face detected")

        assert status.is_countdown_active
        (entry,) = manager.get_violation_log()
        assert entry.type == "no_face"
        assert entry.display_name == "Ada"

    def test_repeated_report_logs_once(self, manager):
        manager.join_exam("s1")
        manager.report_violation("s1", "no_face", "No face detected")
        manager.report_violation("s1", "no_face", "No face detected")

        assert len(manager.get_violation_log()) == 1

    def test_inactive_report_stops_countdown(self, manager):
        manager.join_exam("s1")
        manager.report_violation("s1", "no_face", "No face detected")

        status = manager.report_violation("s1", "no_face", "No face detected", active=False)

        assert not status.is_countdown_active
        assert status.remaining_seconds == 7

    def test_countdown_expiry_submits_with_violation_reason(self, manager, fake_loop):
        """An uncorrected violation submits the student's exam after seven seconds."""
        manager.join_exam("s1")
        manager.report_violation("s1", "no_face", "No face detected")

        fake_loop.advance(7)

        status = manager.get_student_status("s1")
        assert status["submitted"] is True
        assert status["submit_reason"] == "violations"
        assert status["countdown"]["is_countdown_active"] is False

    def test_countdowns_are_per_student(self, manager, fake_loop):
        manager.join_exam("s1")
        manager.join_exam("s2")
        manager.report_violation("s1", "no_face", "No face detected")

        fake_loop.advance(7)

        assert manager.get_student_status("s1")["submitted"] is True
        assert manager.get_student_status("s2")["submitted"] is False

    def test_unknown_student_is_rejected(self, manager):
        with pytest.raises(UnknownStudentError):
            manager.report_violation("ghost", "no_face", "No face detected")

    def test_violation_after_submission_is_refused(self, manager):
        manager.join_exam("s1")
        manager.submit_exam("s1", "student")

        with pytest.raises(ExamClosedError):
            manager.report_violation("s1", "no_face", "No face detected")

    def test_log_is_most_recent_first_and_clearable(self, manager):
        manager.join_exam("s1")
        manager.report_violation("s1", "no_face", "No face detected")
        manager.report_violation("s1", "object", "Phone detected")

        assert [e.type for e in manager.get_violation_log()] == ["object", "no_face"]

        manager.clear_violation_log()
        assert manager.get_violation_log() == []

    def test_flag_student(self, manager):
        manager.join_exam("s1")

        manager.flag_student("s1", "Looking away often")

        (entry,) = manager.get_violation_log()
        assert entry.type == MANUAL_FLAG_TYPE
        assert entry.description == "Looking away often"


class TestTabSwitches:
    """Tests for the three-strike tab switch rule."""

    def test_third_switch_submits(self, manager):
        manager.join_exam("s1")

        first = manager.record_tab_switch("s1")
        second = manager.record_tab_switch("s1")
        third = manager.record_tab_switch("s1")

        assert first.message.startswith("First warning")
        assert second.message.startswith("Final warning")
        assert not second.submitted
        assert third.submitted
        assert manager.get_student_status("s1")["submit_reason"] == "tab_switches"

    def test_switch_after_submission_is_refused(self, manager):
        manager.join_exam("s1")
        manager.submit_exam("s1", "student")

        with pytest.raises(ExamClosedError):
            manager.record_tab_switch("s1")


class TestSubmission:
    """Tests for submitting and ending the exam."""

    def test_submit_is_idempotent(self, manager):
        manager.join_exam("s1")
        manager.submit_exam("s1", "student")
        student = manager.submit_exam("s1", "violations")

        assert student.submit_reason == "student"

    def test_submit_cancels_running_countdown(self, manager, fake_loop):
        manager.join_exam("s1")
        manager.report_violation("s1", "no_face", "No face detected")

        manager.submit_exam("s1", "student")

        assert fake_loop.pending == []

    def test_end_exam_submits_open_students(self, manager):
        manager.join_exam("s1")
        manager.join_exam("s2")
        manager.submit_exam("s1", "student")

        assert manager.end_exam() == ["s2"]
        assert manager.get_student_status("s2")["submit_reason"] == "instructor"

    def test_overviews(self, manager):
        manager.join_exam("s1", "Ada")
        manager.report_violation("s1", "no_face", "No face detected")

        (overview,) = manager.get_student_overviews()

        assert overview.display_name == "Ada"
        assert overview.violation_total == 1
        assert overview.countdown.is_countdown_active
        assert overview.connection_state is None

    def test_failed_auto_submission_is_reported_once(self, manager, fake_loop, monkeypatch):
        """A failing automatic submission is queued for the console alert."""
        manager.join_exam("s1")
        manager.report_violation("s1", "no_face", "No face detected")

        def broken_submit(student_id, reason):
            raise RuntimeError("grading service unavailable")

        monkeypatch.setattr(manager, "submit_exam", broken_submit)
        fake_loop.advance(7)

        assert manager.pop_submission_failures() == ["s1"]
        assert manager.pop_submission_failures() == []


class TestMonitoring:
    """Tests for the instructor peer session lifecycle."""

    @pytest.mark.asyncio
    async def test_stream_and_disconnect_update_roster(self, signaling, relay, connection_factory):
        manager = ProctorManager(
            "EXAM1",
            signaling,
            peer_sessions_factory=lambda s: PeerSessionManager(s, connection_factory=connection_factory),
            frame_relay=relay,
        )
        await manager.start_monitoring()
        peers = manager.peer_sessions
        await peers.handle_offer(OFFER, "s1")
        connection = connection_factory.created[0]
        track = object()

        connection.emit("track", track)

        assert relay.attached == {"s1": track}
        (overview,) = manager.get_student_overviews()
        assert overview.online and overview.stream_active

        connection.set_state("failed")

        (overview,) = manager.get_student_overviews()
        assert not overview.online
        assert relay.attached == {}

        await manager.stop_monitoring()
        assert manager.peer_sessions is None
        assert relay.closed
        assert not signaling.is_member("EXAM1", "instructor")

    @pytest.mark.asyncio
    async def test_restarted_monitoring_still_reports_failed_submission(
        self, signaling, relay, connection_factory, fake_loop, monkeypatch
    ):
        """Stopping and restarting monitoring keeps the console failure alerts."""
        manager = ProctorManager(
            "EXAM1",
            signaling,
            peer_sessions_factory=lambda s: PeerSessionManager(s, connection_factory=connection_factory),
            frame_relay=relay,
            loop=fake_loop,
        )
        manager.join_exam("s1")
        await manager.start_monitoring()
        await manager.stop_monitoring()
        await manager.start_monitoring()

        def broken_submit(student_id, reason):
            raise RuntimeError("grading service unavailable")

        monkeypatch.setattr(manager, "submit_exam", broken_submit)
        manager.report_violation("s1", "no_face", "No face detected")
        fake_loop.advance(7)

        assert manager.pop_submission_failures() == ["s1"]
        await manager.stop_monitoring()

"""Business logic for an exam session shared between the API server and the Qt console."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import partial
import logging
from threading import Lock
from typing import Any

from proctor_app.constants.proctor_constants import (
    SUBMIT_REASON_INSTRUCTOR,
    SUBMIT_REASON_TAB_SWITCHES,
    SUBMIT_REASON_VIOLATIONS,
    TAB_SWITCH_SUBMIT_LIMIT,
    TAB_SWITCH_SUBMITTED_MESSAGE,
    TAB_SWITCH_WARNINGS,
)
from proctor_app.core.errors import ExamClosedError, UnknownStudentError
from proctor_app.core.frame_relay import FrameRelay, LatestFrame
from proctor_app.core.models import ExamStudent, ViolationEntry
from proctor_app.core.services.peer_sessions import PeerSessionManager
from proctor_app.core.services.signaling_channels import SignalingChannelManager
from proctor_app.core.services.violation_countdown import (
    CountdownEvent,
    CountdownEventKind,
    CountdownStatus,
    ViolationCountdown,
    violation_key,
)

logger = logging.getLogger(__name__)

PeerSessionsFactory = Callable[[SignalingChannelManager], PeerSessionManager]

MANUAL_FLAG_TYPE = "manual_flag"
TAB_SWITCH_TYPE = "tab_switch"


@dataclass(slots=True)
class StudentOverview:
    """Snapshot of one student for the instructor console."""

    student_id: str
    display_name: str
    online: bool
    stream_active: bool
    connection_state: str | None
    submitted: bool
    submit_reason: str | None
    tab_switch_count: int
    violation_total: int
    countdown: CountdownStatus | None


@dataclass(slots=True)
class TabSwitchResult:
    count: int
    message: str
    submitted: bool


class ProctorManager:
    """Facade over roster, per-student countdowns, violation log and peer sessions."""

    def __init__(
        self,
        exam_code: str,
        signaling: SignalingChannelManager,
        peer_sessions_factory: PeerSessionsFactory = PeerSessionManager,
        frame_relay: FrameRelay | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._lock = Lock()
        self._exam_code = exam_code
        self._signaling = signaling
        self._peer_sessions_factory = peer_sessions_factory
        self._frame_relay = frame_relay or FrameRelay()
        self._loop = loop

        self._students: dict[str, ExamStudent] = {}
        self._countdowns: dict[str, ViolationCountdown] = {}
        self._violation_log: deque[ViolationEntry] = deque()
        self._submission_failures: list[str] = []
        self._peer_sessions: PeerSessionManager | None = None
        self._monitor_loop: asyncio.AbstractEventLoop | None = None

    @property
    def exam_code(self) -> str:
        return self._exam_code

    @property
    def signaling(self) -> SignalingChannelManager:
        return self._signaling

    @property
    def peer_sessions(self) -> PeerSessionManager | None:
        return self._peer_sessions

    # --- Monitoring lifecycle (runs on the server's event loop) ---

    async def start_monitoring(self) -> None:
        if self._peer_sessions is not None:
            return
        peers = self._peer_sessions_factory(self._signaling)
        peers.on_stream_received = self._handle_stream_received
        peers.on_peer_disconnected = self._handle_peer_disconnected
        await peers.initialize_as_instructor(self._exam_code)
        peers.start_signaling_polling()
        self._peer_sessions = peers
        self._monitor_loop = asyncio.get_running_loop()
        logger.info("Monitoring started for exam %s", self._exam_code)

    async def stop_monitoring(self) -> None:
        peers, self._peer_sessions = self._peer_sessions, None
        if peers is not None:
            await peers.cleanup()
        await self._frame_relay.close()
        with self._lock:
            countdowns = list(self._countdowns.values())
        for countdown in countdowns:
            # the console alerts outlive a monitoring restart
            countdown.cleanup(keep_listeners=True)
        self._monitor_loop = None
        logger.info("Monitoring stopped for exam %s", self._exam_code)

    def _call_on_monitor_loop(self, func: Callable[[], Any]) -> None:
        """Run ``func`` on the monitoring loop, which owns the countdown timers."""
        loop = self._monitor_loop
        if loop is None or loop.is_closed():
            func()
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            func()
        else:
            loop.call_soon_threadsafe(func)

    def _handle_stream_received(self, student_id: str, track: Any) -> None:
        with self._lock:
            student = self._students.get(student_id)
            if student is None:
                student = self._register_student(student_id, student_id)
            student.online = True
            student.stream_active = True
        self._frame_relay.attach(student_id, track)

    def _handle_peer_disconnected(self, student_id: str) -> None:
        with self._lock:
            student = self._students.get(student_id)
            if student is not None:
                student.online = False
                student.stream_active = False
        self._frame_relay.detach(student_id)

    # --- Roster ---

    def join_exam(self, student_id: str, display_name: str | None = None) -> ExamStudent:
        student_id = student_id.strip()
        if not student_id:
            raise ValueError("Student id cannot be empty.")
        name = (display_name or "").strip() or student_id
        with self._lock:
            student = self._students.get(student_id)
            if student is not None:
                if student.is_submitted:
                    raise ExamClosedError(f"Exam already submitted for {student_id}.")
                student.online = True
                student.display_name = name
                return student
            return self._register_student(student_id, name)

    def _register_student(self, student_id: str, display_name: str) -> ExamStudent:
        student = ExamStudent(
            student_id=student_id,
            display_name=display_name,
            joined_at=datetime.utcnow(),
        )
        countdown = ViolationCountdown(
            submit_handler=partial(self._auto_submit, student_id),
            loop=self._loop,
        )
        countdown.add_listener(partial(self._on_countdown_event, student_id))
        self._students[student_id] = student
        self._countdowns[student_id] = countdown
        logger.info("Student %s (%s) joined exam %s", student_id, display_name, self._exam_code)
        return student

    def _get_student(self, student_id: str) -> ExamStudent:
        student = self._students.get(student_id)
        if student is None:
            raise UnknownStudentError(f"Student {student_id} has not joined the exam.")
        return student

    def _open_countdown(self, student_id: str) -> ViolationCountdown:
        with self._lock:
            student = self._get_student(student_id)
            if student.is_submitted:
                raise ExamClosedError(f"Exam already submitted for {student_id}.")
            return self._countdowns[student_id]

    def get_students(self) -> list[ExamStudent]:
        with self._lock:
            return sorted(self._students.values(), key=lambda s: s.joined_at)

    def has_student(self, student_id: str) -> bool:
        with self._lock:
            return student_id in self._students

    # --- Violations ---

    def report_violation(
        self,
        student_id: str,
        violation_type: str,
        description: str,
        active: bool = True,
        severity: str = "medium",
    ) -> CountdownStatus:
        """Feed a detector transition into the student's countdown."""
        countdown = self._open_countdown(student_id)
        if not active:
            countdown.remove_violation(violation_type, description)
            return countdown.get_status()

        is_new = violation_key(violation_type, description) not in countdown.get_status().violations
        countdown.add_violation(violation_type, description)
        if is_new:
            self._log_violation(student_id, violation_type, description, severity)
        return countdown.get_status()

    def record_tab_switch(self, student_id: str) -> TabSwitchResult:
        self._open_countdown(student_id)
        with self._lock:
            student = self._get_student(student_id)
            student.tab_switch_count += 1
            count = student.tab_switch_count
        self._log_violation(student_id, TAB_SWITCH_TYPE, f"Tab/window switch #{count}", "high")

        if count >= TAB_SWITCH_SUBMIT_LIMIT:
            self.submit_exam(student_id, SUBMIT_REASON_TAB_SWITCHES)
            return TabSwitchResult(count=count, message=TAB_SWITCH_SUBMITTED_MESSAGE, submitted=True)
        return TabSwitchResult(count=count, message=TAB_SWITCH_WARNINGS[count], submitted=False)

    def flag_student(
        self, student_id: str, note: str = "Student flagged by instructor for attention"
    ) -> None:
        with self._lock:
            self._get_student(student_id)
        self._log_violation(student_id, MANUAL_FLAG_TYPE, note, "medium")

    def _log_violation(
        self, student_id: str, violation_type: str, description: str, severity: str
    ) -> None:
        with self._lock:
            student = self._get_student(student_id)
            student.violation_total += 1
            self._violation_log.appendleft(
                ViolationEntry(
                    student_id=student_id,
                    display_name=student.display_name,
                    type=violation_type,
                    description=description,
                    severity=severity,
                    recorded_at=datetime.utcnow(),
                )
            )
        logger.info("Violation recorded for %s: %s (%s)", student_id, violation_type, description)

    def get_violation_log(self) -> list[ViolationEntry]:
        """Return logged violations, most recent first."""
        with self._lock:
            return list(self._violation_log)

    def clear_violation_log(self) -> None:
        with self._lock:
            self._violation_log.clear()

    # --- Submission ---

    def submit_exam(self, student_id: str, reason: str) -> ExamStudent:
        """Mark the student's exam submitted; repeated calls keep the first reason."""
        with self._lock:
            student = self._get_student(student_id)
            if student.is_submitted:
                return student
            student.submitted_at = datetime.utcnow()
            student.submit_reason = reason
            countdown = self._countdowns.get(student_id)
        if countdown is not None:
            self._call_on_monitor_loop(countdown.cleanup)
        logger.warning("Exam submitted for %s (reason: %s)", student_id, reason)
        return student

    def end_exam(self) -> list[str]:
        """Submit every student still writing; returns their ids."""
        with self._lock:
            open_ids = [s.student_id for s in self._students.values() if not s.is_submitted]
        for student_id in open_ids:
            self.submit_exam(student_id, SUBMIT_REASON_INSTRUCTOR)
        return open_ids

    def _auto_submit(self, student_id: str) -> None:
        self.submit_exam(student_id, SUBMIT_REASON_VIOLATIONS)

    def _on_countdown_event(self, student_id: str, event: CountdownEvent) -> None:
        if event.kind is CountdownEventKind.SUBMISSION_FAILED:
            with self._lock:
                self._submission_failures.append(student_id)
        elif event.kind is CountdownEventKind.FINAL_WARNING:
            logger.warning("Final warning for %s", student_id)

    def pop_submission_failures(self) -> list[str]:
        with self._lock:
            failures, self._submission_failures = self._submission_failures, []
        return failures

    # --- Status ---

    def get_student_status(self, student_id: str) -> dict[str, Any]:
        with self._lock:
            student = self._get_student(student_id)
            countdown = self._countdowns[student_id]
            return {
                "student_id": student.student_id,
                "display_name": student.display_name,
                "exam_code": self._exam_code,
                "submitted": student.is_submitted,
                "submit_reason": student.submit_reason,
                "tab_switch_count": student.tab_switch_count,
                "countdown": countdown.get_status().to_dict(),
            }

    def get_student_overviews(self) -> list[StudentOverview]:
        peers = self._peer_sessions
        with self._lock:
            students = sorted(self._students.values(), key=lambda s: s.joined_at)
            overviews = []
            for student in students:
                countdown = self._countdowns.get(student.student_id)
                connection_state = None
                if peers is not None:
                    connection_state = peers.get_connection_state(student.student_id)
                overviews.append(
                    StudentOverview(
                        student_id=student.student_id,
                        display_name=student.display_name,
                        online=student.online,
                        stream_active=student.stream_active,
                        connection_state=connection_state,
                        submitted=student.is_submitted,
                        submit_reason=student.submit_reason,
                        tab_switch_count=student.tab_switch_count,
                        violation_total=student.violation_total,
                        countdown=countdown.get_status() if countdown is not None else None,
                    )
                )
        return overviews

    def get_frame(self, student_id: str) -> LatestFrame | None:
        return self._frame_relay.get_frame(student_id)

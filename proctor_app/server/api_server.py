"""FastAPI server that exposes signaling and proctoring endpoints to students."""

from __future__ import annotations

from collections import deque
from contextlib import asynccontextmanager
import json
import logging
from threading import Lock, Thread
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, Field
import uvicorn

from proctor_app.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ICE_SERVERS,
    INSTRUCTOR_PEER_ID,
    SIGNALING_POLL_INTERVAL_SECONDS,
)
from proctor_app.constants.proctor_constants import SUBMIT_REASON_STUDENT
from proctor_app.core.errors import (
    ExamClosedError,
    SignalingDeliveryError,
    UnknownStudentError,
)
from proctor_app.core.models import SignalingMessage
from proctor_app.core.proctor_manager import ProctorManager

logger = logging.getLogger(__name__)

_STUDENT_PAGE_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>ProctorQt Exam</title>
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <style>
      :root { font-family: 'Inter', system-ui, sans-serif; background: #0b1120; color: #f5f7ff; }
      body { margin: 0; padding: 1.5rem; display: flex; flex-direction: column; gap: 1rem; }
      .card { background: #111a30; border-radius: 0.75rem; padding: 1.5rem; box-shadow: 0 0.5rem 1.5rem rgba(0, 0, 0, 0.4); }
      .hidden { display: none; }
      label { display: block; margin-top: 0.75rem; color: #94a3b8; }
      input { width: 100%; max-width: 24rem; padding: 0.6rem; border-radius: 0.5rem; border: 1px solid #334155; background: #0b1120; color: #f5f7ff; }
      .primary-button { margin-top: 1rem; border: none; border-radius: 0.75rem; padding: 0.85rem 1.5rem; font-size: 1rem; background: #1f9aa5; color: #fff; cursor: pointer; }
      .primary-button:disabled { opacity: 0.6; cursor: not-allowed; }
      #preview { width: 320px; height: 240px; background: #000; border-radius: 0.5rem; }
      .status-line { min-height: 1.25rem; color: #94a3b8; }
      .error { color: #f87171; }
      #countdown-overlay { position: fixed; inset: 0; background: rgba(0, 0, 0, 0.9); display: flex; align-items: center; justify-content: center; z-index: 10; }
      #countdown-overlay.hidden { display: none; }
      .countdown-content { background: #1a1a1a; border: 3px solid #ef4444; border-radius: 16px; padding: 2rem; text-align: center; max-width: 500px; width: 90%; }
      .countdown-title { font-size: 2rem; font-weight: bold; color: #ef4444; text-transform: uppercase; }
      #countdown-timer { font-size: 6rem; font-weight: bold; color: #ef4444; }
      #countdown-message.final { color: #ef4444; font-weight: bold; }
      .violation-item { background: rgba(239, 68, 68, 0.2); border-radius: 4px; padding: 0.5rem; margin-top: 0.5rem; text-align: left; }
    </style>
  </head>
  <body>
    <section class="card" id="join-card">
      <h1>ProctorQt Exam</h1>
      <label for="exam-code">Exam code</label>
      <input id="exam-code" autocomplete="off" />
      <label for="student-id">Student number</label>
      <input id="student-id" autocomplete="off" />
      <label for="display-name">Name</label>
      <input id="display-name" autocomplete="off" />
      <button id="join-button" class="primary-button">Start Exam</button>
      <p id="join-status" class="status-line"></p>
    </section>
    <section class="card hidden" id="exam-card">
      <h2 id="exam-heading">Exam in progress</h2>
      <video id="preview" autoplay muted playsinline></video>
      <p id="connection-status" class="status-line">Connecting to instructor…</p>
      <p id="security-message" class="status-line"></p>
      <button id="submit-button" class="primary-button">Submit Exam</button>
    </section>
    <section class="card hidden" id="submitted-card">
      <h2>Exam submitted</h2>
      <p id="submitted-message"></p>
    </section>
    <div id="countdown-overlay" class="hidden">
      <div class="countdown-content">
        <div class="countdown-title">Violation detected</div>
        <div id="countdown-message">Please correct the violation to cancel auto-submission</div>
        <div id="countdown-timer">7</div>
        <div>seconds until auto-submission</div>
        <div id="violation-list"></div>
      </div>
    </div>
    <script>
      const ICE_SERVERS = __ICE_SERVERS__;
      const INSTRUCTOR_ID = __INSTRUCTOR_ID__;
      const POLL_MS = __POLL_MS__;
      const el = (id) => document.getElementById(id);

      let examCode = null;
      let studentId = null;
      let pc = null;
      let localStream = null;
      let pollTimer = null;
      let statusTimer = null;
      let finished = false;

      async function postJson(url, body) {
        const response = await fetch(url, {
          method: 'POST',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify(body || {}),
        });
        const data = await response.json().catch(() => ({}));
        if (!response.ok) {
          throw new Error(data.detail || `Request failed (${response.status})`);
        }
        return data;
      }

      function describeMediaError(error) {
        if (error.name === 'NotAllowedError' || error.name === 'SecurityError') {
          return 'Camera access denied. Please allow camera access to continue with the exam.';
        }
        if (error.name === 'NotFoundError' || error.name === 'OverconstrainedError') {
          return 'No camera was found. Connect a webcam and try again.';
        }
        if (error.name === 'NotReadableError' || error.name === 'AbortError') {
          return 'The camera is in use by another application. Close it and try again.';
        }
        return 'The camera could not be started. Check the device and try again.';
      }

      function sendSignal(type, payload) {
        return postJson(`/signaling/${encodeURIComponent(examCode)}/messages`, {
          from: studentId, to: INSTRUCTOR_ID, type, payload,
        });
      }

      async function connectToInstructor() {
        if (pc) { pc.close(); }
        pc = new RTCPeerConnection({ iceServers: ICE_SERVERS.map((url) => ({ urls: url })) });
        localStream.getTracks().forEach((track) => pc.addTrack(track, localStream));
        pc.onicecandidate = (event) => {
          if (event.candidate) { sendSignal('ice-candidate', event.candidate.toJSON()); }
        };
        pc.onconnectionstatechange = () => {
          el('connection-status').textContent = `Instructor connection: ${pc.connectionState}`;
          if (!finished && (pc.connectionState === 'failed' || pc.connectionState === 'disconnected')) {
            setTimeout(connectToInstructor, 2000);
          }
        };
        const offer = await pc.createOffer();
        await pc.setLocalDescription(offer);
        await sendSignal('offer', { type: pc.localDescription.type, sdp: pc.localDescription.sdp });
      }

      async function pollSignaling() {
        const url = `/signaling/${encodeURIComponent(examCode)}/messages?peer_id=${encodeURIComponent(studentId)}`;
        const response = await fetch(url);
        if (!response.ok) { return; }
        const messages = await response.json();
        for (const message of messages) {
          try {
            if (message.type === 'answer' && pc) {
              await pc.setRemoteDescription(message.payload);
            } else if (message.type === 'ice-candidate' && pc) {
              await pc.addIceCandidate(message.payload);
            }
          } catch (error) {
            console.error('Signaling message failed', message.type, error);
          }
        }
      }

      function renderStatus(status) {
        const countdown = status.countdown;
        const overlay = el('countdown-overlay');
        overlay.classList.toggle('hidden', !countdown.is_countdown_active);
        el('countdown-timer').textContent = countdown.remaining_seconds;
        const message = el('countdown-message');
        message.textContent = countdown.is_final_warning
          ? 'FINAL WARNING: Correct violations immediately!'
          : 'Please correct the violation to cancel auto-submission';
        message.classList.toggle('final', countdown.is_final_warning);
        el('violation-list').innerHTML = '';
        countdown.violations.forEach((key) => {
          const item = document.createElement('div');
          item.className = 'violation-item';
          const split = key.indexOf(':');
          item.textContent = `${key.slice(0, split).replace(/_/g, ' ').toUpperCase()}: ${key.slice(split + 1)}`;
          el('violation-list').appendChild(item);
        });
        if (status.submitted) { finishExam(status.submit_reason); }
      }

      async function pollStatus() {
        const response = await fetch(`/exams/${encodeURIComponent(examCode)}/students/${encodeURIComponent(studentId)}/status`);
        if (response.ok) { renderStatus(await response.json()); }
      }

      function finishExam(reason) {
        if (finished) { return; }
        finished = true;
        clearInterval(pollTimer);
        clearInterval(statusTimer);
        if (pc) { pc.close(); }
        if (localStream) { localStream.getTracks().forEach((track) => track.stop()); }
        postJson(`/signaling/${encodeURIComponent(examCode)}/leave`, { peer_id: studentId }).catch(() => {});
        el('countdown-overlay').classList.add('hidden');
        el('exam-card').classList.add('hidden');
        el('submitted-card').classList.remove('hidden');
        el('submitted-message').textContent = `Your exam was submitted (${reason || 'manual'}).`;
      }

      async function reportViolation(type, description, active = true, severity = 'medium') {
        if (finished) { return null; }
        return postJson(
          `/exams/${encodeURIComponent(examCode)}/students/${encodeURIComponent(studentId)}/violations`,
          { type, description, active, severity },
        );
      }
      window.proctor = { reportViolation };

      document.addEventListener('visibilitychange', async () => {
        if (!document.hidden || finished || !studentId) { return; }
        try {
          const result = await postJson(
            `/exams/${encodeURIComponent(examCode)}/students/${encodeURIComponent(studentId)}/tab-switch`,
          );
          el('security-message').textContent = result.message;
          if (result.submitted) { finishExam('tab_switches'); }
        } catch (error) {
          console.error('Tab switch report failed', error);
        }
      });

      el('submit-button').addEventListener('click', async () => {
        try {
          await postJson(`/exams/${encodeURIComponent(examCode)}/students/${encodeURIComponent(studentId)}/submit`);
          finishExam('student');
        } catch (error) {
          el('security-message').textContent = error.message;
        }
      });

      el('join-button').addEventListener('click', async () => {
        const joinStatus = el('join-status');
        joinStatus.classList.remove('error');
        examCode = el('exam-code').value.trim();
        studentId = el('student-id').value.trim();
        if (!examCode || !studentId) {
          joinStatus.textContent = 'Enter the exam code and your student number.';
          return;
        }
        el('join-button').disabled = true;
        try {
          localStream = await navigator.mediaDevices.getUserMedia({
            video: { width: { ideal: 640 }, height: { ideal: 480 }, frameRate: { ideal: 15 } },
            audio: false,
          });
        } catch (error) {
          joinStatus.textContent = describeMediaError(error);
          joinStatus.classList.add('error');
          el('join-button').disabled = false;
          return;
        }
        try {
          await postJson(`/exams/${encodeURIComponent(examCode)}/join`, {
            student_id: studentId, display_name: el('display-name').value.trim(),
          });
          await postJson(`/signaling/${encodeURIComponent(examCode)}/join`, { peer_id: studentId });
        } catch (error) {
          joinStatus.textContent = error.message;
          joinStatus.classList.add('error');
          el('join-button').disabled = false;
          localStream.getTracks().forEach((track) => track.stop());
          return;
        }
        el('preview').srcObject = localStream;
        el('join-card').classList.add('hidden');
        el('exam-card').classList.remove('hidden');
        pollTimer = setInterval(pollSignaling, POLL_MS);
        statusTimer = setInterval(pollStatus, POLL_MS);
        await connectToInstructor();
      });
    </script>
  </body>
</html>
"""


def render_student_page() -> str:
    return (
        _STUDENT_PAGE_HTML.replace("__ICE_SERVERS__", json.dumps(list(ICE_SERVERS)))
        .replace("__INSTRUCTOR_ID__", json.dumps(INSTRUCTOR_PEER_ID))
        .replace("__POLL_MS__", str(int(SIGNALING_POLL_INTERVAL_SECONDS * 1000)))
    )


class HttpMailboxes:
    """Buffers messages delivered to peers that poll over HTTP."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._boxes: dict[tuple[str, str], deque[SignalingMessage]] = {}

    def open(self, channel_id: str, peer_id: str):
        with self._lock:
            box = self._boxes.setdefault((channel_id, peer_id), deque())

        def handler(message: SignalingMessage) -> None:
            with self._lock:
                box.append(message)

        return handler

    def drain(self, channel_id: str, peer_id: str) -> list[SignalingMessage]:
        with self._lock:
            box = self._boxes.get((channel_id, peer_id))
            if not box:
                return []
            messages = list(box)
            box.clear()
            return messages

    def close(self, peer_id: str) -> None:
        with self._lock:
            for key in [key for key in self._boxes if key[1] == peer_id]:
                del self._boxes[key]


class JoinExamPayload(BaseModel):
    """Payload schema for a student joining the exam."""

    student_id: str
    display_name: str | None = None


class PeerPayload(BaseModel):
    peer_id: str


class SignalPayload(BaseModel):
    """Payload schema for an outgoing signaling message."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    type: str
    payload: Any = None
    to: str | None = None


class ViolationPayload(BaseModel):
    """Payload schema for a detector transition."""

    type: str
    description: str
    active: bool = True
    severity: str = "medium"


class SubmitPayload(BaseModel):
    reason: str | None = None


def _get_proctor_manager_dependency(proctor_manager: ProctorManager):
    def dependency() -> ProctorManager:
        return proctor_manager

    return dependency


def _require_exam(manager: ProctorManager, exam_code: str) -> None:
    if exam_code != manager.exam_code:
        raise HTTPException(status_code=404, detail="Unknown exam code.")


def create_api_app(proctor_manager: ProctorManager, monitor: bool = True) -> FastAPI:
    """Create a FastAPI application wired to the provided proctor manager.

    With ``monitor`` the instructor's peer session runs on the server's event
    loop for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if monitor:
            await proctor_manager.start_monitoring()
        try:
            yield
        finally:
            if monitor:
                await proctor_manager.stop_monitoring()

    app = FastAPI(title="ProctorQt API", version="0.1.0", lifespan=lifespan)
    manager_dep = _get_proctor_manager_dependency(proctor_manager)
    mailboxes = HttpMailboxes()

    @app.get("/", response_class=HTMLResponse)
    def serve_student_page() -> str:
        return render_student_page()

    # --- Signaling ---

    @app.post("/signaling/{channel_id}/join", status_code=201)
    def join_channel(
        channel_id: str,
        payload: PeerPayload,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        if payload.peer_id == INSTRUCTOR_PEER_ID:
            raise HTTPException(status_code=409, detail="Peer id is reserved.")
        handler = mailboxes.open(channel_id, payload.peer_id)
        manager.signaling.join_channel(channel_id, payload.peer_id, handler)
        return manager.signaling.get_channel_stats(channel_id).to_dict()

    @app.post("/signaling/{channel_id}/leave")
    def leave_channel(
        channel_id: str,
        payload: PeerPayload,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        if payload.peer_id == INSTRUCTOR_PEER_ID:
            raise HTTPException(status_code=409, detail="Peer id is reserved.")
        manager.signaling.leave_channel(channel_id, payload.peer_id)
        mailboxes.close(payload.peer_id)
        return {"left": True}

    @app.post("/signaling/{channel_id}/messages", status_code=201)
    def send_message(
        channel_id: str,
        payload: SignalPayload,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            message = manager.signaling.send_message(
                channel_id,
                {"from": payload.sender, "type": payload.type, "payload": payload.payload},
                payload.to,
            )
        except SignalingDeliveryError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"id": message.id, "timestamp": message.timestamp}

    @app.get("/signaling/{channel_id}/messages")
    def poll_messages(
        channel_id: str,
        peer_id: str = Query(...),
        manager: ProctorManager = Depends(manager_dep),
    ) -> list[dict[str, Any]]:
        if not manager.signaling.is_member(channel_id, peer_id):
            raise HTTPException(status_code=404, detail="Peer has not joined this channel.")
        manager.signaling.poll_messages(channel_id, peer_id)
        return [message.to_dict() for message in mailboxes.drain(channel_id, peer_id)]

    @app.get("/signaling/{channel_id}/stats")
    def channel_stats(
        channel_id: str,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        return manager.signaling.get_channel_stats(channel_id).to_dict()

    # --- Exam ---

    @app.post("/exams/{exam_code}/join", status_code=201)
    async def join_exam(
        exam_code: str,
        payload: JoinExamPayload,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        _require_exam(manager, exam_code)
        try:
            student = manager.join_exam(payload.student_id, payload.display_name)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except ExamClosedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {
            "student_id": student.student_id,
            "display_name": student.display_name,
            "joined_at": student.joined_at.isoformat(),
            "exam_code": manager.exam_code,
        }

    @app.get("/exams/{exam_code}/students")
    async def list_students(
        exam_code: str,
        manager: ProctorManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        _require_exam(manager, exam_code)
        return [manager.get_student_status(s.student_id) for s in manager.get_students()]

    @app.get("/exams/{exam_code}/students/{student_id}/status")
    async def student_status(
        exam_code: str,
        student_id: str,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        _require_exam(manager, exam_code)
        try:
            return manager.get_student_status(student_id)
        except UnknownStudentError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/exams/{exam_code}/students/{student_id}/violations")
    async def report_violation(
        exam_code: str,
        student_id: str,
        payload: ViolationPayload,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        _require_exam(manager, exam_code)
        try:
            status = manager.report_violation(
                student_id,
                payload.type,
                payload.description,
                active=payload.active,
                severity=payload.severity,
            )
        except UnknownStudentError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ExamClosedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return status.to_dict()

    @app.post("/exams/{exam_code}/students/{student_id}/tab-switch")
    async def tab_switch(
        exam_code: str,
        student_id: str,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        _require_exam(manager, exam_code)
        try:
            result = manager.record_tab_switch(student_id)
        except UnknownStudentError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ExamClosedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"count": result.count, "message": result.message, "submitted": result.submitted}

    @app.post("/exams/{exam_code}/students/{student_id}/submit")
    async def submit_exam(
        exam_code: str,
        student_id: str,
        payload: SubmitPayload | None = None,
        manager: ProctorManager = Depends(manager_dep),
    ) -> dict[str, object]:
        _require_exam(manager, exam_code)
        reason = (payload.reason if payload else None) or SUBMIT_REASON_STUDENT
        try:
            student = manager.submit_exam(student_id, reason)
        except UnknownStudentError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {
            "student_id": student.student_id,
            "submitted_at": student.submitted_at.isoformat() if student.submitted_at else None,
            "submit_reason": student.submit_reason,
        }

    return app


class ApiServerThread(Thread):
    """Daemon thread running uvicorn; ``stop`` asks the server to exit."""

    def __init__(self, server: uvicorn.Server) -> None:
        super().__init__(name="ProctorApiServer", daemon=True)
        self.server = server

    def run(self) -> None:
        self.server.run()

    def stop(self, timeout: float = 5.0) -> None:
        self.server.should_exit = True
        self.join(timeout)


def start_api_server(
    proctor_manager: ProctorManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> ApiServerThread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(proctor_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    thread = ApiServerThread(uvicorn.Server(config))
    thread.start()
    logger.info("API server listening on %s:%d", host, port)
    return thread

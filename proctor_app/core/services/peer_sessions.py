"""WebRTC peer sessions negotiated over the polling signaling channel."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
import logging
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from proctor_app.constants.network_constants import (
    ICE_SERVERS,
    INSTRUCTOR_PEER_ID,
    SIGNALING_POLL_INTERVAL_SECONDS,
)
from proctor_app.core.errors import (
    MediaAccessError,
    NegotiationError,
    SignalingDeliveryError,
)
from proctor_app.core.media_capture import CameraCapture, classify_media_error
from proctor_app.core.models import (
    MessageType,
    NegotiationState,
    PeerConnectionRecord,
    PeerRole,
    SignalingMessage,
)
from proctor_app.core.services.signaling_channels import SignalingChannelManager

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[Sequence[str]], Any]
CaptureFactory = Callable[[], Any]
StreamReceivedCallback = Callable[[str, Any], None]
PeerDisconnectedCallback = Callable[[str], None]

_TERMINAL_CONNECTION_STATES = frozenset({"failed", "disconnected"})


def create_rtc_connection(ice_servers: Sequence[str]) -> RTCPeerConnection:
    configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
    return RTCPeerConnection(configuration=configuration)


def description_to_payload(description: Any) -> dict[str, str]:
    return {"type": description.type, "sdp": description.sdp}


def payload_to_description(payload: Any) -> RTCSessionDescription:
    if not isinstance(payload, dict) or not payload.get("sdp") or not payload.get("type"):
        raise SignalingDeliveryError(f"Invalid session description payload: {payload!r}")
    return RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])


def candidate_to_payload(candidate: RTCIceCandidate) -> dict[str, Any]:
    return {
        "candidate": f"candidate:{candidate_to_sdp(candidate)}",
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def payload_to_candidate(payload: Any) -> RTCIceCandidate | None:
    """Decode a browser-style candidate; ``None`` marks end-of-candidates."""
    if not isinstance(payload, dict):
        raise SignalingDeliveryError(f"Invalid ICE candidate payload: {payload!r}")
    line = payload.get("candidate") or ""
    if not line:
        return None
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    try:
        candidate = candidate_from_sdp(line)
    except (IndexError, ValueError) as exc:
        raise SignalingDeliveryError(f"Unparseable ICE candidate: {line!r}") from exc
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


class PeerSessionManager:
    """Owns one media connection per remote peer for an instructor or a student.

    Offer/answer/ICE handling for one peer is serialised by a per-peer lock;
    a failure on one peer tears down only that peer's connection.
    """

    def __init__(
        self,
        signaling: SignalingChannelManager,
        connection_factory: ConnectionFactory = create_rtc_connection,
        capture_factory: CaptureFactory = CameraCapture.open,
        ice_servers: Sequence[str] = ICE_SERVERS,
        poll_interval: float = SIGNALING_POLL_INTERVAL_SECONDS,
        on_stream_received: StreamReceivedCallback | None = None,
        on_peer_disconnected: PeerDisconnectedCallback | None = None,
    ) -> None:
        self._signaling = signaling
        self._connection_factory = connection_factory
        self._capture_factory = capture_factory
        self._ice_servers = list(ice_servers)
        self._poll_interval = poll_interval
        self.on_stream_received = on_stream_received
        self.on_peer_disconnected = on_peer_disconnected

        self._role: PeerRole | None = None
        self._student_id: str | None = None
        self._exam_code: str | None = None
        self._local_capture: Any = None
        self._connections: dict[str, PeerConnectionRecord] = {}
        self._peer_locks: dict[str, asyncio.Lock] = {}
        self._poll_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closing: set[asyncio.Task] = set()

    # --- Initialisation ---

    async def initialize_as_student(self, student_id: str, exam_code: str) -> None:
        """Acquire the webcam and prepare to send video to the instructor."""
        logger.info("Initializing peer session as student %s for exam %s", student_id, exam_code)
        try:
            capture = self._capture_factory()
        except MediaAccessError:
            raise
        except OSError as exc:
            raise MediaAccessError(classify_media_error(exc), str(exc)) from exc
        self._local_capture = capture
        self._role = PeerRole.STUDENT
        self._student_id = student_id
        self._exam_code = exam_code

    async def initialize_as_instructor(self, exam_code: str) -> None:
        logger.info("Initializing peer session as instructor for exam %s", exam_code)
        self._role = PeerRole.INSTRUCTOR
        self._student_id = None
        self._exam_code = exam_code

    @property
    def role(self) -> PeerRole | None:
        return self._role

    @property
    def exam_code(self) -> str | None:
        return self._exam_code

    @property
    def local_peer_id(self) -> str:
        if self._role is PeerRole.STUDENT and self._student_id:
            return self._student_id
        return INSTRUCTOR_PEER_ID

    @property
    def local_capture(self) -> Any:
        return self._local_capture

    # --- Connections ---

    async def create_peer_connection(self, peer_id: str) -> PeerConnectionRecord:
        """Create (or replace) the connection for ``peer_id``."""
        if self._role is None:
            raise RuntimeError("Peer session has not been initialized.")

        previous = self._connections.pop(peer_id, None)
        if previous is not None:
            previous.state = NegotiationState.CLOSED
            await self._close_connection(previous.connection)

        connection = self._connection_factory(self._ice_servers)
        record = PeerConnectionRecord(peer_id=peer_id, connection=connection, role=self._role)
        self._wire_connection(record)

        if self._role is PeerRole.STUDENT and self._local_capture is not None:
            for track in self._local_capture.get_tracks():
                connection.addTrack(track)

        self._connections[peer_id] = record
        logger.info("Created peer connection for %s", peer_id)
        return record

    def _wire_connection(self, record: PeerConnectionRecord) -> None:
        peer_id = record.peer_id
        connection = record.connection

        def on_ice_candidate(candidate: Any) -> None:
            if candidate is None:
                return
            self._send(MessageType.ICE_CANDIDATE, candidate_to_payload(candidate), peer_id)

        def on_track(track: Any) -> None:
            logger.info("Received remote %s track from %s", getattr(track, "kind", "media"), peer_id)
            if self._role is PeerRole.INSTRUCTOR and self.on_stream_received is not None:
                try:
                    self.on_stream_received(peer_id, track)
                except Exception:
                    logger.exception("Stream received callback failed for %s", peer_id)

        def on_connection_state_change() -> None:
            state = connection.connectionState
            logger.info("Connection state for %s changed to %s", peer_id, state)
            if state == "connected":
                current = self._connections.get(peer_id)
                if current is not None and current.connection is connection:
                    current.state = NegotiationState.CONNECTED
            elif state in _TERMINAL_CONNECTION_STATES:
                self._teardown_peer(peer_id, connection)

        connection.on("icecandidate", on_ice_candidate)
        connection.on("track", on_track)
        connection.on("connectionstatechange", on_connection_state_change)

    def _teardown_peer(self, peer_id: str, connection: Any) -> None:
        record = self._connections.get(peer_id)
        if record is None or record.connection is not connection:
            return
        del self._connections[peer_id]
        record.state = NegotiationState.CLOSED
        self._spawn(self._close_connection(connection), self._closing)
        logger.info("Peer disconnected: %s", peer_id)
        if self.on_peer_disconnected is not None:
            try:
                self.on_peer_disconnected(peer_id)
            except Exception:
                logger.exception("Peer disconnected callback failed for %s", peer_id)

    def _fail_peer(self, record: PeerConnectionRecord, exc: BaseException) -> None:
        error = NegotiationError(record.peer_id, str(exc) or type(exc).__name__)
        logger.error("Negotiation failed: %s", error, exc_info=exc)
        self._teardown_peer(record.peer_id, record.connection)

    async def _close_connection(self, connection: Any) -> None:
        try:
            await connection.close()
        except Exception:
            logger.exception("Error while closing peer connection")

    def _peer_lock(self, peer_id: str) -> asyncio.Lock:
        lock = self._peer_locks.get(peer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._peer_locks[peer_id] = lock
        return lock

    # --- Negotiation ---

    async def create_offer(self, remote_peer_id: str) -> None:
        async with self._peer_lock(remote_peer_id):
            record = self._connections.get(remote_peer_id)
            if record is None:
                record = await self.create_peer_connection(remote_peer_id)
            connection = record.connection
            try:
                offer = await connection.createOffer()
                await connection.setLocalDescription(offer)
            except Exception as exc:
                self._fail_peer(record, exc)
                return
            record.state = NegotiationState.HAVE_LOCAL_OFFER
            local = connection.localDescription or offer
            self._send(MessageType.OFFER, description_to_payload(local), remote_peer_id)
            logger.info("Offer sent to %s", remote_peer_id)

    async def handle_offer(self, offer: Any, from_peer_id: str) -> None:
        try:
            description = payload_to_description(offer)
        except SignalingDeliveryError as exc:
            logger.warning("Dropping offer from %s: %s", from_peer_id, exc)
            return

        async with self._peer_lock(from_peer_id):
            record = self._connections.get(from_peer_id)
            if record is None or record.state is not NegotiationState.NEW:
                # a fresh offer means the remote side restarted its session
                record = await self.create_peer_connection(from_peer_id)
            connection = record.connection
            try:
                await connection.setRemoteDescription(description)
                record.state = NegotiationState.HAVE_REMOTE_OFFER
                answer = await connection.createAnswer()
                await connection.setLocalDescription(answer)
            except Exception as exc:
                self._fail_peer(record, exc)
                return
            record.state = NegotiationState.HAVE_LOCAL_ANSWER
            local = connection.localDescription or answer
            self._send(MessageType.ANSWER, description_to_payload(local), from_peer_id)
            logger.info("Answer sent to %s", from_peer_id)

    async def handle_answer(self, answer: Any, from_peer_id: str) -> None:
        try:
            description = payload_to_description(answer)
        except SignalingDeliveryError as exc:
            logger.warning("Dropping answer from %s: %s", from_peer_id, exc)
            return

        async with self._peer_lock(from_peer_id):
            record = self._connections.get(from_peer_id)
            if record is None or record.state is not NegotiationState.HAVE_LOCAL_OFFER:
                logger.debug("Ignoring stray answer from %s", from_peer_id)
                return
            try:
                await record.connection.setRemoteDescription(description)
            except Exception as exc:
                self._fail_peer(record, exc)

    async def handle_ice_candidate(self, candidate: Any, from_peer_id: str) -> None:
        try:
            ice_candidate = payload_to_candidate(candidate)
        except SignalingDeliveryError as exc:
            logger.warning("Dropping ICE candidate from %s: %s", from_peer_id, exc)
            return
        if ice_candidate is None:
            return

        async with self._peer_lock(from_peer_id):
            record = self._connections.get(from_peer_id)
            if record is None:
                logger.debug("Dropping ICE candidate for unknown peer %s", from_peer_id)
                return
            try:
                await record.connection.addIceCandidate(ice_candidate)
            except Exception:
                logger.warning("Could not apply ICE candidate from %s", from_peer_id, exc_info=True)

    # --- Signaling ---

    def _send(self, message_type: MessageType, payload: Any, target_peer_id: str) -> None:
        if self._exam_code is None:
            raise RuntimeError("Peer session has not been initialized.")
        self._signaling.send_message(
            self._exam_code,
            {"type": message_type.value, "from": self.local_peer_id, "payload": payload},
            target_peer_id,
        )

    def start_signaling_polling(self) -> None:
        """Join the exam channel under the local id and poll it at a fixed interval."""
        if self._exam_code is None:
            raise RuntimeError("Peer session has not been initialized.")
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._signaling.join_channel(self._exam_code, self.local_peer_id, self._on_signaling_message)
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(), name=f"signaling-poll-{self.local_peer_id}"
        )
        logger.info("Signaling polling started for %s", self.local_peer_id)

    def stop_signaling_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self._exam_code is not None:
            self._signaling.leave_channel(self._exam_code, self.local_peer_id)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def _poll_loop(self) -> None:
        while True:
            try:
                # the store read can wait on another process's write lock
                messages = await asyncio.to_thread(self._signaling.store.read, self._exam_code)
                self._signaling.deliver_messages(self._exam_code, self.local_peer_id, messages)
            except Exception:
                logger.exception("Signaling poll failed for %s", self.local_peer_id)
            await asyncio.sleep(self._poll_interval)

    def _on_signaling_message(self, message: SignalingMessage) -> None:
        self._spawn(self.dispatch_message(message))

    async def dispatch_message(self, message: SignalingMessage) -> None:
        """Route one delivered signaling message to its handler by type."""
        sender = message.sender
        if not sender:
            logger.warning("Dropping signaling message %s without sender", message.id)
            return
        if message.type == MessageType.OFFER.value:
            if self._role is PeerRole.INSTRUCTOR:
                await self.handle_offer(message.payload, sender)
        elif message.type == MessageType.ANSWER.value:
            if self._role is PeerRole.STUDENT:
                await self.handle_answer(message.payload, sender)
        elif message.type == MessageType.ICE_CANDIDATE.value:
            await self.handle_ice_candidate(message.payload, sender)
        else:
            logger.debug("Ignoring signaling message of type %s", message.type)

    def _spawn(self, coro: Awaitable[Any], tasks: set[asyncio.Task] | None = None) -> asyncio.Task:
        tasks = self._tasks if tasks is None else tasks
        task = asyncio.ensure_future(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    # --- Introspection ---

    def get_peer_ids(self) -> list[str]:
        return list(self._connections)

    def get_peer_state(self, peer_id: str) -> NegotiationState | None:
        record = self._connections.get(peer_id)
        return record.state if record is not None else None

    def get_connection_state(self, peer_id: str) -> str | None:
        record = self._connections.get(peer_id)
        if record is None:
            return None
        return getattr(record.connection, "connectionState", None)

    async def get_connection_stats(self) -> dict[str, dict[str, Any]]:
        stats: dict[str, dict[str, Any]] = {}
        for peer_id, record in list(self._connections.items()):
            connection = record.connection
            try:
                raw_stats = await connection.getStats()
            except Exception:
                logger.exception("Could not read stats for %s", peer_id)
                continue
            stats[peer_id] = {
                "connection_state": connection.connectionState,
                "ice_connection_state": connection.iceConnectionState,
                "raw_stats": raw_stats,
            }
        return stats

    # --- Teardown ---

    async def cleanup(self) -> None:
        """Stop polling, close every connection and release the webcam."""
        logger.info("Cleaning up peer sessions")
        self.stop_signaling_polling()

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        # torn-down connections are already out of the peer map; let them close
        closing = list(self._closing)
        if closing:
            await asyncio.gather(*closing, return_exceptions=True)

        records = list(self._connections.values())
        self._connections.clear()
        self._peer_locks.clear()
        for record in records:
            record.state = NegotiationState.CLOSED
            await self._close_connection(record.connection)

        if self._local_capture is not None:
            self._local_capture.stop()
            self._local_capture = None

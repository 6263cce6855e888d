"""Headless student that streams the local webcam to the instructor console."""

from __future__ import annotations

import asyncio
import logging

from proctor_app.constants.network_constants import INSTRUCTOR_PEER_ID
from proctor_app.core.services.peer_sessions import PeerSessionManager
from proctor_app.core.services.signaling_channels import SignalingChannelManager

logger = logging.getLogger(__name__)


class StudentAgent:
    """Runs the student side of a peer session until cancelled.

    The agent signals through the shared message store, so it must run on a
    machine that can open the instructor's signaling database.
    """

    def __init__(
        self,
        student_id: str,
        exam_code: str,
        signaling: SignalingChannelManager,
        peer_sessions: PeerSessionManager | None = None,
    ) -> None:
        self.student_id = student_id
        self.exam_code = exam_code
        self._peer_sessions = peer_sessions or PeerSessionManager(signaling)
        self._peer_sessions.on_peer_disconnected = self._handle_disconnect
        self._reconnect = asyncio.Event()

    @property
    def peer_sessions(self) -> PeerSessionManager:
        return self._peer_sessions

    def _handle_disconnect(self, peer_id: str) -> None:
        logger.warning("Lost connection to %s; a new offer will be sent", peer_id)
        self._reconnect.set()

    async def start(self) -> None:
        """Acquire the camera, start polling and offer video to the instructor."""
        await self._peer_sessions.initialize_as_student(self.student_id, self.exam_code)
        self._peer_sessions.start_signaling_polling()
        await self._peer_sessions.create_offer(INSTRUCTOR_PEER_ID)

    async def run(self) -> None:
        await self.start()
        try:
            while True:
                await self._reconnect.wait()
                self._reconnect.clear()
                await self._peer_sessions.create_offer(INSTRUCTOR_PEER_ID)
        finally:
            await self._peer_sessions.cleanup()

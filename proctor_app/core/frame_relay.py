"""Keeps the most recent decoded video frame of every student stream."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from threading import Lock
from typing import Any

from aiortc.mediastreams import MediaStreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LatestFrame:
    """Packed RGB24 image ready for the Qt grid."""

    width: int
    height: int
    stride: int
    data: bytes


class FrameRelay:
    """Consumes remote video tracks and exposes their latest frame per student.

    Frames are produced on the asyncio loop and read from the Qt thread, so
    the frame table is guarded by a lock.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._frames: dict[str, LatestFrame] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def attach(self, student_id: str, track: Any) -> None:
        if getattr(track, "kind", "video") != "video":
            return
        self.detach(student_id)
        self._tasks[student_id] = asyncio.ensure_future(self._consume(student_id, track))
        logger.info("Relaying video for %s", student_id)

    def detach(self, student_id: str) -> None:
        task = self._tasks.pop(student_id, None)
        if task is not None:
            task.cancel()
        with self._lock:
            self._frames.pop(student_id, None)

    async def _consume(self, student_id: str, track: Any) -> None:
        while True:
            try:
                frame = await track.recv()
            except MediaStreamError:
                logger.info("Video track for %s ended", student_id)
                return
            rgb = frame.reformat(format="rgb24")
            plane = rgb.planes[0]
            latest = LatestFrame(
                width=rgb.width,
                height=rgb.height,
                stride=plane.line_size,
                data=bytes(plane),
            )
            with self._lock:
                self._frames[student_id] = latest

    def get_frame(self, student_id: str) -> LatestFrame | None:
        with self._lock:
            return self._frames.get(student_id)

    def has_stream(self, student_id: str) -> bool:
        return student_id in self._tasks and not self._tasks[student_id].done()

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        with self._lock:
            self._frames.clear()

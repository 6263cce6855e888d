"""
Shared fixtures for the proctoring tests.

Media connections and cameras are replaced by in-memory fakes that mimic the
parts of the aiortc API the services use.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from types import SimpleNamespace
from typing import Any

import pytest

from proctor_app.core.services.message_store import MessageStore
from proctor_app.core.services.signaling_channels import SignalingChannelManager


class FakeTimerHandle:
    def __init__(self, loop: "FakeLoop", when: float, callback) -> None:
        self._loop = loop
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Deterministic stand-in for ``loop.call_later`` driven by ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[FakeTimerHandle] = []

    def call_later(self, delay: float, callback, *args) -> FakeTimerHandle:
        handle = FakeTimerHandle(self, self.now + delay, lambda: callback(*args))
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeTimerHandle]:
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target


class FakeConnection:
    """Minimal peer connection recording every negotiation call."""

    def __init__(self, ice_servers=None, yield_on=()) -> None:
        self.ice_servers = list(ice_servers or [])
        self.connectionState = "new"
        self.iceConnectionState = "new"
        self.localDescription = None
        self.remoteDescription = None
        self.tracks: list[Any] = []
        self.candidates: list[Any] = []
        self.closed = False
        self.fail_on: set[str] = set()
        self.yield_on: set[str] = set(yield_on)
        self.calls: list[str] = []
        self._handlers: dict[str, list] = defaultdict(list)

    def on(self, event: str, handler=None):
        self._handlers[event].append(handler)
        return handler

    def emit(self, event: str, *args) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def set_state(self, state: str) -> None:
        self.connectionState = state
        self.emit("connectionstatechange")

    def addTrack(self, track) -> None:
        self.tracks.append(track)

    async def _step(self, name: str) -> None:
        if name in self.yield_on:
            await asyncio.sleep(0)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")
        self.calls.append(name)

    async def createOffer(self):
        await self._step("createOffer")
        return SimpleNamespace(type="offer", sdp="v=0 offer")

    async def createAnswer(self):
        await self._step("createAnswer")
        return SimpleNamespace(type="answer", sdp="v=0 answer")

    async def setLocalDescription(self, description) -> None:
        await self._step("setLocalDescription")
        self.localDescription = description

    async def setRemoteDescription(self, description) -> None:
        await self._step("setRemoteDescription")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate) -> None:
        await self._step("addIceCandidate")
        self.candidates.append(candidate)

    async def getStats(self):
        return {"transport": {"bytesReceived": 0}}

    async def close(self) -> None:
        self.closed = True
        self.connectionState = "closed"


class FakeTrack:
    def __init__(self, kind: str = "video") -> None:
        self.kind = kind
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeCapture:
    def __init__(self) -> None:
        self.track = FakeTrack()
        self.stopped = False

    def get_tracks(self) -> list[FakeTrack]:
        return [] if self.stopped else [self.track]

    def stop(self) -> None:
        self.stopped = True
        self.track.stop()


class ConnectionFactory:
    """Callable connection factory that remembers what it built."""

    def __init__(self) -> None:
        self.created: list[FakeConnection] = []
        self.yield_on: set[str] = set()

    def __call__(self, ice_servers) -> FakeConnection:
        connection = FakeConnection(ice_servers, yield_on=self.yield_on)
        self.created.append(connection)
        return connection


@pytest.fixture
def store(tmp_path) -> MessageStore:
    return MessageStore(tmp_path / "signaling.sqlite3")


@pytest.fixture
def signaling(store) -> SignalingChannelManager:
    return SignalingChannelManager(store)


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def connection_factory() -> ConnectionFactory:
    return ConnectionFactory()


@pytest.fixture
def fake_capture() -> FakeCapture:
    return FakeCapture()

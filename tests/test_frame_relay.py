"""
Tests for relaying decoded video frames to the console.
"""
import asyncio

import pytest
from aiortc.mediastreams import MediaStreamError

from proctor_app.core.frame_relay import FrameRelay


class FakePlane(bytes):
    line_size = 6


class FakeFrame:
    def __init__(self, fill: int):
        self.width = 2
        self.height = 1
        self.planes = [FakePlane(bytes([fill]) * 6)]

    def reformat(self, format):
        assert format == "rgb24"
        return self


class FakeVideoTrack:
    kind = "video"

    def __init__(self, frames):
        self._frames = list(frames)

    async def recv(self):
        if not self._frames:
            raise MediaStreamError
        await asyncio.sleep(0)
        return self._frames.pop(0)


class TestFrameRelay:
    """Tests for keeping the latest frame per student."""

    @pytest.mark.asyncio
    async def test_keeps_latest_frame(self):
        relay = FrameRelay()
        relay.attach("s1", FakeVideoTrack([FakeFrame(1), FakeFrame(2)]))

        for _ in range(20):
            await asyncio.sleep(0)

        frame = relay.get_frame("s1")
        assert frame.width == 2
        assert frame.stride == 6
        assert frame.data == bytes([2]) * 6
        assert not relay.has_stream("s1")
        await relay.close()

    @pytest.mark.asyncio
    async def test_audio_tracks_are_ignored(self):
        relay = FrameRelay()
        track = FakeVideoTrack([])
        track.kind = "audio"

        relay.attach("s1", track)

        assert not relay.has_stream("s1")

    @pytest.mark.asyncio
    async def test_detach_forgets_frame(self):
        relay = FrameRelay()
        relay.attach("s1", FakeVideoTrack([FakeFrame(1)]))
        for _ in range(5):
            await asyncio.sleep(0)

        relay.detach("s1")

        assert relay.get_frame("s1") is None
        await relay.close()

"""Local webcam capture for the student side of a media session."""

from __future__ import annotations

import errno
import logging
import platform
from typing import Any

from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from proctor_app.constants.proctor_constants import (
    CAPTURE_FRAMERATE,
    CAPTURE_HEIGHT,
    CAPTURE_WIDTH,
)
from proctor_app.core.errors import MediaAccessError, MediaAccessReason

logger = logging.getLogger(__name__)

_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}
_NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENODEV, errno.ENXIO}
_BUSY_ERRNOS = {errno.EBUSY}


def classify_media_error(exc: BaseException) -> MediaAccessReason:
    """Map a capture failure onto the reason shown to the student."""
    if isinstance(exc, PermissionError):
        return MediaAccessReason.PERMISSION_DENIED
    if isinstance(exc, FileNotFoundError):
        return MediaAccessReason.NOT_FOUND
    code = getattr(exc, "errno", None)
    if code in _PERMISSION_ERRNOS:
        return MediaAccessReason.PERMISSION_DENIED
    if code in _NOT_FOUND_ERRNOS:
        return MediaAccessReason.NOT_FOUND
    if code in _BUSY_ERRNOS:
        return MediaAccessReason.DEVICE_BUSY
    return MediaAccessReason.UNKNOWN


def _default_device() -> tuple[str, str]:
    system = platform.system()
    if system == "Darwin":
        return "default:none", "avfoundation"
    if system == "Windows":
        return "video=Integrated Camera", "dshow"
    return "/dev/video0", "v4l2"


class CameraCapture:
    """A live, video-only capture source whose tracks can be attached to connections."""

    def __init__(self, player: Any) -> None:
        self._player = player
        self._stopped = False

    @classmethod
    def open(
        cls,
        width: int = CAPTURE_WIDTH,
        height: int = CAPTURE_HEIGHT,
        framerate: int = CAPTURE_FRAMERATE,
        device: str | None = None,
        device_format: str | None = None,
    ) -> "CameraCapture":
        """Open the webcam; raises ``MediaAccessError`` when it is unavailable."""
        default_device, default_format = _default_device()
        device = device or default_device
        device_format = device_format or default_format
        options = {"video_size": f"{width}x{height}", "framerate": str(framerate)}
        try:
            player = MediaPlayer(device, format=device_format, options=options)
        except (OSError, FFmpegError) as exc:
            reason = classify_media_error(exc)
            logger.error("Camera %s unavailable (%s): %s", device, reason.value, exc)
            raise MediaAccessError(reason, str(exc)) from exc

        if player.video is None:
            raise MediaAccessError(MediaAccessReason.NOT_FOUND, f"{device} has no video stream")
        logger.info("Camera %s opened at %dx%d@%d", device, width, height, framerate)
        return cls(player)

    def get_tracks(self) -> list[Any]:
        if self._stopped or self._player.video is None:
            return []
        return [self._player.video]

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        video = self._player.video
        if video is not None:
            video.stop()
        logger.info("Camera capture stopped")

    @property
    def is_stopped(self) -> bool:
        return self._stopped

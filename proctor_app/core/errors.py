"""Error taxonomy shared by the proctoring services."""

from __future__ import annotations

from enum import Enum


class ProctorError(Exception):
    """Base class for proctoring errors."""


class MediaAccessReason(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    DEVICE_BUSY = "device_busy"
    UNKNOWN = "unknown"


_MEDIA_ACCESS_MESSAGES: dict[MediaAccessReason, str] = {
    MediaAccessReason.PERMISSION_DENIED: (
        "Camera access denied. Please allow camera access to continue with the exam."
    ),
    MediaAccessReason.NOT_FOUND: (
        "No camera was found. Connect a webcam and try again."
    ),
    MediaAccessReason.DEVICE_BUSY: (
        "The camera is in use by another application. Close it and try again."
    ),
    MediaAccessReason.UNKNOWN: (
        "The camera could not be started. Check the device and try again."
    ),
}


class MediaAccessError(ProctorError):
    """Local capture is unavailable; fatal to the peer session of that party."""

    def __init__(self, reason: MediaAccessReason, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        message = _MEDIA_ACCESS_MESSAGES[reason]
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SignalingDeliveryError(ProctorError):
    """A signaling message was malformed or could not be routed."""


class NegotiationError(ProctorError):
    """Offer/answer/ICE application failed for one peer."""

    def __init__(self, peer_id: str, message: str) -> None:
        self.peer_id = peer_id
        super().__init__(f"{peer_id}: {message}")


class SubmissionCallbackMissing(ProctorError):
    """A countdown was configured without a submission handler."""


class UnknownStudentError(ProctorError):
    """The student has not joined the exam."""


class ExamClosedError(ProctorError):
    """The student's exam was already submitted."""

"""Domain models for the proctoring application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any

from proctor_app.core.errors import SignalingDeliveryError


class MessageType(str, Enum):
    """Signaling message types exchanged during session negotiation."""

    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class PeerRole(Enum):
    """Which side of the media session the local party plays."""

    INSTRUCTOR = auto()  # many inbound, receive-only
    STUDENT = auto()  # one outbound, send-only


class NegotiationState(Enum):
    """Per-peer offer/answer progress."""

    NEW = auto()
    HAVE_LOCAL_OFFER = auto()
    HAVE_REMOTE_OFFER = auto()
    HAVE_LOCAL_ANSWER = auto()
    CONNECTED = auto()
    CLOSED = auto()


@dataclass(slots=True)
class SignalingMessage:
    """One entry in a channel's signaling log.

    ``recipient`` of ``None`` means the message is broadcast to the channel.
    Serialised with the wire keys ``from``/``to``/``channelId``.
    """

    id: str
    channel_id: str
    type: str
    payload: Any
    timestamp: int
    sender: str | None = None
    recipient: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "channelId": self.channel_id,
            "from": self.sender,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }
        if self.recipient is not None:
            data["to"] = self.recipient
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignalingMessage":
        try:
            message_id = data["id"]
            message_type = data["type"]
            timestamp = int(data["timestamp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SignalingDeliveryError(f"Malformed signaling message: {data!r}") from exc
        if not message_id or not message_type:
            raise SignalingDeliveryError(f"Signaling message lacks id or type: {data!r}")
        return cls(
            id=str(message_id),
            channel_id=str(data.get("channelId", "")),
            type=str(message_type),
            payload=data.get("payload"),
            timestamp=timestamp,
            sender=data.get("from"),
            recipient=data.get("to"),
        )

    def is_addressed_to(self, peer_id: str) -> bool:
        return self.recipient is None or self.recipient == peer_id


@dataclass(slots=True)
class ChannelStats:
    """Snapshot of a signaling channel."""

    channel_id: str
    peer_count: int
    message_count: int
    last_activity: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "peerCount": self.peer_count,
            "messageCount": self.message_count,
            "lastActivity": self.last_activity,
        }


@dataclass(slots=True)
class PeerConnectionRecord:
    """The single media connection owned for one remote peer."""

    peer_id: str
    connection: Any
    role: PeerRole
    state: NegotiationState = NegotiationState.NEW


@dataclass(slots=True)
class ViolationEntry:
    """A violation as shown in the instructor's log."""

    student_id: str
    display_name: str
    type: str
    description: str
    severity: str
    recorded_at: datetime


@dataclass(slots=True)
class ExamStudent:
    """A student who joined the exam session."""

    student_id: str
    display_name: str
    joined_at: datetime
    online: bool = True
    tab_switch_count: int = 0
    submitted_at: datetime | None = None
    submit_reason: str | None = None
    violation_total: int = 0
    stream_active: bool = False
    connection_state: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

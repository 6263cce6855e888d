"""Channel membership and at-most-once delivery on top of the message store."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
from threading import Lock
import time
from typing import Any
from uuid import uuid4

from proctor_app.constants.proctor_constants import MESSAGE_MAX_AGE_MS
from proctor_app.core.errors import SignalingDeliveryError
from proctor_app.core.models import ChannelStats, SignalingMessage
from proctor_app.core.services.message_store import MessageStore

logger = logging.getLogger(__name__)

MessageHandler = Callable[[SignalingMessage], Any]


class SignalingChannelManager:
    """Routes signaling messages between the peers of a channel by polling.

    A message is delivered at most once per peer registration: its id is
    remembered before the handler runs, so a failing handler is never
    retried and repeated polls never redeliver it.
    """

    def __init__(self, store: MessageStore) -> None:
        self._store = store
        self._lock = Lock()
        self._channels: dict[str, dict[str, MessageHandler]] = {}
        self._delivered: dict[tuple[str, str], set[str]] = {}

    @property
    def store(self) -> MessageStore:
        return self._store

    def join_channel(self, channel_id: str, peer_id: str, handler: MessageHandler) -> None:
        """Register ``handler`` for ``peer_id``; re-joining replaces the handler."""
        with self._lock:
            members = self._channels.setdefault(channel_id, {})
            rejoin = peer_id in members
            members[peer_id] = handler
            self._delivered.setdefault((channel_id, peer_id), set())
        if rejoin:
            logger.debug("Peer %s re-registered in channel %s", peer_id, channel_id)
        else:
            logger.info("Peer %s joined signaling channel %s", peer_id, channel_id)

    def leave_channel(self, channel_id: str, peer_id: str) -> None:
        """Leave ``channel_id``; the peer's handler is dropped from every channel."""
        with self._lock:
            for joined_id in [cid for cid, members in self._channels.items() if peer_id in members]:
                members = self._channels[joined_id]
                del members[peer_id]
                if not members:
                    del self._channels[joined_id]
            for key in [key for key in self._delivered if key[1] == peer_id]:
                del self._delivered[key]
        logger.info("Peer %s left signaling channel %s", peer_id, channel_id)

    def is_member(self, channel_id: str, peer_id: str) -> bool:
        with self._lock:
            return peer_id in self._channels.get(channel_id, {})

    def get_members(self, channel_id: str) -> list[str]:
        with self._lock:
            return sorted(self._channels.get(channel_id, {}))

    def has_handler(self, peer_id: str) -> bool:
        with self._lock:
            return any(peer_id in members for members in self._channels.values())

    def has_channel(self, channel_id: str) -> bool:
        with self._lock:
            return channel_id in self._channels

    def send_message(
        self,
        channel_id: str,
        message: Mapping[str, Any],
        target_peer_id: str | None = None,
    ) -> SignalingMessage:
        """Stamp ``message`` with an id and timestamp and append it to the channel log."""
        message_type = message.get("type")
        if not message_type:
            raise SignalingDeliveryError("Signaling message requires a type.")
        recipient = target_peer_id if target_peer_id is not None else message.get("to")
        signal = SignalingMessage(
            id=self.generate_message_id(),
            channel_id=channel_id,
            type=str(message_type),
            payload=message.get("payload"),
            timestamp=int(time.time() * 1000),
            sender=message.get("from"),
            recipient=recipient,
        )
        self._store.append(channel_id, signal)
        logger.debug(
            "Signaling message %s sent in %s: %s -> %s",
            signal.type,
            channel_id,
            signal.sender,
            signal.recipient or "broadcast",
        )
        return signal

    def poll_messages(self, channel_id: str, peer_id: str) -> int:
        """Deliver undelivered messages addressed to ``peer_id``; return how many."""
        return self.deliver_messages(channel_id, peer_id, self._store.read(channel_id))

    def deliver_messages(
        self,
        channel_id: str,
        peer_id: str,
        messages: list[SignalingMessage],
    ) -> int:
        """Hand ``messages`` already read from the channel log to the peer's handler."""
        with self._lock:
            handler = self._channels.get(channel_id, {}).get(peer_id)
            delivered = self._delivered.get((channel_id, peer_id))
            if handler is None or delivered is None:
                return 0
            # ids evicted from the log can never come back
            delivered.intersection_update(message.id for message in messages)
            pending = [
                message
                for message in messages
                if message.is_addressed_to(peer_id) and message.id not in delivered
            ]
            delivered.update(message.id for message in pending)

        for message in pending:
            try:
                handler(message)
            except Exception:
                logger.exception(
                    "Handler for %s failed on signaling message %s (%s)",
                    peer_id,
                    message.id,
                    message.type,
                )
        return len(pending)

    def get_channel_stats(self, channel_id: str) -> ChannelStats:
        messages = self._store.read(channel_id)
        with self._lock:
            peer_count = len(self._channels.get(channel_id, {}))
        return ChannelStats(
            channel_id=channel_id,
            peer_count=peer_count,
            message_count=len(messages),
            last_activity=messages[-1].timestamp if messages else None,
        )

    @staticmethod
    def generate_message_id() -> str:
        return f"msg_{int(time.time() * 1000)}_{uuid4().hex}"

    def cleanup(self) -> None:
        """Drop expired messages, forget every registration and wipe the store."""
        logger.info("Cleaning up signaling channels")
        self._store.purge_expired(MESSAGE_MAX_AGE_MS)
        with self._lock:
            self._channels.clear()
            self._delivered.clear()
        self._store.clear_all()

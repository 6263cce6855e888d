"""
Tests for the SQLite-backed signaling message store.
"""
import sqlite3
import time

from proctor_app.core.models import SignalingMessage
from proctor_app.core.services.message_store import MessageStore


def _message(index: int, channel: str = "EXAM1", timestamp: int | None = None) -> SignalingMessage:
    return SignalingMessage(
        id=f"msg_{index}",
        channel_id=channel,
        type="offer",
        payload={"index": index},
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        sender="s1",
        recipient="instructor",
    )


class TestMessageStore:
    """Tests for append, bounded retention and expiry."""

    def test_read_returns_messages_oldest_first(self, store):
        """Messages come back in the order they were appended."""
        for index in range(3):
            store.append("EXAM1", _message(index))

        assert [m.id for m in store.read("EXAM1")] == ["msg_0", "msg_1", "msg_2"]

    def test_read_preserves_wire_fields(self, store):
        """Sender, recipient and payload survive storage."""
        store.append("EXAM1", _message(7))

        (message,) = store.read("EXAM1")
        assert message.sender == "s1"
        assert message.recipient == "instructor"
        assert message.payload == {"index": 7}
        assert message.channel_id == "EXAM1"

    def test_channel_keeps_only_most_recent_messages(self, tmp_path):
        """Old messages are evicted once a channel exceeds its limit."""
        store = MessageStore(tmp_path / "bounded.sqlite3", max_messages=5)
        for index in range(8):
            store.append("EXAM1", _message(index))

        assert [m.id for m in store.read("EXAM1")] == [f"msg_{i}" for i in range(3, 8)]
        assert store.count("EXAM1") == 5

    def test_channels_are_isolated(self, store):
        store.append("A", _message(1, channel="A"))
        store.append("B", _message(2, channel="B"))

        assert [m.id for m in store.read("A")] == ["msg_1"]
        assert store.channel_ids() == ["A", "B"]

    def test_unknown_channel_reads_empty(self, store):
        assert store.read("missing") == []
        assert store.count("missing") == 0

    def test_purge_expired_removes_old_messages(self, store):
        """Messages older than the maximum age are deleted."""
        now = int(time.time() * 1000)
        store.append("EXAM1", _message(1, timestamp=now - 2 * 60 * 60 * 1000))
        store.append("EXAM1", _message(2, timestamp=now))

        removed = store.purge_expired(60 * 60 * 1000)

        assert removed == 1
        assert [m.id for m in store.read("EXAM1")] == ["msg_2"]

    def test_unreadable_rows_are_skipped(self, store):
        """A corrupt row does not hide the rest of the channel."""
        store.append("EXAM1", _message(1))
        conn = sqlite3.connect(store.db_path)
        with conn:
            conn.execute(
                "INSERT INTO signaling_messages (channel_id, message_id, created_at, body) "
                "VALUES ('EXAM1', 'bad', 0, 'not json')"
            )
        conn.close()
        store.append("EXAM1", _message(2))

        assert [m.id for m in store.read("EXAM1")] == ["msg_1", "msg_2"]

    def test_store_is_shared_between_instances(self, tmp_path):
        """Two stores on one file see each other's messages."""
        path = tmp_path / "shared.sqlite3"
        writer = MessageStore(path)
        reader = MessageStore(path)

        writer.append("EXAM1", _message(1))

        assert [m.id for m in reader.read("EXAM1")] == ["msg_1"]

    def test_clear_all(self, store):
        store.append("A", _message(1, channel="A"))
        store.append("B", _message(2, channel="B"))

        store.clear_all()

        assert store.channel_ids() == []

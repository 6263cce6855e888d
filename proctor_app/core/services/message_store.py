"""Shared, bounded per-channel log of signaling messages."""

from __future__ import annotations

from contextlib import closing
import json
import logging
from pathlib import Path
import sqlite3
import time

from proctor_app.constants.network_constants import SIGNALING_DB_TIMEOUT_SECONDS
from proctor_app.constants.proctor_constants import MAX_CHANNEL_MESSAGES, MESSAGE_MAX_AGE_MS
from proctor_app.core.errors import SignalingDeliveryError
from proctor_app.core.models import SignalingMessage

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS signaling_messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    body TEXT NOT NULL
)
"""
_INDEX = "CREATE INDEX IF NOT EXISTS idx_signaling_channel ON signaling_messages (channel_id, seq)"


def _now_ms() -> int:
    return int(time.time() * 1000)


class MessageStore:
    """Append-only signaling log backed by an SQLite file.

    Every call opens its own connection, so the store can be shared by the
    API server thread, the asyncio loop and other processes (a student agent
    on the same machine) without any in-process state.
    """

    def __init__(self, db_path: str | Path, max_messages: int = MAX_CHANNEL_MESSAGES) -> None:
        self._db_path = str(db_path)
        self._max_messages = max_messages
        with closing(self._connect()) as conn, conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_SCHEMA)
            conn.execute(_INDEX)

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=SIGNALING_DB_TIMEOUT_SECONDS)

    def append(self, channel_id: str, message: SignalingMessage) -> None:
        """Append ``message`` and keep only the most recent messages of the channel."""
        body = json.dumps(message.to_dict())
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO signaling_messages (channel_id, message_id, created_at, body) "
                "VALUES (?, ?, ?, ?)",
                (channel_id, message.id, message.timestamp, body),
            )
            conn.execute(
                "DELETE FROM signaling_messages WHERE channel_id = ? AND seq NOT IN ("
                "SELECT seq FROM signaling_messages WHERE channel_id = ? "
                "ORDER BY seq DESC LIMIT ?)",
                (channel_id, channel_id, self._max_messages),
            )

    def read(self, channel_id: str) -> list[SignalingMessage]:
        """Return the channel's messages, oldest first."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT body FROM signaling_messages WHERE channel_id = ? ORDER BY seq",
                (channel_id,),
            ).fetchall()

        messages: list[SignalingMessage] = []
        for (body,) in rows:
            try:
                messages.append(SignalingMessage.from_dict(json.loads(body)))
            except (json.JSONDecodeError, SignalingDeliveryError) as exc:
                logger.warning("Skipping unreadable signaling message in %s: %s", channel_id, exc)
        return messages

    def count(self, channel_id: str) -> int:
        with closing(self._connect()) as conn:
            (total,) = conn.execute(
                "SELECT COUNT(*) FROM signaling_messages WHERE channel_id = ?",
                (channel_id,),
            ).fetchone()
        return int(total)

    def channel_ids(self) -> list[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT DISTINCT channel_id FROM signaling_messages ORDER BY channel_id"
            ).fetchall()
        return [row[0] for row in rows]

    def purge_expired(self, max_age_ms: int = MESSAGE_MAX_AGE_MS) -> int:
        """Delete messages older than ``max_age_ms`` in every channel."""
        cutoff = _now_ms() - max_age_ms
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "DELETE FROM signaling_messages WHERE created_at < ?",
                (cutoff,),
            )
            removed = cursor.rowcount
        if removed:
            logger.info("Purged %d expired signaling message(s)", removed)
        return removed

    def clear_all(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM signaling_messages")

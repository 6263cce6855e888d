"""Network configuration constants for the proctoring application."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000

INSTRUCTOR_PEER_ID: str = "instructor"
SIGNALING_POLL_INTERVAL_SECONDS: float = 1.0
SIGNALING_DB_FILENAME: str = "signaling.sqlite3"
SIGNALING_DB_TIMEOUT_SECONDS: float = 5.0

ICE_SERVERS: tuple[str, ...] = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
)

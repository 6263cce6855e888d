"""Proctoring constants shared across UI, server and core layers."""

COUNTDOWN_SECONDS: int = 7
FINAL_WARNING_THRESHOLD_SECONDS: int = 3
COUNTDOWN_TICK_SECONDS: float = 1.0

MAX_CHANNEL_MESSAGES: int = 100
MESSAGE_MAX_AGE_MS: int = 60 * 60 * 1000

TAB_SWITCH_SUBMIT_LIMIT: int = 3
TAB_SWITCH_WARNINGS: dict[int, str] = {
    1: "First warning: Tab switching detected. Next switch will be your final warning.",
    2: "Final warning: Another tab switch will automatically submit your exam.",
}
TAB_SWITCH_SUBMITTED_MESSAGE: str = "Exam automatically submitted due to multiple tab switches."

CAPTURE_WIDTH: int = 640
CAPTURE_HEIGHT: int = 480
CAPTURE_FRAMERATE: int = 15

SUBMIT_REASON_VIOLATIONS: str = "violations"
SUBMIT_REASON_TAB_SWITCHES: str = "tab_switches"
SUBMIT_REASON_STUDENT: str = "student"
SUBMIT_REASON_INSTRUCTOR: str = "instructor"

"""Qt UI constants used across widgets."""

WINDOW_TITLE: str = "ProctorQt Instructor Console"
STUDENT_URL_PLACEHOLDER: str = "http://<instructor-ip>:8000/"
MONITOR_REFRESH_INTERVAL_MS: int = 1000

MODE_BUTTON_END: str = "End Exam"
MODE_BUTTON_ABOUT: str = "About"

GRID_EMPTY_STATE: str = "No students connected yet."
GRID_COUNT_TEMPLATE: str = "{count} student(s) in exam"
GRID_TILE_COLUMNS: int = 3
GRID_TILE_WIDTH: int = 320
GRID_TILE_HEIGHT: int = 240

VIOLATIONS_TITLE: str = "Violations"
VIOLATIONS_TOTAL_TEMPLATE: str = "Total: {count}"
VIOLATIONS_CLEAR_BUTTON: str = "Clear List"
VIOLATIONS_FLAG_BUTTON: str = "Flag Selected Student"
VIOLATIONS_EMPTY_STATE: str = "No violations recorded."

STATUS_ONLINE: str = "online"
STATUS_OFFLINE: str = "offline"
STATUS_SUBMITTED: str = "submitted"

SUBMISSION_FAILED_TITLE: str = "Auto-submission failed"
END_EXAM_CONFIRM_TEXT: str = "Ending the exam disconnects every student. Continue?"

"""Qt UI components for the instructor console."""

from .dialog_helpers import (
    confirm_end_exam,
    show_error,
    show_info,
    show_warning,
)
from .monitor_main_window import MonitorMainWindow

__all__ = [
    "MonitorMainWindow",
    "confirm_end_exam",
    "show_error",
    "show_info",
    "show_warning",
]

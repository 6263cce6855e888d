"""Component listing logged violations, most recent first."""

from __future__ import annotations

from collections.abc import Callable

from PySide6.QtCore import Qt
from PySide6.QtGui import QColor
from PySide6.QtWidgets import (
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from proctor_app.constants.ui_constants import (
    VIOLATIONS_CLEAR_BUTTON,
    VIOLATIONS_EMPTY_STATE,
    VIOLATIONS_FLAG_BUTTON,
    VIOLATIONS_TITLE,
    VIOLATIONS_TOTAL_TEMPLATE,
)
from proctor_app.core.errors import UnknownStudentError
from proctor_app.core.models import ViolationEntry
from proctor_app.core.proctor_manager import ProctorManager
from proctor_app.styling.color_palette import ColorPalette, Theme
from proctor_app.ui.dialog_helpers import show_warning


def format_entry(entry: ViolationEntry) -> str:
    timestamp = entry.recorded_at.strftime("%H:%M:%S")
    label = entry.type.replace("_", " ").upper()
    return f"[{timestamp}] {entry.display_name}: {label} - {entry.description}"


class ViolationsPanel(QGroupBox):
    """UI component showing the instructor's violation log."""

    def __init__(
        self,
        proctor_manager: ProctorManager,
        get_selected_student: Callable[[], str | None],
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(VIOLATIONS_TITLE, parent)
        self.proctor_manager = proctor_manager
        self.get_selected_student = get_selected_student
        self._snapshot: list[ViolationEntry] = []

        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout()
        self.setLayout(layout)

        self.total_label = QLabel(VIOLATIONS_TOTAL_TEMPLATE.format(count=0), self)
        layout.addWidget(self.total_label)

        self.violation_list = QListWidget(self)
        self.violation_list.setWordWrap(True)
        layout.addWidget(self.violation_list, stretch=1)

        self.empty_label = QLabel(VIOLATIONS_EMPTY_STATE, self)
        self.empty_label.setAlignment(Qt.AlignCenter)
        layout.addWidget(self.empty_label)

        button_row = QHBoxLayout()
        self.clear_button = QPushButton(VIOLATIONS_CLEAR_BUTTON, self)
        self.clear_button.clicked.connect(self._handle_clear)
        button_row.addWidget(self.clear_button)

        self.flag_button = QPushButton(VIOLATIONS_FLAG_BUTTON, self)
        self.flag_button.clicked.connect(self._handle_flag)
        button_row.addWidget(self.flag_button)
        layout.addLayout(button_row)

    def _handle_clear(self) -> None:
        self.proctor_manager.clear_violation_log()
        self.refresh()

    def _handle_flag(self) -> None:
        student_id = self.get_selected_student()
        if student_id is None:
            show_warning(self, "No student selected", "Click a student tile before flagging.")
            return
        try:
            self.proctor_manager.flag_student(student_id)
        except UnknownStudentError as exc:
            show_warning(self, "Flag failed", str(exc))
            return
        self.refresh()

    def refresh(self) -> None:
        entries = self.proctor_manager.get_violation_log()
        if entries == self._snapshot:
            return
        self._snapshot = entries
        self.violation_list.clear()
        for entry in entries:
            item = QListWidgetItem(format_entry(entry), self.violation_list)
            item.setForeground(QColor(ColorPalette.for_severity(entry.severity).get(Theme.LIGHT)))
        count = len(entries)
        self.total_label.setText(VIOLATIONS_TOTAL_TEMPLATE.format(count=count))
        self.empty_label.setVisible(count == 0)

"""Qt main window for monitoring a running exam."""

from __future__ import annotations

from PySide6.QtCore import Qt, QTimer
from PySide6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QPushButton,
    QSplitter,
    QVBoxLayout,
    QWidget,
)

from proctor_app.constants.about import (
    APP_ABOUT_TEXT,
    APP_LICENSE,
    APP_NAME,
    APP_VERSION,
    HELP_TEXT,
)
from proctor_app.constants.ui_constants import (
    MODE_BUTTON_ABOUT,
    MODE_BUTTON_END,
    MONITOR_REFRESH_INTERVAL_MS,
    STUDENT_URL_PLACEHOLDER,
    SUBMISSION_FAILED_TITLE,
    WINDOW_TITLE,
)
from proctor_app.core.proctor_manager import ProctorManager
from proctor_app.styling.styles import Styles
from proctor_app.ui.components.student_grid_panel import StudentGridPanel
from proctor_app.ui.components.violations_panel import ViolationsPanel
from proctor_app.ui.dialog_helpers import confirm_end_exam, show_error, show_info


class MonitorMainWindow(QMainWindow):
    """Main Qt window showing the student grid beside the violation log."""

    def __init__(self, proctor_manager: ProctorManager, student_url: str | None = None) -> None:
        super().__init__()
        self.setWindowTitle(WINDOW_TITLE)

        self.proctor_manager = proctor_manager
        self.student_url = student_url or STUDENT_URL_PLACEHOLDER
        self._exam_ended = False

        self._build_ui()
        self._configure_refresh_timer()
        self.setStyleSheet(Styles.get_main_window_style())

    def _build_ui(self) -> None:
        central_widget = QWidget(self)
        self.setCentralWidget(central_widget)

        root_layout = QVBoxLayout()
        central_widget.setLayout(root_layout)

        self.network_label = QLabel(
            f"Exam code: {self.proctor_manager.exam_code}    Students connect to: {self.student_url}",
            self,
        )
        self.network_label.setWordWrap(True)
        self.network_label.setStyleSheet(Styles.get_large_label_style())
        root_layout.addWidget(self.network_label)

        self._build_mode_buttons(root_layout)

        splitter = QSplitter(Qt.Horizontal, self)
        self.grid_panel = StudentGridPanel(self.proctor_manager, parent=splitter)
        self.violations_panel = ViolationsPanel(
            self.proctor_manager,
            get_selected_student=lambda: self.grid_panel.selected_student_id,
            parent=splitter,
        )
        splitter.addWidget(self.grid_panel)
        splitter.addWidget(self.violations_panel)
        splitter.setStretchFactor(0, 3)
        splitter.setStretchFactor(1, 1)
        root_layout.addWidget(splitter, stretch=1)

    def _build_mode_buttons(self, layout: QVBoxLayout) -> None:
        button_row = QHBoxLayout()

        self.end_exam_button = QPushButton(MODE_BUTTON_END, self)
        self.end_exam_button.clicked.connect(self._handle_end_exam)
        button_row.addWidget(self.end_exam_button)

        self.help_button = QPushButton("Help", self)
        self.help_button.clicked.connect(self._handle_help)
        button_row.addWidget(self.help_button)

        self.about_button = QPushButton(MODE_BUTTON_ABOUT, self)
        self.about_button.clicked.connect(self._handle_about)
        button_row.addWidget(self.about_button)

        button_row.addStretch(1)
        layout.addLayout(button_row)

    def _configure_refresh_timer(self) -> None:
        self.refresh_timer = QTimer(self)
        self.refresh_timer.setInterval(MONITOR_REFRESH_INTERVAL_MS)
        self.refresh_timer.timeout.connect(self._refresh_state)
        self.refresh_timer.start()

    def _refresh_state(self) -> None:
        self.grid_panel.refresh()
        self.violations_panel.refresh()
        self._report_submission_failures()

    def _report_submission_failures(self) -> None:
        failures = self.proctor_manager.pop_submission_failures()
        if not failures:
            return
        # The modal dialog would re-enter this slot on every tick.
        self.refresh_timer.stop()
        try:
            for student_id in failures:
                show_error(
                    self,
                    SUBMISSION_FAILED_TITLE,
                    f"The exam for {student_id} could not be submitted automatically. "
                    "Collect the student's work manually.",
                )
        finally:
            self.refresh_timer.start()

    def _handle_end_exam(self) -> None:
        if self._exam_ended or not confirm_end_exam(self):
            return
        submitted = self.proctor_manager.end_exam()
        self._exam_ended = True
        self.end_exam_button.setEnabled(False)
        show_info(self, "Exam ended", f"Submitted {len(submitted)} open exam(s).")

    def _handle_about(self) -> None:
        details = (
            f"{APP_NAME} v{APP_VERSION}\n"
            f"License: {APP_LICENSE}\n\n"
            f"{APP_ABOUT_TEXT}"
        )
        show_info(self, f"About {APP_NAME}", details)

    def _handle_help(self) -> None:
        show_info(self, f"{APP_NAME} Help", HELP_TEXT)

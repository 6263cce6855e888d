"""Grid of live student video tiles with countdown badges."""

from __future__ import annotations

from collections.abc import Callable

from PySide6.QtCore import Qt
from PySide6.QtGui import QImage, QPixmap
from PySide6.QtWidgets import (
    QFrame,
    QGridLayout,
    QLabel,
    QScrollArea,
    QVBoxLayout,
    QWidget,
)

from proctor_app.constants.ui_constants import (
    GRID_COUNT_TEMPLATE,
    GRID_EMPTY_STATE,
    GRID_TILE_COLUMNS,
    GRID_TILE_HEIGHT,
    GRID_TILE_WIDTH,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    STATUS_SUBMITTED,
)
from proctor_app.core.frame_relay import LatestFrame
from proctor_app.core.proctor_manager import ProctorManager, StudentOverview
from proctor_app.styling.color_palette import ColorPalette, ThemeColors
from proctor_app.styling.styles import Styles


def frame_to_pixmap(frame: LatestFrame, width: int, height: int) -> QPixmap:
    image = QImage(frame.data, frame.width, frame.height, frame.stride, QImage.Format_RGB888)
    # QImage borrows the buffer; copy before the frame is replaced.
    pixmap = QPixmap.fromImage(image.copy())
    return pixmap.scaled(width, height, Qt.KeepAspectRatio, Qt.SmoothTransformation)


def describe_status(overview: StudentOverview) -> str:
    if overview.submitted:
        return f"{STATUS_SUBMITTED} ({overview.submit_reason})"
    status = STATUS_ONLINE if overview.online else STATUS_OFFLINE
    if overview.connection_state:
        status = f"{status} · {overview.connection_state}"
    return f"{status} · tab switches: {overview.tab_switch_count}"


def describe_countdown(overview: StudentOverview) -> str:
    countdown = overview.countdown
    if overview.submitted or countdown is None or not countdown.is_countdown_active:
        return ""
    prefix = "FINAL WARNING" if countdown.is_final_warning else "Auto-submit"
    return f"{prefix}: {countdown.remaining_seconds}s ({countdown.violation_count} violation(s))"


def tile_color(overview: StudentOverview) -> ThemeColors:
    countdown = overview.countdown
    if overview.submitted:
        return ColorPalette.SUBMITTED
    if countdown is not None and countdown.is_countdown_active:
        return ColorPalette.FINAL_WARNING if countdown.is_final_warning else ColorPalette.COUNTDOWN
    return ColorPalette.ONLINE if overview.online else ColorPalette.OFFLINE


class StudentTile(QFrame):
    """Video preview and status badges for one student."""

    def __init__(
        self,
        student_id: str,
        on_click: Callable[[str], None],
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.student_id = student_id
        self.on_click = on_click
        self.setObjectName("studentTile")
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout()
        self.setLayout(layout)

        self.video_label = QLabel("Waiting for video…", self)
        self.video_label.setAlignment(Qt.AlignCenter)
        self.video_label.setFixedSize(GRID_TILE_WIDTH, GRID_TILE_HEIGHT)
        self.video_label.setStyleSheet(Styles.get_video_style())
        layout.addWidget(self.video_label)

        self.name_label = QLabel(self.student_id, self)
        self.name_label.setStyleSheet("font-weight: bold;")
        layout.addWidget(self.name_label)

        self.status_label = QLabel("", self)
        layout.addWidget(self.status_label)

        self.countdown_label = QLabel("", self)
        layout.addWidget(self.countdown_label)

    def mousePressEvent(self, event) -> None:
        self.on_click(self.student_id)
        super().mousePressEvent(event)

    def update_overview(self, overview: StudentOverview, frame: LatestFrame | None) -> None:
        self.name_label.setText(f"{overview.display_name} ({overview.student_id})")
        self.status_label.setText(describe_status(overview))

        color = tile_color(overview)
        self.setStyleSheet(Styles.get_tile_style(color))
        self.countdown_label.setText(describe_countdown(overview))
        self.countdown_label.setStyleSheet(Styles.get_badge_style(color))

        if frame is not None and overview.stream_active:
            self.video_label.setPixmap(frame_to_pixmap(frame, GRID_TILE_WIDTH, GRID_TILE_HEIGHT))
        else:
            self.video_label.clear()
            self.video_label.setText("Waiting for video…" if not overview.submitted else "Exam submitted")


class StudentGridPanel(QWidget):
    """UI component showing every student's stream in a grid."""

    def __init__(
        self,
        proctor_manager: ProctorManager,
        on_select: Callable[[str], None] | None = None,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.proctor_manager = proctor_manager
        self.on_select = on_select
        self._tiles: dict[str, StudentTile] = {}
        self._selected_student_id: str | None = None

        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout()
        self.setLayout(layout)

        self.count_label = QLabel(GRID_COUNT_TEMPLATE.format(count=0), self)
        layout.addWidget(self.count_label)

        self.empty_label = QLabel(GRID_EMPTY_STATE, self)
        self.empty_label.setAlignment(Qt.AlignCenter)
        layout.addWidget(self.empty_label)

        self.scroll_area = QScrollArea(self)
        self.scroll_area.setWidgetResizable(True)
        container = QWidget(self.scroll_area)
        self.grid_layout = QGridLayout()
        container.setLayout(self.grid_layout)
        self.scroll_area.setWidget(container)
        layout.addWidget(self.scroll_area, stretch=1)

    @property
    def selected_student_id(self) -> str | None:
        return self._selected_student_id

    def _handle_tile_click(self, student_id: str) -> None:
        self._selected_student_id = student_id
        if self.on_select is not None:
            self.on_select(student_id)

    def refresh(self) -> None:
        overviews = self.proctor_manager.get_student_overviews()
        for overview in overviews:
            tile = self._tiles.get(overview.student_id)
            if tile is None:
                tile = StudentTile(overview.student_id, self._handle_tile_click, self)
                index = len(self._tiles)
                self.grid_layout.addWidget(
                    tile, index // GRID_TILE_COLUMNS, index % GRID_TILE_COLUMNS
                )
                self._tiles[overview.student_id] = tile
            tile.update_overview(overview, self.proctor_manager.get_frame(overview.student_id))

        count = len(overviews)
        self.count_label.setText(GRID_COUNT_TEMPLATE.format(count=count))
        self.empty_label.setVisible(count == 0)

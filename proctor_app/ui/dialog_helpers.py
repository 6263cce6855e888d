"""Helper functions for common dialog patterns in the instructor console."""

from __future__ import annotations

from PySide6.QtWidgets import QMessageBox, QWidget

from proctor_app.constants.ui_constants import END_EXAM_CONFIRM_TEXT


def confirm_end_exam(parent: QWidget) -> bool:
    """Ask the instructor to confirm ending the exam for every student.

    Returns:
        True if user confirmed, False otherwise
    """
    reply = QMessageBox.question(
        parent,
        "End Exam",
        END_EXAM_CONFIRM_TEXT,
        QMessageBox.Yes | QMessageBox.No,
        QMessageBox.No
    )
    return reply == QMessageBox.Yes


def show_error(parent: QWidget, title: str, message: str) -> None:
    """Show a modal error dialog; blocks until dismissed.

    Args:
        parent: Parent widget for the dialog
        title: Dialog title
        message: Error message
    """
    QMessageBox.critical(parent, title, message)


def show_info(parent: QWidget, title: str, message: str) -> None:
    msg_box = QMessageBox(parent)
    msg_box.setIcon(QMessageBox.Information)
    msg_box.setWindowTitle(title)
    msg_box.setText(message)
    msg_box.setStandardButtons(QMessageBox.Ok)
    msg_box.exec()


def show_warning(parent: QWidget, title: str, message: str) -> None:
    QMessageBox.warning(parent, title, message)

"""Application entry point for the ProctorQt console and headless student agent."""

from __future__ import annotations

import argparse
import asyncio
import secrets
import socket
import sys

from PySide6.QtWidgets import QApplication

from proctor_app.client.student_agent import StudentAgent
from proctor_app.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    SIGNALING_DB_FILENAME,
)
from proctor_app.core.errors import MediaAccessError
from proctor_app.core.proctor_manager import ProctorManager
from proctor_app.core.services.message_store import MessageStore
from proctor_app.core.services.signaling_channels import SignalingChannelManager
from proctor_app.server.api_server import start_api_server
from proctor_app.ui.monitor_main_window import MonitorMainWindow
from proctor_app.utils.logging_config import configure_logging


def _determine_student_url(port: int) -> str:
    """Best-effort determination of the local IP for student-facing URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def _generate_exam_code() -> str:
    return secrets.token_hex(3).upper()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Classroom exam proctoring over WebRTC.")
    parser.add_argument("--exam-code", help="Exam code students enter to join.")
    parser.add_argument(
        "--student",
        metavar="STUDENT_ID",
        help="Run as a headless student streaming this machine's webcam.",
    )
    parser.add_argument(
        "--db-path",
        default=SIGNALING_DB_FILENAME,
        help="Shared signaling database (default: %(default)s).",
    )
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    return parser


def run_student(student_id: str, exam_code: str, signaling: SignalingChannelManager) -> int:
    logger = configure_logging()
    agent = StudentAgent(student_id=student_id, exam_code=exam_code, signaling=signaling)
    try:
        asyncio.run(agent.run())
    except MediaAccessError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Student agent stopped")
    return 0


def run_instructor(exam_code: str, signaling: SignalingChannelManager, host: str, port: int) -> int:
    logger = configure_logging()
    logger.info("Starting ProctorQt for exam %s…", exam_code)

    proctor_manager = ProctorManager(exam_code=exam_code, signaling=signaling)
    server_thread = start_api_server(proctor_manager, host=host, port=port)
    student_url = _determine_student_url(port)
    logger.info("Student page available at %s", student_url)

    app = QApplication(sys.argv)
    window = MonitorMainWindow(proctor_manager=proctor_manager, student_url=student_url)
    window.show()
    try:
        return app.exec()
    finally:
        server_thread.stop()
        signaling.cleanup()


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and launch either the instructor console or a student agent."""
    args = build_parser().parse_args(argv)
    signaling = SignalingChannelManager(MessageStore(args.db_path))

    if args.student:
        if not args.exam_code:
            build_parser().error("--student requires --exam-code")
        sys.exit(run_student(args.student, args.exam_code, signaling))

    exam_code = args.exam_code or _generate_exam_code()
    sys.exit(run_instructor(exam_code, signaling, args.host, args.port))


if __name__ == "__main__":
    main()

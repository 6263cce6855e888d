"""Static metadata describing ProctorQt."""

APP_NAME = "ProctorQt"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "ProctorQt is a classroom exam proctoring console built with Qt, FastAPI and WebRTC. "
    "Students open the exam page in a browser and stream their webcam to this console; "
    "unresolved violations trigger a short countdown before the exam is submitted."
)

HELP_TEXT = (
    "Share the student URL and the exam code with your class. Each student joins with "
    "their student number and allows camera access.\n\n"
    "A violation (no face, multiple people, prohibited object) starts a 7 second countdown "
    "on the student's page. Correcting every violation cancels it; otherwise the exam is "
    "submitted automatically. Three tab switches also submit the exam."
)

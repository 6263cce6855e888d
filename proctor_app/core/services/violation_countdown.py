"""Countdown to automatic exam submission driven by the set of active violations."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
import logging
from typing import Any

from proctor_app.constants.proctor_constants import (
    COUNTDOWN_SECONDS,
    COUNTDOWN_TICK_SECONDS,
    FINAL_WARNING_THRESHOLD_SECONDS,
)
from proctor_app.core.errors import SubmissionCallbackMissing

logger = logging.getLogger(__name__)

SubmitHandler = Callable[[], Any]


class CountdownPhase(Enum):
    IDLE = auto()
    COUNTING = auto()
    FINAL_WARNING = auto()


class CountdownEventKind(Enum):
    STARTED = auto()
    TICK = auto()
    FINAL_WARNING = auto()
    STOPPED = auto()
    SUBMITTED = auto()
    SUBMISSION_FAILED = auto()
    VIOLATIONS_CHANGED = auto()


@dataclass(frozen=True, slots=True)
class CountdownStatus:
    """Read-only snapshot of the countdown."""

    is_countdown_active: bool
    remaining_seconds: int
    violation_count: int
    violations: tuple[str, ...]
    phase: CountdownPhase

    @property
    def is_final_warning(self) -> bool:
        return self.phase is CountdownPhase.FINAL_WARNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_countdown_active": self.is_countdown_active,
            "remaining_seconds": self.remaining_seconds,
            "violation_count": self.violation_count,
            "violations": list(self.violations),
            "phase": self.phase.name.lower(),
            "is_final_warning": self.is_final_warning,
        }


@dataclass(frozen=True, slots=True)
class CountdownEvent:
    kind: CountdownEventKind
    status: CountdownStatus


CountdownListener = Callable[[CountdownEvent], None]


def violation_key(violation_type: str, description: str) -> str:
    return f"{violation_type}:{description}"


class ViolationCountdown:
    """Single shared countdown gating automatic submission.

    The countdown runs exactly while at least one violation is active. It
    starts at ``seconds`` when the first violation appears; further
    violations do not reset it. Reaching zero clears the violations, returns
    to idle and calls the submit handler once.
    """

    def __init__(
        self,
        submit_handler: SubmitHandler | None,
        loop: asyncio.AbstractEventLoop | None = None,
        seconds: int = COUNTDOWN_SECONDS,
        warning_threshold: int = FINAL_WARNING_THRESHOLD_SECONDS,
        tick_seconds: float = COUNTDOWN_TICK_SECONDS,
    ) -> None:
        if submit_handler is None:
            raise SubmissionCallbackMissing("A violation countdown needs a submission handler.")
        self._submit_handler: SubmitHandler = submit_handler
        self._loop = loop
        self._initial_seconds = seconds
        self._warning_threshold = warning_threshold
        self._tick_seconds = tick_seconds

        self._violations: dict[str, None] = {}
        self._seconds_remaining = seconds
        self._is_active = False
        self._timer_handle: asyncio.TimerHandle | None = None
        self._listeners: list[CountdownListener] = []

    # --- Violations ---

    def add_violation(self, violation_type: str, description: str) -> None:
        key = violation_key(violation_type, description)
        if key not in self._violations:
            self._violations[key] = None
            logger.info("Violation added: %s", key)
            self._emit(CountdownEventKind.VIOLATIONS_CHANGED)
        if not self._is_active:
            self._start()

    def remove_violation(self, violation_type: str, description: str) -> None:
        key = violation_key(violation_type, description)
        if key in self._violations:
            del self._violations[key]
            logger.info("Violation removed: %s", key)
            self._emit(CountdownEventKind.VIOLATIONS_CHANGED)
        if not self._violations and self._is_active:
            self._stop()

    def clear_all_violations(self) -> None:
        if self._violations:
            self._violations.clear()
            logger.info("All violations cleared")
            self._emit(CountdownEventKind.VIOLATIONS_CHANGED)
        if self._is_active:
            self._stop()

    # --- Timer ---

    def _start(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        logger.info("Starting violation countdown")
        self._is_active = True
        self._seconds_remaining = self._initial_seconds
        self._timer_handle = loop.call_later(self._tick_seconds, self._tick)
        self._emit(CountdownEventKind.STARTED)

    def _tick(self) -> None:
        self._timer_handle = None
        if not self._is_active:
            return
        self._seconds_remaining -= 1
        if self._seconds_remaining <= 0:
            self._execute_submission()
            return

        self._emit(CountdownEventKind.TICK)
        if self._seconds_remaining == self._warning_threshold:
            self._emit(CountdownEventKind.FINAL_WARNING)
        loop = self._loop or asyncio.get_running_loop()
        self._timer_handle = loop.call_later(self._tick_seconds, self._tick)

    def _halt(self) -> None:
        if self._timer_handle is not None:
            self._timer_handle.cancel()
            self._timer_handle = None
        self._is_active = False
        self._seconds_remaining = self._initial_seconds

    def _stop(self) -> None:
        logger.info("Stopping violation countdown - violations cleared")
        self._halt()
        self._emit(CountdownEventKind.STOPPED)

    def _execute_submission(self) -> None:
        logger.warning(
            "Countdown reached zero with %d violation(s) - executing auto-submission",
            len(self._violations),
        )
        self._halt()
        self._violations.clear()
        try:
            self._submit_handler()
        except Exception:
            logger.exception("Auto-submission handler failed")
            self._emit(CountdownEventKind.SUBMISSION_FAILED)
            return
        self._emit(CountdownEventKind.SUBMITTED)

    # --- Callbacks & listeners ---

    def on_submit(self, callback: SubmitHandler | None) -> None:
        """Replace the submission handler; the last registration wins."""
        if callback is None:
            raise SubmissionCallbackMissing("A violation countdown needs a submission handler.")
        self._submit_handler = callback

    def add_listener(self, listener: CountdownListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: CountdownListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, kind: CountdownEventKind) -> None:
        if not self._listeners:
            return
        event = CountdownEvent(kind=kind, status=self.get_status())
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Countdown listener failed on %s", kind.name)

    # --- Status ---

    def _phase(self) -> CountdownPhase:
        if not self._is_active:
            return CountdownPhase.IDLE
        if self._seconds_remaining <= self._warning_threshold:
            return CountdownPhase.FINAL_WARNING
        return CountdownPhase.COUNTING

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def has_timer(self) -> bool:
        return self._timer_handle is not None

    def get_status(self) -> CountdownStatus:
        return CountdownStatus(
            is_countdown_active=self._is_active,
            remaining_seconds=self._seconds_remaining,
            violation_count=len(self._violations),
            violations=tuple(reversed(self._violations)),
            phase=self._phase(),
        )

    def cleanup(self, keep_listeners: bool = False) -> None:
        """Cancel the timer and forget violations; listeners go too unless kept."""
        logger.info("Cleaning up violation countdown")
        self._halt()
        self._violations.clear()
        if not keep_listeners:
            self._listeners.clear()

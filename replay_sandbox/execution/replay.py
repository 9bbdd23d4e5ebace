# replay_sandbox/execution/replay.py
"""
Suspension by re-execution.

The interpreter cannot pause a call stack, so a program that asks for input
is stopped and later re-run from the top with every value supplied so far.
An `InteractiveRun` is one logical run: it owns the input queue, keeps one
seed for all its attempts and hands back a fresh, authoritative result on
every attempt.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import List, Optional

from ..errors import NotAwaitingInputError, SessionBusyError
from ..models import ExecutionResult, RunMode, SourceUnit
from .coordinator import ExecutionCoordinator
from .determinism import DeterminismGuard

logger = logging.getLogger(__name__)


class InputQueue:
    """Append-only list of human-supplied values with a replay cursor."""

    def __init__(self, values: Optional[List[str]] = None):
        self._values: List[str] = [str(v) for v in (values or [])]
        self.cursor = 0

    @property
    def values(self) -> List[str]:
        return list(self._values)

    def append(self, value: str) -> None:
        self._values.append(str(value))

    def reset_cursor(self) -> None:
        self.cursor = 0

    def next(self) -> Optional[str]:
        if self.cursor >= len(self._values):
            return None
        value = self._values[self.cursor]
        self.cursor += 1
        return value

    def mark_consumed(self, count: int) -> None:
        """Record how many values the last attempt actually read."""
        self.cursor = min(max(0, count), len(self._values))

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self._values)

    def __len__(self) -> int:
        return len(self._values)


class InteractiveRun:
    """
    One logical run of a program that may stop to ask for input.

    Resumes are strictly ordered: `resume()` is only valid right after an
    AWAITING_INPUT result, and a second resume while one is in flight raises
    SessionBusyError.
    """

    def __init__(
        self,
        coordinator: ExecutionCoordinator,
        guard: DeterminismGuard,
        source: SourceUnit,
        session_key: str,
        timeout_s: float = 10.0,
        queue: Optional[InputQueue] = None,
        run_id: Optional[str] = None,
    ):
        self.coordinator = coordinator
        self.guard = guard
        self.source = source
        self.session_key = session_key
        self.timeout_s = timeout_s
        self.queue = queue or InputQueue()
        self.run_id = run_id or f"run-{uuid.uuid4().hex[:12]}"
        self.cancel_event = threading.Event()
        self.last_result: Optional[ExecutionResult] = None
        self.attempts = 0
        self._in_flight = threading.Lock()

    @property
    def awaiting_input(self) -> bool:
        return self.last_result is not None and self.last_result.awaiting_input

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def _attempt(self, echo: Optional[str] = None) -> ExecutionResult:
        self.queue.reset_cursor()
        self.attempts += 1
        result = self.coordinator.execute(
            self.source,
            self.session_key,
            self.queue,
            seed=self.guard.apply_seed(self.run_id),
            mode=RunMode.INTERACTIVE,
            timeout_s=self.timeout_s,
            run_id=self.run_id,
            cancel_event=self.cancel_event,
        )
        if echo is not None:
            result = result.model_copy(update={"echo": echo})
        self.last_result = result
        return result

    def start(self, echo: Optional[str] = None) -> ExecutionResult:
        """First attempt of the run, replaying whatever the queue already holds."""
        if not self._in_flight.acquire(blocking=False):
            raise SessionBusyError(f"Run {self.run_id} already has an attempt in flight")
        try:
            self.guard.initialize(self.run_id)
            return self._attempt(echo=echo)
        finally:
            self._in_flight.release()

    def resume(self, value: str) -> ExecutionResult:
        """Append one value and re-run the program from the top."""
        if not self._in_flight.acquire(blocking=False):
            raise SessionBusyError(f"Run {self.run_id} already has a resume in flight")
        try:
            if not self.awaiting_input:
                raise NotAwaitingInputError(f"Run {self.run_id} is not waiting for input")
            self.queue.append(value)
            logger.debug("Resuming %s with %d queued value(s)", self.run_id, len(self.queue))
            return self._attempt(echo=value)
        finally:
            self._in_flight.release()

    def cancel(self) -> None:
        """Abandon the run: stop remote polling, drop the seed and the session."""
        self.cancel_event.set()
        self.guard.reset(self.run_id)
        self.coordinator.sessions.reset(self.session_key)

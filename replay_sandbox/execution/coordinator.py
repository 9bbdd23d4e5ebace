# replay_sandbox/execution/coordinator.py
"""
Run one source unit on one session and turn the interpreter's reply into an
ExecutionResult.

Program failures (exceptions, EOF in batch mode, timeouts) are results, not
exceptions. The remote fallback is only used when the local interpreter
cannot be started at all.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Optional

from ..errors import InitializationFailure, InterpreterCrashed, InterpreterTimeout
from ..models import ExecutionResult, RunMode, RunStatus, SourceUnit
from ..remote.judge0 import Judge0Client, interpret_status, run_status_for
from ..sandbox.session_manager import SessionManager
from .line_translator import format_error, translate_traceback

if TYPE_CHECKING:
    from .replay import InputQueue

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ExecutionCoordinator:
    def __init__(
        self,
        sessions: SessionManager,
        remote: Optional[Judge0Client] = None,
        remote_max_wait_s: float = 10.0,
    ):
        self.sessions = sessions
        self.remote = remote
        self.remote_max_wait_s = remote_max_wait_s

    def execute(
        self,
        source: SourceUnit,
        session_key: str,
        queue: "InputQueue",
        seed: Optional[int] = None,
        mode: RunMode = RunMode.INTERACTIVE,
        timeout_s: float = 10.0,
        echo_inputs: bool = True,
        run_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """
        Execute `source` from the top on `session_key`, replaying `queue`.

        Args:
            source: Student code plus scaffold.
            session_key: Registry key; the session is started when absent.
            queue: Values replayed in order. Its cursor is set to the number
                of values the attempt consumed.
            seed: Applied to the interpreter's PRNGs before the program runs.
            mode: INTERACTIVE suspends on an empty queue, BATCH raises EOFError.
            timeout_s: Wall-clock limit for the attempt.
            echo_inputs: Write consumed values to stdout like a terminal would.

        Raises:
            InitializationFailure: local start failed and no fallback is configured.
            SessionBusyError: the session is already executing.
            RemoteExecutionError: the fallback itself failed.
        """
        queue.reset_cursor()
        try:
            sid = self.sessions.acquire(session_key)
        except InitializationFailure as e:
            if self.remote is None:
                raise
            logger.warning("Local interpreter unavailable (%s); falling back to Judge0", e)
            return self._execute_remote(source, queue, time.monotonic(), run_id, cancel_event)

        # Interpreter startup is not part of the program's run time
        started = time.monotonic()

        request = {
            "code": source.text,
            "inputs": queue.values,
            "seed": seed,
            "mode": mode.value,
            "echo_inputs": echo_inputs,
        }
        try:
            with self.sessions.busy(sid) as interpreter:
                reply = interpreter.execute(request, timeout_s)
        except InterpreterTimeout as e:
            logger.info("Run %s timed out after %.1fs", run_id or sid, timeout_s)
            return ExecutionResult(
                status=RunStatus.TIMEOUT,
                stdout=e.partial_output,
                error=f"Execution timed out after {timeout_s:g} seconds",
                time_ms=_elapsed_ms(started),
                run_id=run_id,
            )
        except InterpreterCrashed as e:
            return ExecutionResult(
                status=RunStatus.RUNTIME_ERROR,
                stdout=e.partial_output,
                error=f"Interpreter crashed: {e}",
                time_ms=_elapsed_ms(started),
                run_id=run_id,
            )

        queue.mark_consumed(reply.get("consumed", 0))
        result = self._to_result(reply, source, mode, started, run_id)
        self.sessions.record(sid, {
            "run_id": run_id,
            "mode": mode.value,
            "inputs": len(queue),
            "status": result.status.value,
            "time_ms": result.time_ms,
        })
        return result

    def _to_result(
        self,
        reply: dict,
        source: SourceUnit,
        mode: RunMode,
        started: float,
        run_id: Optional[str],
    ) -> ExecutionResult:
        stdout = reply.get("stdout", "")
        stderr = reply.get("stderr", "")
        status = reply.get("status")

        if status == "ok":
            return ExecutionResult(
                status=RunStatus.SUCCESS, stdout=stdout, stderr=stderr,
                time_ms=_elapsed_ms(started), run_id=run_id,
            )

        if status == "awaiting_input" and mode == RunMode.INTERACTIVE:
            return ExecutionResult(
                status=RunStatus.AWAITING_INPUT, stdout=stdout, stderr=stderr,
                pending_prompt=reply.get("prompt") or "",
                time_ms=_elapsed_ms(started), run_id=run_id,
            )

        error = reply.get("error") or {"type": "EOFError", "message": "EOF when reading a line", "lineno": None}
        message = format_error(error.get("type", "Error"), error.get("message", ""), error.get("lineno"), source.prepend_lines)
        return ExecutionResult(
            status=RunStatus.RUNTIME_ERROR,
            stdout=stdout,
            stderr=f"{stderr}{message}\n",
            error=message,
            time_ms=_elapsed_ms(started),
            run_id=run_id,
        )

    def _execute_remote(
        self,
        source: SourceUnit,
        queue: "InputQueue",
        started: float,
        run_id: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> ExecutionResult:
        response = self.remote.execute(
            source.text,
            stdin="\n".join(queue.values),
            max_wait_s=self.remote_max_wait_s,
            cancel_event=cancel_event,
        )
        if response is None:
            return ExecutionResult(
                status=RunStatus.RUNTIME_ERROR,
                error="Remote execution cancelled",
                time_ms=_elapsed_ms(started),
                run_id=run_id,
                backend="remote",
            )

        status = run_status_for(response.status.id)
        stderr = response.stderr or response.compile_output or ""
        error = None
        if status != RunStatus.SUCCESS:
            error = translate_traceback(stderr, source.prepend_lines) or interpret_status(response.status.id)[1]

        time_ms = _elapsed_ms(started)
        if response.time:
            try:
                time_ms = int(float(response.time) * 1000)
            except ValueError:
                pass
        return ExecutionResult(
            status=status,
            stdout=response.stdout or "",
            stderr=stderr,
            error=error,
            time_ms=time_ms,
            run_id=run_id,
            backend="remote",
        )

# replay_sandbox/engine.py
"""
Public entry points: interactive runs, batch grading and challenge sessions.

`ExecutionEngine` wires the session registry, coordinator, determinism guard,
grader and optional Judge0 fallback together from a Config. Interactive runs
are tracked per context id so a UI can call `submit_run()` with its own input
history and get the next authoritative result back.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from .config import Config
from .errors import SessionBusyError
from .execution.challenge import ChallengeSession
from .execution.coordinator import ExecutionCoordinator
from .execution.determinism import DeterminismGuard
from .execution.grading import BatchGrader
from .execution.replay import InputQueue, InteractiveRun
from .models import BatchOptions, ExecutionResult, SourceUnit, TestCase, TestResult
from .remote.judge0 import Judge0Client
from .sandbox.session_manager import SessionManager

logger = logging.getLogger(__name__)


class ExecutionEngine:
    def __init__(
        self,
        config: Optional[Config] = None,
        sessions: Optional[SessionManager] = None,
        remote: Optional[Judge0Client] = None,
    ):
        self.config = config or Config()
        self.sessions = sessions or SessionManager(
            session_root=self.config.sessions_root,
            startup_timeout_s=self.config.startup_timeout_s,
            idle_timeout_s=self.config.idle_timeout_s,
            session_logs=self.config.session_logs,
        )
        if remote is None and self.config.uses_remote_fallback:
            remote = Judge0Client(
                self.config.judge0_api_url,
                api_key=self.config.judge0_rapidapi_key,
                poll_interval_s=self.config.remote_poll_interval_ms / 1000.0,
            )
        self.remote = remote
        self.coordinator = ExecutionCoordinator(
            self.sessions,
            remote=self.remote,
            remote_max_wait_s=self.config.remote_max_wait_ms / 1000.0,
        )
        self.guard = DeterminismGuard()
        self.grader = BatchGrader(
            self.coordinator,
            default_timeout_s=self.config.batch_timeout_s,
            workers=self.config.batch_workers,
        )
        self._runs: Dict[str, InteractiveRun] = {}
        self._challenges: Dict[str, ChallengeSession] = {}
        self._lock = threading.Lock()
        self.sessions.on_sweep(self._forget_swept)

    def _forget_swept(self, session_key: str) -> None:
        """Drop the run or challenge whose session the idle sweep reclaimed."""
        # Called under the registry lock; plain dict pops only, no engine lock
        kind, _, key = session_key.partition("-")
        if kind == "run":
            run = self._runs.get(key)
            # An attempt that is starting up re-creates its own session
            if run is not None and not run.in_flight:
                self._runs.pop(key, None)
                self.guard.reset(run.run_id)
        elif kind == "challenge":
            session = self._challenges.pop(key, None)
            if session is not None:
                session.expire()

    # ---------- interactive runs ----------

    def _new_run(self, context_id: str, source: SourceUnit, inputs: List[str]) -> InteractiveRun:
        """Start a new logical run, resetting any leftover session and seed."""
        previous = self._runs.pop(context_id, None)
        if previous is not None:
            previous.cancel()
        run = InteractiveRun(
            self.coordinator,
            self.guard,
            source,
            session_key=f"run-{context_id}",
            timeout_s=self.config.run_timeout_s,
            queue=InputQueue(inputs),
        )
        self._runs[context_id] = run
        return run

    def submit_run(
        self,
        source: str,
        prior_inputs: Optional[List[str]] = None,
        new_input: Optional[str] = None,
        context_id: str = "default",
        prepend: str = "",
        postpend: str = "",
    ) -> ExecutionResult:
        """
        Primary interactive entry point.

        The first call omits `new_input` and starts a new logical run (fresh
        seed). Each later call passes the inputs given so far plus the newest
        value; when that matches the suspended run it is a resume, otherwise
        the run is rebuilt from the supplied history.
        """
        unit = SourceUnit(code=source, prepend=prepend, postpend=postpend)
        prior = [str(v) for v in (prior_inputs or [])]

        with self._lock:
            run = self._runs.get(context_id)
            if run is not None and run.in_flight:
                raise SessionBusyError(f"Context {context_id} already has an attempt in flight")
            resumable = (
                new_input is not None
                and run is not None
                and run.source == unit
                and run.awaiting_input
                and run.queue.values == prior
            )
            if not resumable:
                history = prior + ([str(new_input)] if new_input is not None else [])
                run = self._new_run(context_id, unit, history)

        if resumable:
            return run.resume(new_input)
        return run.start(echo=new_input)

    def reset_run(self, context_id: str = "default") -> None:
        """Abandon the run for `context_id`. Idempotent."""
        with self._lock:
            run = self._runs.pop(context_id, None)
        if run is not None:
            run.cancel()
        else:
            self.sessions.reset(f"run-{context_id}")

    def get_run(self, context_id: str = "default") -> Optional[InteractiveRun]:
        return self._runs.get(context_id)

    # ---------- grading ----------

    def run_batch(
        self,
        source: str,
        test_cases: List[TestCase],
        options: Optional[BatchOptions] = None,
    ) -> List[TestResult]:
        return self.grader.run_batch(SourceUnit(code=source), test_cases, options)

    # ---------- challenges ----------

    def challenge(self, challenge_id: str = "default") -> ChallengeSession:
        """Challenge session for `challenge_id`, created on first use."""
        with self._lock:
            session = self._challenges.get(challenge_id)
            if session is None:
                session = ChallengeSession(
                    self.sessions,
                    session_key=f"challenge-{challenge_id}",
                    timeout_s=self.config.challenge_timeout_s,
                )
                self._challenges[challenge_id] = session
            return session

    def close_challenge(self, challenge_id: str) -> None:
        with self._lock:
            session = self._challenges.pop(challenge_id, None)
        if session is not None:
            session.teardown()

    # ---------- shutdown ----------

    def close(self) -> None:
        """Stop every interpreter and the remote client."""
        for context_id in list(self._runs):
            self.reset_run(context_id)
        for challenge_id in list(self._challenges):
            self.close_challenge(challenge_id)
        stopped = self.sessions.reset_all()
        if stopped:
            logger.info("Stopped %d leftover session(s)", len(stopped))
        if self.remote is not None:
            self.remote.close()

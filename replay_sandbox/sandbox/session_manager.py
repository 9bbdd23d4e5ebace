# ---------------------------
# replay_sandbox/sandbox/session_manager.py
# ---------------------------

import json
import logging
import shutil
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from ..errors import (
    InitializationFailure,
    InterpreterCrashed,
    InterpreterTimeout,
    SessionBusyError,
    UnknownSessionError,
)
from ..models import SessionState
from .interpreter import Interpreter, ReplInterpreter

logger = logging.getLogger(__name__)

# If a session hasn't been touched for this many seconds, we consider it idle.
# We opportunistically sweep (cleanup) in acquire() calls.
IDLE_TIMEOUT_SECS = 45 * 60

InterpreterFactory = Callable[[Path], Interpreter]


class SessionInfo:
    """
    Lightweight record for one live interpreter session.

    Fields:
    - interpreter: the handle, exclusively owned by this session.
    - session_dir: host working folder (./sessions/<sid>).
    - state: UNINITIALIZED -> READY <-> BUSY, or CORRUPTED after a timeout/crash.
    - last_used: unix timestamp, used to evict idle sessions.
    - lock: held while the session is BUSY.
    """
    def __init__(self, interpreter: Interpreter, session_dir: Path):
        self.interpreter = interpreter
        self.session_dir = session_dir
        self.state = SessionState.UNINITIALIZED
        self.last_used = time.time()
        self.executions = 0
        self.lock = threading.Lock()


class SessionManager:
    """
    Registry of embedded interpreter sessions, keyed by session_key.

    The manager starts interpreters on demand, heals handles that fail the
    /health probe, tears sessions down on request and sweeps idle ones. Each
    session owns one working directory under `session_root`; with
    `session_logs` on, that directory is kept after teardown together with a
    JSON-lines `session.log` and a `session_metadata.json`.
    """

    def __init__(
        self,
        interpreter_factory: Optional[InterpreterFactory] = None,
        session_root: Path = Path("sessions"),
        startup_timeout_s: float = 10.0,
        idle_timeout_s: float = IDLE_TIMEOUT_SECS,
        session_logs: bool = False,
    ):
        """
        Args:
            interpreter_factory: Builds an Interpreter for a session directory.
                Defaults to a ReplInterpreter child process.
            session_root: Base host dir for per-session folders.
            startup_timeout_s: How long a fresh interpreter may take to become healthy.
            idle_timeout_s: Sessions unused this long are torn down on the next acquire().
            session_logs: Keep session folders and write session.log / metadata.
        """
        self.session_root = Path(session_root)
        self.startup_timeout_s = startup_timeout_s
        self.idle_timeout_s = idle_timeout_s
        self.session_logs = session_logs
        self.interpreter_factory = interpreter_factory or (
            lambda workdir: ReplInterpreter(workdir, startup_timeout_s=self.startup_timeout_s)
        )
        self.sessions: Dict[str, SessionInfo] = {}
        self._registry_lock = threading.RLock()
        self._sweep_listeners: List[Callable[[str], None]] = []

    # ---------- session log (session_logs only) ----------

    def _write_session_log(self, session_key: str, log_entry: dict) -> None:
        """Append one JSON line to the session's log file."""
        if not self.session_logs:
            return
        info = self.sessions.get(session_key)
        if not info:
            return

        if "timestamp" not in log_entry:
            log_entry["timestamp"] = datetime.now().isoformat()
        info.session_dir.mkdir(parents=True, exist_ok=True)
        with open(info.session_dir / "session.log", "a", encoding="utf-8") as f:
            f.write(json.dumps(log_entry, default=str) + "\n")

    def _write_session_metadata(self, session_key: str, metadata: dict) -> None:
        """Merge `metadata` into session_metadata.json."""
        if not self.session_logs:
            return
        info = self.sessions.get(session_key)
        if not info:
            return

        metadata_file = info.session_dir / "session_metadata.json"
        if metadata_file.exists():
            try:
                with open(metadata_file, "r", encoding="utf-8") as f:
                    existing_metadata = json.load(f)
                existing_metadata.update(metadata)
                metadata = existing_metadata
            except json.JSONDecodeError:
                pass  # Start fresh if file is corrupted

        info.session_dir.mkdir(parents=True, exist_ok=True)
        with open(metadata_file, "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2, default=str)

    def record(self, session_key: str, entry: dict) -> None:
        """Log an execution event for a session and bump its counter."""
        info = self.sessions.get(session_key)
        if not info:
            return
        info.executions += 1
        self._write_session_log(session_key, dict(entry, event=entry.get("event", "execution")))
        self._write_session_metadata(session_key, {
            "execution_count": info.executions,
            "last_used": datetime.now().isoformat(),
        })

    # ---------- lifecycle ----------

    def on_sweep(self, listener: Callable[[str], None]) -> None:
        """
        Register `listener(session_key)`, called after an idle session is swept.
        Listeners run under the registry lock and must not call back into it.
        """
        self._sweep_listeners.append(listener)

    def _sweep_idle(self) -> None:
        """Tear down sessions idle longer than idle_timeout_s (skips BUSY ones)."""
        now = time.time()
        for sid, info in list(self.sessions.items()):
            if info.state != SessionState.BUSY and now - info.last_used > self.idle_timeout_s:
                logger.info("Sweeping idle session %s", sid)
                self.reset(sid)
                for listener in self._sweep_listeners:
                    listener(sid)

    def _start(self, sid: str) -> SessionInfo:
        """Start an interpreter for `sid`, retrying once before giving up."""
        sess_dir = (self.session_root / sid).resolve()
        last_error: Optional[InitializationFailure] = None
        for attempt in (1, 2):
            interpreter = self.interpreter_factory(sess_dir)
            try:
                interpreter.initialize()
            except InitializationFailure as e:
                last_error = e
                logger.warning("Interpreter start failed for %s (attempt %d): %s", sid, attempt, e)
                interpreter.reset()
                continue
            info = SessionInfo(interpreter, sess_dir)
            info.state = SessionState.READY
            return info
        raise InitializationFailure(f"Could not start interpreter for session {sid}: {last_error}")

    def acquire(self, session_key: Optional[str] = None) -> str:
        """
        Return a live session for `session_key`, creating one when absent.

        Behavior:
        1) Evict idle sessions.
        2) Reuse a registered session if its handle answers the liveness probe.
           CORRUPTED or dead handles are discarded and replaced.
        3) Otherwise start a new interpreter (one retry), register it and log
           the start.

        Raises:
            InitializationFailure: the interpreter could not be started.
        """
        with self._registry_lock:
            self._sweep_idle()

            sid = session_key or f"anon-{uuid.uuid4().hex[:8]}"
            info = self.sessions.get(sid)
            if info is not None:
                if info.state == SessionState.BUSY:
                    return sid
                if info.state == SessionState.READY and info.interpreter.probe():
                    info.last_used = time.time()
                    return sid
                logger.info("Session %s failed liveness probe (state=%s); replacing", sid, info.state.value)
                self.reset(sid)

            info = self._start(sid)
            self.sessions[sid] = info

            self._write_session_metadata(sid, {
                "session_id": sid,
                "created_at": datetime.now().isoformat(),
                "session_dir": str(info.session_dir),
                "execution_count": 0,
                "last_used": datetime.now().isoformat(),
            })
            self._write_session_log(sid, {"event": "session_started"})
            logger.info("Started interpreter session %s", sid)
            return sid

    def get(self, session_key: str) -> SessionInfo:
        info = self.sessions.get(session_key)
        if info is None:
            raise UnknownSessionError(f"Unknown session: {session_key}")
        return info

    def state(self, session_key: str) -> SessionState:
        info = self.sessions.get(session_key)
        return info.state if info else SessionState.UNINITIALIZED

    @contextmanager
    def busy(self, session_key: str) -> Iterator[Interpreter]:
        """
        Hold the session BUSY for one execution and yield its interpreter.

        A second concurrent entry raises SessionBusyError. A timeout or crash
        inside marks the session CORRUPTED and tears it down before the error
        propagates.
        """
        info = self.get(session_key)
        if not info.lock.acquire(blocking=False):
            raise SessionBusyError(f"Session {session_key} is busy")
        info.state = SessionState.BUSY
        try:
            yield info.interpreter
        except (InterpreterTimeout, InterpreterCrashed) as e:
            info.state = SessionState.CORRUPTED
            logger.warning("Session %s corrupted: %s", session_key, e)
            info.lock.release()
            self.reset(session_key)
            raise
        except BaseException:
            info.state = SessionState.READY
            info.lock.release()
            raise
        else:
            info.state = SessionState.READY
            info.last_used = time.time()
            info.lock.release()

    def reset(self, session_key: str) -> None:
        """
        Tear down the interpreter for `session_key` and drop it from the
        registry. Idempotent: no error if the session is unknown.

        The session folder is removed unless session_logs is on.
        """
        with self._registry_lock:
            info = self.sessions.get(session_key)
            if not info:
                return
            self._write_session_log(session_key, {"event": "session_stopped"})
            self._write_session_metadata(session_key, {
                "stopped_at": datetime.now().isoformat(),
                "final_execution_count": info.executions,
            })
            self.sessions.pop(session_key, None)

        info.interpreter.reset()
        if not self.session_logs:
            shutil.rmtree(info.session_dir, ignore_errors=True)
        logger.info("Stopped interpreter session %s", session_key)

    def reset_all(self) -> List[str]:
        """Tear down every session. Returns the keys that were stopped."""
        keys = list(self.sessions)
        for sid in keys:
            self.reset(sid)
        return keys

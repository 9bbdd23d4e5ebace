# tests/test_session_manager.py
import json
import threading
import time
from unittest.mock import Mock

import pytest

from replay_sandbox.errors import (
    InitializationFailure,
    InterpreterTimeout,
    SessionBusyError,
    UnknownSessionError,
)
from replay_sandbox.models import SessionState
from replay_sandbox.sandbox.session_manager import SessionManager


def test_acquire_starts_once_and_reuses(sessions, started):
    sid = sessions.acquire("conv-1")
    assert sid == "conv-1"
    assert sessions.acquire("conv-1") == "conv-1"
    assert len(started) == 1
    assert sessions.state(sid) == SessionState.READY


def test_anonymous_keys(sessions):
    sid = sessions.acquire()
    assert sid.startswith("anon-")
    assert sid in sessions.sessions


def test_dead_handle_is_replaced(sessions, started):
    sid = sessions.acquire("s")
    started[0].alive = False
    sessions.acquire(sid)
    assert len(started) == 2
    assert sessions.get(sid).interpreter is started[1]


def test_start_is_retried_once(tmp_path):
    attempts = []

    def factory(workdir):
        interp = Mock()
        attempts.append(interp)
        if len(attempts) == 1:
            interp.initialize.side_effect = InitializationFailure("flaky")
        return interp

    mgr = SessionManager(interpreter_factory=factory, session_root=tmp_path)
    mgr.acquire("s")
    assert len(attempts) == 2
    attempts[0].reset.assert_called_once()


def test_start_gives_up_after_retry(broken_sessions):
    with pytest.raises(InitializationFailure):
        broken_sessions.acquire("s")
    assert "s" not in broken_sessions.sessions


def test_reset_is_idempotent(sessions, started):
    sid = sessions.acquire("s")
    sessions.reset(sid)
    sessions.reset(sid)
    sessions.reset("never-existed")
    assert sid not in sessions.sessions
    assert started[0].alive is False
    assert sessions.state(sid) == SessionState.UNINITIALIZED


def test_reset_removes_session_dir_without_logs(sessions, tmp_path):
    sid = sessions.acquire("s")
    session_dir = sessions.get(sid).session_dir
    assert session_dir.exists()
    sessions.reset(sid)
    assert not session_dir.exists()


def test_busy_marks_state_and_rejects_second_entry(sessions):
    sid = sessions.acquire("s")
    with sessions.busy(sid):
        assert sessions.state(sid) == SessionState.BUSY
        with pytest.raises(SessionBusyError):
            with sessions.busy(sid):
                pass
    assert sessions.state(sid) == SessionState.READY


def test_busy_from_another_thread(sessions):
    sid = sessions.acquire("s")
    entered, release = threading.Event(), threading.Event()

    def hold():
        with sessions.busy(sid):
            entered.set()
            release.wait(5)

    t = threading.Thread(target=hold)
    t.start()
    entered.wait(5)
    try:
        with pytest.raises(SessionBusyError):
            with sessions.busy(sid):
                pass
    finally:
        release.set()
        t.join()


def test_busy_unknown_session(sessions):
    with pytest.raises(UnknownSessionError):
        with sessions.busy("ghost"):
            pass


def test_timeout_inside_busy_tears_session_down(sessions, started):
    sid = sessions.acquire("s")
    with pytest.raises(InterpreterTimeout):
        with sessions.busy(sid):
            raise InterpreterTimeout("too slow", partial_output="x")
    assert sid not in sessions.sessions
    assert started[0].alive is False
    # Next acquire starts a fresh interpreter
    sessions.acquire(sid)
    assert len(started) == 2


def test_other_errors_keep_the_session(sessions):
    sid = sessions.acquire("s")
    with pytest.raises(RuntimeError):
        with sessions.busy(sid):
            raise RuntimeError("caller bug")
    assert sessions.state(sid) == SessionState.READY


def test_idle_sessions_are_swept(sessions, started):
    sessions.idle_timeout_s = 60
    sessions.acquire("old")
    sessions.get("old").last_used = time.time() - 120
    sessions.acquire("new")
    assert "old" not in sessions.sessions
    assert started[0].alive is False


def test_reset_all(sessions):
    sessions.acquire("a")
    sessions.acquire("b")
    assert sorted(sessions.reset_all()) == ["a", "b"]
    assert sessions.sessions == {}


def test_session_logs(make_sessions):
    mgr = make_sessions(session_logs=True)
    sid = mgr.acquire("logged")
    session_dir = mgr.get(sid).session_dir
    mgr.record(sid, {"run_id": "r1", "status": "SUCCESS"})
    mgr.record(sid, {"run_id": "r2", "status": "TIMEOUT"})
    mgr.reset(sid)

    # Folder is kept when logging is on
    events = [json.loads(line) for line in (session_dir / "session.log").read_text().splitlines()]
    assert [e["event"] for e in events] == ["session_started", "execution", "execution", "session_stopped"]
    assert events[2]["status"] == "TIMEOUT"
    assert all("timestamp" in e for e in events)

    metadata = json.loads((session_dir / "session_metadata.json").read_text())
    assert metadata["session_id"] == "logged"
    assert metadata["execution_count"] == 2
    assert metadata["final_execution_count"] == 2
    assert "stopped_at" in metadata


def test_no_log_files_by_default(sessions):
    sid = sessions.acquire("quiet")
    sessions.record(sid, {"status": "SUCCESS"})
    assert not (sessions.get(sid).session_dir / "session.log").exists()


def test_sweep_notifies_listeners(sessions):
    swept = []
    sessions.on_sweep(swept.append)
    sessions.idle_timeout_s = 60
    sessions.acquire("old")
    sessions.get("old").last_used = time.time() - 120
    sessions.acquire("new")
    sessions.reset("new")
    assert swept == ["old"]

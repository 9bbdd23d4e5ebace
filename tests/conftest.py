# tests/conftest.py
import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest

# Ensure project root is importable (replay_sandbox/__init__.py exists)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from replay_sandbox.errors import InitializationFailure  # noqa: E402
from replay_sandbox.sandbox import repl_server  # noqa: E402
from replay_sandbox.sandbox.interpreter import Interpreter  # noqa: E402
from replay_sandbox.sandbox.session_manager import SessionManager  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: starts real interpreter processes")


class InProcessInterpreter(Interpreter):
    """Drives the REPL server handlers directly, without a child process."""

    def __init__(self, workdir: Path):
        self.workdir = Path(workdir)
        self.alive = False
        self.requests: List[dict] = []

    def initialize(self) -> None:
        self.workdir.mkdir(parents=True, exist_ok=True)
        repl_server.app.state.workdir = self.workdir
        self.alive = True

    def execute(self, request: dict, timeout_s: float) -> dict:
        self.requests.append(dict(request))
        repl_server.app.state.workdir = self.workdir
        return repl_server.run(repl_server.RunRequest(**request))

    def load(self, code: str, timeout_s: float, seed: Optional[int] = None) -> dict:
        return repl_server.load(repl_server.LoadRequest(code=code, seed=seed))

    def call(self, function: str, args: List[Any], timeout_s: float) -> dict:
        return repl_server.call(repl_server.CallRequest(function=function, args=args))

    def probe(self) -> bool:
        return self.alive

    def reset(self) -> None:
        self.alive = False


class BrokenInterpreter(InProcessInterpreter):
    def initialize(self) -> None:
        raise InitializationFailure("interpreter binary missing")


@pytest.fixture
def started():
    """Every interpreter the factory built, in order."""
    return []


@pytest.fixture
def make_sessions(tmp_path, started):
    """SessionManager factory backed by in-process interpreters."""
    created = []

    def factory(workdir):
        interp = InProcessInterpreter(workdir)
        started.append(interp)
        return interp

    def make(**kwargs):
        kwargs.setdefault("session_root", tmp_path / "sessions")
        mgr = SessionManager(interpreter_factory=factory, **kwargs)
        created.append(mgr)
        return mgr

    yield make
    for mgr in created:
        mgr.reset_all()


@pytest.fixture
def sessions(make_sessions):
    return make_sessions()


@pytest.fixture
def broken_sessions(tmp_path):
    mgr = SessionManager(interpreter_factory=BrokenInterpreter, session_root=tmp_path / "sessions")
    yield mgr
    mgr.reset_all()

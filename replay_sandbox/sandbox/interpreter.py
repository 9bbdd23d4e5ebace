# replay_sandbox/sandbox/interpreter.py
"""
Interpreter capability and its local implementation.

The engine only depends on the small `Interpreter` interface, so another
runtime can be swapped in. `ReplInterpreter` runs `repl_server` in a child
Python process and talks to it over HTTP with httpx.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

import httpx

from ..errors import InitializationFailure, InterpreterCrashed, InterpreterTimeout

logger = logging.getLogger(__name__)

# Stdout mirror written by the REPL server inside the session folder
OUTPUT_MIRROR = "run.out"

# Package root, put on the child's PYTHONPATH so `-m replay_sandbox...` resolves
_PROJECT_ROOT = Path(__file__).resolve().parents[2]

PROBE_TIMEOUT_S = 2.0
CONNECT_TIMEOUT_S = 2.0


class Interpreter(ABC):
    """What the engine needs from an embedded interpreter."""

    @abstractmethod
    def initialize(self) -> None:
        """Bring the interpreter up. Raises InitializationFailure."""

    @abstractmethod
    def execute(self, request: dict, timeout_s: float) -> dict:
        """Run a whole program (see repl_server.RunRequest)."""

    @abstractmethod
    def load(self, code: str, timeout_s: float, seed: Optional[int] = None) -> dict:
        """Execute code into the persistent namespace."""

    @abstractmethod
    def call(self, function: str, args: List[Any], timeout_s: float) -> dict:
        """Call a function defined in the persistent namespace."""

    @abstractmethod
    def probe(self) -> bool:
        """Cheap liveness check."""

    @abstractmethod
    def reset(self) -> None:
        """Tear the interpreter down. Idempotent."""


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class ReplInterpreter(Interpreter):
    """
    A REPL server child process bound to one working directory.

    Wall-clock limits are enforced here: when a request outlives its timeout
    the process is killed and InterpreterTimeout carries the partial stdout
    recovered from the mirror file.
    """

    def __init__(self, workdir: Path, startup_timeout_s: float = 10.0, python: Optional[str] = None):
        self.workdir = Path(workdir).resolve()
        self.startup_timeout_s = startup_timeout_s
        self.python = python or sys.executable
        self.process: Optional[subprocess.Popen] = None
        self.port: Optional[int] = None
        self._log_file = None

    @property
    def base_url(self) -> str:
        if self.port is None:
            raise InitializationFailure("Interpreter not initialized. Call initialize() first.")
        return f"http://127.0.0.1:{self.port}"

    def _child_env(self) -> dict:
        env = os.environ.copy()
        env["PYTHONPATH"] = os.pathsep.join(p for p in (str(_PROJECT_ROOT), env.get("PYTHONPATH", "")) if p)
        env["PYTHONUNBUFFERED"] = "1"
        # Same hash order in every process, so set/dict printing is reproducible
        env["PYTHONHASHSEED"] = "0"
        return env

    def _log_tail(self, limit: int = 2000) -> str:
        log_path = self.workdir / "repl.log"
        if not log_path.exists():
            return ""
        return log_path.read_text(encoding="utf-8", errors="replace")[-limit:]

    def initialize(self) -> None:
        self.workdir.mkdir(parents=True, exist_ok=True)
        self.port = _free_port()
        self._log_file = open(self.workdir / "repl.log", "ab")
        command = [
            self.python, "-B", "-m", "replay_sandbox.sandbox.repl_server",
            "--port", str(self.port),
            "--workdir", str(self.workdir),
        ]
        try:
            self.process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=self._log_file,
                stderr=subprocess.STDOUT,
                cwd=str(self.workdir),
                env=self._child_env(),
            )
        except OSError as e:
            self.reset()
            raise InitializationFailure(f"Could not spawn interpreter process: {e}") from e

        # Poll /health until ready, bailing out early if the process dies
        deadline = time.monotonic() + self.startup_timeout_s
        with httpx.Client(timeout=PROBE_TIMEOUT_S) as http:
            while time.monotonic() < deadline:
                if self.process.poll() is not None:
                    tail = self._log_tail()
                    self.reset()
                    raise InitializationFailure(f"Interpreter process exited during startup.\n{tail}".rstrip())
                try:
                    r = http.get(f"{self.base_url}/health")
                    if r.status_code == 200:
                        logger.debug("REPL ready on port %s (pid %s)", self.port, self.process.pid)
                        return
                except httpx.TransportError:
                    pass
                time.sleep(0.05)

        self.reset()
        raise InitializationFailure(f"Interpreter did not become healthy within {self.startup_timeout_s:g}s")

    def probe(self) -> bool:
        if self.process is None or self.process.poll() is not None:
            return False
        try:
            with httpx.Client(timeout=PROBE_TIMEOUT_S) as http:
                r = http.get(f"{self.base_url}/health")
                return r.status_code == 200
        except httpx.HTTPError:
            return False

    def read_partial_output(self) -> str:
        mirror = self.workdir / OUTPUT_MIRROR
        if not mirror.exists():
            return ""
        return mirror.read_text(encoding="utf-8", errors="replace")

    def _post(self, path: str, payload: dict, timeout_s: float) -> dict:
        if self.process is None:
            raise InterpreterCrashed("Interpreter is not running")
        timeout = httpx.Timeout(timeout_s, connect=CONNECT_TIMEOUT_S)
        try:
            with httpx.Client(timeout=timeout) as http:
                r = http.post(f"{self.base_url}{path}", json=payload)
                r.raise_for_status()
                return r.json()
        except httpx.TimeoutException as e:
            self._kill()
            partial = self.read_partial_output() if path == "/run" else ""
            raise InterpreterTimeout(f"Execution exceeded {timeout_s:g}s", partial_output=partial) from e
        except httpx.HTTPStatusError as e:
            raise InterpreterCrashed(f"Interpreter answered {e.response.status_code} on {path}") from e
        except httpx.TransportError as e:
            partial = self.read_partial_output() if path == "/run" else ""
            self._kill()
            raise InterpreterCrashed(f"Interpreter stopped responding: {e}", partial_output=partial) from e

    def execute(self, request: dict, timeout_s: float) -> dict:
        return self._post("/run", request, timeout_s)

    def load(self, code: str, timeout_s: float, seed: Optional[int] = None) -> dict:
        return self._post("/load", {"code": code, "seed": seed}, timeout_s)

    def call(self, function: str, args: List[Any], timeout_s: float) -> dict:
        return self._post("/call", {"function": function, "args": list(args)}, timeout_s)

    def _kill(self) -> None:
        if self.process is not None and self.process.poll() is None:
            self.process.kill()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("Interpreter pid %s did not exit after kill", self.process.pid)

    def reset(self) -> None:
        self._kill()
        self.process = None
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

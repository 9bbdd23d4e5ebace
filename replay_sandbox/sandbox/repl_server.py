# replay_sandbox/sandbox/repl_server.py
"""
In-session REPL server.

One of these runs per interpreter session, in its own Python process. The host
talks to it over HTTP on localhost.

- /run  executes a whole program from the top in a fresh namespace, with the
        random module reseeded and input() replaying a queue of values.
- /load executes a program once into the long-lived namespace.
- /call calls a named function from the long-lived namespace.

Stdout of /run is mirrored to <workdir>/run.out as it is written, so the host
can still recover partial output after killing a runaway program.
"""

from __future__ import annotations

import argparse
import builtins
import io
import json
import os
import random
import sys
import traceback
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from typing import Any, List, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

from .interpreter import OUTPUT_MIRROR

STUDENT_FILENAME = "<student>"

app = FastAPI()
app.state.workdir = Path.cwd()

# One long-lived namespace => challenge globals persist across /call requests
GLOBAL_NS: dict = {"__name__": "__main__"}


class InputRequested(BaseException):
    """
    Raised by the replay input primitive when the queue is exhausted in
    interactive mode. Derives from BaseException so a student's
    `except Exception` does not swallow it.
    """

    def __init__(self, prompt: str = ""):
        super().__init__(prompt)
        self.prompt = prompt


class RunRequest(BaseModel):
    code: str
    inputs: List[str] = []
    seed: Optional[int] = None
    mode: str = "interactive"
    echo_inputs: bool = True


class LoadRequest(BaseModel):
    code: str
    seed: Optional[int] = None


class CallRequest(BaseModel):
    function: str
    args: List[Any] = []


class _MirroredBuffer(io.TextIOBase):
    """StringIO that also appends every write to a file, flushed immediately."""

    def __init__(self, mirror_path: Optional[Path] = None):
        self._buffer = io.StringIO()
        self._mirror = open(mirror_path, "w", encoding="utf-8") if mirror_path else None

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        self._buffer.write(text)
        if self._mirror is not None:
            self._mirror.write(text)
            self._mirror.flush()
        return len(text)

    def getvalue(self) -> str:
        return self._buffer.getvalue()

    def close(self) -> None:
        if self._mirror is not None:
            self._mirror.close()
            self._mirror = None
        super().close()


class ReplayInput:
    """
    Replacement for builtins.input that replays queued values in order.

    The cursor starts at 0 for every attempt. Once the queue is exhausted the
    primitive raises InputRequested (interactive) or EOFError (batch).
    """

    def __init__(self, values: List[str], mode: str = "interactive", echo: bool = True):
        self.values = list(values)
        self.mode = mode
        self.echo = echo
        self.cursor = 0

    def take(self) -> Optional[str]:
        if self.cursor < len(self.values):
            value = self.values[self.cursor]
            self.cursor += 1
            return value
        return None

    def __call__(self, prompt: Any = "") -> str:
        prompt = "" if prompt is None else str(prompt)
        if prompt:
            sys.stdout.write(prompt)
        value = self.take()
        if value is not None:
            if self.echo:
                sys.stdout.write(value + "\n")
            return value
        if self.mode == "batch":
            raise EOFError("EOF when reading a line")
        raise InputRequested(prompt)


class ReplayStdin(io.TextIOBase):
    """sys.stdin backed by the same queue, for programs that read lines directly."""

    def __init__(self, source: ReplayInput):
        self._source = source

    def readable(self) -> bool:
        return True

    def readline(self, size: int = -1) -> str:
        value = self._source.take()
        if value is not None:
            return value + "\n"
        if self._source.mode == "batch":
            return ""
        raise InputRequested("")

    def read(self, size: int = -1) -> str:
        lines = []
        while True:
            value = self._source.take()
            if value is None:
                break
            lines.append(value + "\n")
        if not lines and self._source.mode != "batch":
            raise InputRequested("")
        return "".join(lines)


def _apply_seed(seed: Optional[int]) -> None:
    """Reseed every PRNG the student is likely to touch."""
    if seed is None:
        return
    random.seed(seed)
    try:
        import numpy as np
        np.random.seed(seed)
    except ImportError:
        pass


def describe_exception(exc: BaseException) -> dict:
    """Keep only the exception type, its message and the last student line."""
    lineno = None
    message = str(exc)
    if isinstance(exc, SyntaxError):
        message = exc.msg or message
        if exc.filename == STUDENT_FILENAME:
            lineno = exc.lineno
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename == STUDENT_FILENAME:
            lineno = frame.lineno
    return {"type": type(exc).__name__, "message": message, "lineno": lineno}


def _clean_exit(exc: SystemExit) -> bool:
    return exc.code in (None, 0)


def _jsonable(value: Any) -> Any:
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError):
        return repr(value)


@app.get("/health")
def health():
    return {"ok": True, "pid": os.getpid()}


@app.post("/run")
def run(req: RunRequest):
    stdout = _MirroredBuffer(Path(app.state.workdir) / OUTPUT_MIRROR)
    stderr = io.StringIO()
    replay = ReplayInput(req.inputs, mode=req.mode, echo=req.echo_inputs)
    namespace = {"__name__": "__main__", "__builtins__": builtins}

    saved_input, saved_stdin = builtins.input, sys.stdin
    builtins.input = replay
    sys.stdin = ReplayStdin(replay)
    reply: dict = {"status": "ok", "prompt": None, "error": None}
    try:
        _apply_seed(req.seed)
        with redirect_stdout(stdout), redirect_stderr(stderr):
            try:
                exec(compile(req.code, STUDENT_FILENAME, "exec"), namespace)
            except InputRequested as signal:
                reply.update(status="awaiting_input", prompt=signal.prompt)
            except SystemExit as e:
                if not _clean_exit(e):
                    reply.update(status="error", error=describe_exception(e))
            except (Exception, KeyboardInterrupt) as e:
                reply.update(status="error", error=describe_exception(e))
    finally:
        builtins.input, sys.stdin = saved_input, saved_stdin
        reply.update(stdout=stdout.getvalue(), stderr=stderr.getvalue(), consumed=replay.cursor)
        stdout.close()
    return reply


@app.post("/load")
def load(req: LoadRequest):
    out, err = io.StringIO(), io.StringIO()
    GLOBAL_NS.clear()
    GLOBAL_NS["__name__"] = "__main__"
    saved_input = builtins.input
    builtins.input = ReplayInput([], mode="batch", echo=False)
    try:
        _apply_seed(req.seed)
        with redirect_stdout(out), redirect_stderr(err):
            exec(compile(req.code, STUDENT_FILENAME, "exec"), GLOBAL_NS)
        return {"status": "ok", "stdout": out.getvalue(), "stderr": err.getvalue(), "error": None}
    except SystemExit as e:
        # Globals defined before a clean exit stay loaded
        if _clean_exit(e):
            return {"status": "ok", "stdout": out.getvalue(), "stderr": err.getvalue(), "error": None}
        return {"status": "error", "stdout": out.getvalue(), "stderr": err.getvalue(), "error": describe_exception(e)}
    except (Exception, KeyboardInterrupt) as e:
        return {"status": "error", "stdout": out.getvalue(), "stderr": err.getvalue(), "error": describe_exception(e)}
    finally:
        builtins.input = saved_input


@app.post("/call")
def call(req: CallRequest):
    func = GLOBAL_NS.get(req.function)
    if not callable(func):
        return {
            "status": "error",
            "stdout": "",
            "error": {"type": "NameError", "message": f"function '{req.function}' is not defined", "lineno": None},
        }
    out = io.StringIO()
    saved_input = builtins.input
    builtins.input = ReplayInput([], mode="batch", echo=False)
    try:
        with redirect_stdout(out):
            value = func(*req.args)
        return {"status": "ok", "value": _jsonable(value), "stdout": out.getvalue(), "error": None}
    except SystemExit as e:
        if _clean_exit(e):
            return {"status": "ok", "value": None, "stdout": out.getvalue(), "error": None}
        return {"status": "error", "stdout": out.getvalue(), "error": describe_exception(e)}
    except (Exception, KeyboardInterrupt) as e:
        return {"status": "error", "stdout": out.getvalue(), "error": describe_exception(e)}
    finally:
        builtins.input = saved_input


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="replay-sandbox in-session REPL server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--workdir", default=".")
    args = parser.parse_args(argv)

    workdir = Path(args.workdir).resolve()
    workdir.mkdir(parents=True, exist_ok=True)
    os.chdir(workdir)
    app.state.workdir = workdir
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()

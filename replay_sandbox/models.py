# replay_sandbox/models.py
"""
Data model shared by the engine, the grader and the HTTP API.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    BUSY = "BUSY"
    CORRUPTED = "CORRUPTED"


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    TIMEOUT = "TIMEOUT"
    AWAITING_INPUT = "AWAITING_INPUT"


class RunMode(str, Enum):
    """How the input primitive behaves once the queue runs dry."""
    INTERACTIVE = "interactive"  # suspend and ask a human
    BATCH = "batch"              # raise EOFError, nobody can answer


class SourceUnit(BaseModel):
    """
    Student code plus optional scaffold text injected around it.

    The scaffold is only relevant for error reporting: line numbers shown to
    the student are shifted back by `prepend_lines`.
    """
    model_config = ConfigDict(frozen=True)

    code: str
    prepend: str = ""
    postpend: str = ""

    @property
    def text(self) -> str:
        parts = []
        if self.prepend:
            parts.append(self.prepend)
        parts.append(self.code)
        if self.postpend:
            parts.append(self.postpend)
        return "\n".join(parts)

    @property
    def prepend_lines(self) -> int:
        if not self.prepend:
            return 0
        return self.prepend.count("\n") + 1


class ExecutionResult(BaseModel):
    """Authoritative outcome of one attempt. Never merge output across attempts."""
    status: RunStatus
    stdout: str = ""
    stderr: str = ""
    pending_prompt: Optional[str] = None
    error: Optional[str] = None
    echo: Optional[str] = None     # newest input, for terminal-style UIs
    time_ms: int = 0
    run_id: Optional[str] = None
    backend: str = "local"

    @property
    def awaiting_input(self) -> bool:
        return self.status == RunStatus.AWAITING_INPUT

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.SUCCESS


class TestCase(BaseModel):
    __test__ = False  # not a pytest class

    input: str = ""
    expected_output: Optional[str] = None


class BatchOptions(BaseModel):
    echo_input: bool = False
    prepend: str = ""
    postpend: str = ""
    timeout_ms: Optional[int] = None
    checker: str = "exact_match"


class TestResult(BaseModel):
    __test__ = False

    input: str = ""
    expected_output: Optional[str] = None
    actual_output: str = ""
    passed: bool = False
    status: RunStatus
    error: Optional[str] = None
    time_ms: int = 0


class BatchSummary(BaseModel):
    passed: int
    total: int
    results: List[TestResult] = Field(default_factory=list)

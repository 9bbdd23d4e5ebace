# replay_sandbox/errors.py
"""
Exception taxonomy for the sandbox.

Only engine-level failures are exceptions. Anything the student's program does
(raising, timing out, asking for input) comes back as an ExecutionResult.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base class for every error raised by replay_sandbox."""


class InitializationFailure(SandboxError):
    """The local interpreter could not be started (fatal for the local path)."""


class SessionBusyError(SandboxError):
    """A second execution was issued while the session was still Busy."""


class UnknownSessionError(SandboxError):
    """The session key is not (or no longer) registered."""


class NotAwaitingInputError(SandboxError):
    """resume() was called on a run that is not suspended on input."""


class ChallengeError(SandboxError):
    """A challenge session could not load the program or the call failed."""


class RemoteExecutionError(SandboxError):
    """The remote fallback itself failed. Terminal, surfaced verbatim."""


class InterpreterTimeout(SandboxError):
    """
    Raised by an interpreter handle when the wall-clock limit expired.

    The handle is dead afterwards; `partial_output` holds whatever stdout the
    program produced before the cutoff.
    """

    def __init__(self, message: str, partial_output: str = ""):
        super().__init__(message)
        self.partial_output = partial_output


class InterpreterCrashed(SandboxError):
    """The interpreter process died or stopped answering mid-call."""

    def __init__(self, message: str, partial_output: str = ""):
        super().__init__(message)
        self.partial_output = partial_output

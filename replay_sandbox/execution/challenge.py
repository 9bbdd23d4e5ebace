# replay_sandbox/execution/challenge.py
"""
Persistent challenge session: load a program once, then call its functions
many times while its globals survive between calls (e.g. a game opponent
whose `move()` keeps score in a module-level variable).
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Union

from ..errors import ChallengeError, InterpreterCrashed, InterpreterTimeout, UnknownSessionError
from ..models import SourceUnit
from ..sandbox.session_manager import SessionManager
from .line_translator import format_error

logger = logging.getLogger(__name__)


class ChallengeSession:
    def __init__(self, sessions: SessionManager, session_key: str, timeout_s: float = 5.0):
        self.sessions = sessions
        self.session_key = session_key
        self.timeout_s = timeout_s
        self.source: Optional[SourceUnit] = None
        self.invocations = 0
        self.last_stdout = ""
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _describe(self, error: dict) -> str:
        prepend_lines = self.source.prepend_lines if self.source else 0
        return format_error(error.get("type", "Error"), error.get("message", ""), error.get("lineno"), prepend_lines)

    def initialize(self, source: Union[str, SourceUnit]) -> str:
        """
        Load `source` into a freshly started session. Returns the program's
        top-level stdout.

        Raises:
            ChallengeError: the program raised or timed out while loading.
            InitializationFailure: no interpreter could be started.
        """
        self.teardown()
        self.source = source if isinstance(source, SourceUnit) else SourceUnit(code=source)
        self.sessions.acquire(self.session_key)
        try:
            with self.sessions.busy(self.session_key) as interpreter:
                reply = interpreter.load(self.source.text, self.timeout_s)
        except (InterpreterTimeout, InterpreterCrashed) as e:
            raise ChallengeError(f"Failed to initialize challenge session: {e}") from e

        if reply.get("status") != "ok":
            self.teardown()
            raise ChallengeError(f"Failed to initialize challenge session: {self._describe(reply.get('error') or {})}")

        self._active = True
        self.invocations = 0
        self.last_stdout = reply.get("stdout", "")
        logger.info("Challenge session %s initialized", self.session_key)
        return self.last_stdout

    def invoke(self, function_name: str, args: Optional[List[Any]] = None) -> Any:
        """
        Call a top-level function of the loaded program and return its value.

        Only one invoke may be outstanding; a concurrent call raises
        SessionBusyError.
        """
        if not self._active:
            raise ChallengeError("Challenge session not initialized")
        try:
            with self.sessions.busy(self.session_key) as interpreter:
                reply = interpreter.call(function_name, list(args or []), self.timeout_s)
        except (InterpreterTimeout, InterpreterCrashed) as e:
            # The session was torn down with the interpreter
            self._active = False
            raise ChallengeError(f"Failed to execute {function_name}: {e}") from e
        except UnknownSessionError as e:
            self._active = False
            raise ChallengeError(f"Challenge session expired; initialize it again to call {function_name}") from e

        self.invocations += 1
        self.last_stdout = reply.get("stdout", "")
        if reply.get("status") != "ok":
            raise ChallengeError(f"Failed to execute {function_name}: {self._describe(reply.get('error') or {})}")
        return reply.get("value")

    def expire(self) -> None:
        """Mark the session inactive after its interpreter was reclaimed elsewhere."""
        self._active = False

    def teardown(self) -> None:
        """Release the session. Idempotent."""
        if self._active:
            logger.info("Resetting challenge session %s", self.session_key)
        self._active = False
        self.sessions.reset(self.session_key)

# replay_sandbox/__init__.py

from .config import Config
from .engine import ExecutionEngine
from .models import BatchOptions, ExecutionResult, RunStatus, TestCase, TestResult
from .sandbox.session_manager import SessionManager

__all__ = [
    "Config",
    "ExecutionEngine",
    "SessionManager",
    "BatchOptions",
    "ExecutionResult",
    "RunStatus",
    "TestCase",
    "TestResult",
]

# replay_sandbox/config.py
from __future__ import annotations

import os
from enum import Enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict

from dotenv import dotenv_values


class FallbackMode(str, Enum):
    """What happens when the local interpreter cannot start."""
    NONE   = "NONE"    # surface InitializationFailure
    JUDGE0 = "JUDGE0"  # submit to a Judge0 instance and poll


_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    # --- paths (host-side) ---
    sessions_root: Path = Path("./sessions")   # one working dir per live interpreter

    # --- limits ---
    run_timeout_ms: int = 10_000        # interactive attempts
    batch_timeout_ms: int = 15_000      # one grading test case
    challenge_timeout_ms: int = 5_000   # one challenge invoke()
    startup_timeout_s: float = 10.0     # REPL process must answer /health within this
    idle_timeout_s: int = 45 * 60       # idle sessions are swept after this

    # --- behaviour ---
    session_logs: bool = False          # keep session dirs with session.log + metadata
    batch_workers: int = 1              # >1 runs grading cases concurrently

    # --- remote fallback ---
    fallback: FallbackMode = FallbackMode.NONE
    judge0_api_url: Optional[str] = None
    judge0_rapidapi_key: Optional[str] = None
    remote_max_wait_ms: int = 10_000
    remote_poll_interval_ms: int = 1_000

    # ---------- helpers ----------

    @property
    def run_timeout_s(self) -> float:
        return self.run_timeout_ms / 1000.0

    @property
    def batch_timeout_s(self) -> float:
        return self.batch_timeout_ms / 1000.0

    @property
    def challenge_timeout_s(self) -> float:
        return self.challenge_timeout_ms / 1000.0

    @property
    def uses_remote_fallback(self) -> bool:
        return self.fallback == FallbackMode.JUDGE0

    def session_dir(self, session_id: str) -> Path:
        """Host-side working folder for one interpreter session."""
        return self.sessions_root / session_id

    # ---------- construction ----------

    @staticmethod
    def _load_env_file(env_file_path: Optional[Path]) -> Dict[str, str]:
        """Read KEY=VALUE pairs from an env file; missing file means no overrides."""
        if env_file_path is None or not Path(env_file_path).exists():
            return {}
        return {k: v for k, v in dotenv_values(env_file_path).items() if v is not None}

    @staticmethod
    def _get_env_enum(name: str, enum_cls, default, env_vars: Optional[Dict[str, str]] = None):
        raw = Config._get_env_value(name, None, env_vars)
        if raw is None or raw.strip() == "":
            return default
        try:
            return enum_cls(raw.strip().upper())
        except ValueError:
            allowed = ", ".join(e.value for e in enum_cls)
            raise ValueError(f"{name} must be one of: {allowed} (got: {raw!r})")

    @staticmethod
    def _get_env_value(name: str, default: Optional[str] = None, env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
        """Env file first, then process environment."""
        if env_vars and name in env_vars:
            return env_vars[name]
        return os.getenv(name, default)

    @staticmethod
    def _get_env_int(name: str, default: int, env_vars: Optional[Dict[str, str]] = None) -> int:
        raw = Config._get_env_value(name, None, env_vars)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw.strip())
        except ValueError:
            raise ValueError(f"{name} must be an integer (got: {raw!r})")

    @classmethod
    def from_env(cls, env_file_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from environment variables, optionally from a file.

        Args:
            env_file_path: Optional path to an env file. Its values take
                precedence over the process environment.

        Environment variables:
          - SESSIONS_ROOT           = ./sessions
          - RUN_TIMEOUT_MS          = 10000
          - BATCH_TIMEOUT_MS        = 15000
          - CHALLENGE_TIMEOUT_MS    = 5000
          - STARTUP_TIMEOUT_S       = 10
          - IDLE_TIMEOUT_S          = 2700
          - SESSION_LOGS            = false
          - BATCH_WORKERS           = 1
          - FALLBACK                = NONE | JUDGE0   (default: NONE)
          - JUDGE0_API_URL          (required if FALLBACK=JUDGE0)
          - JUDGE0_RAPIDAPI_KEY
          - REMOTE_MAX_WAIT_MS      = 10000
          - REMOTE_POLL_INTERVAL_MS = 1000
        """
        env_vars = cls._load_env_file(env_file_path)

        sessions_root = Path(cls._get_env_value("SESSIONS_ROOT", "./sessions", env_vars)).resolve()
        fallback = cls._get_env_enum("FALLBACK", FallbackMode, FallbackMode.NONE, env_vars)
        judge0_api_url = cls._get_env_value("JUDGE0_API_URL", None, env_vars) or None
        session_logs = (cls._get_env_value("SESSION_LOGS", "false", env_vars) or "").strip().lower() in _TRUE

        if fallback == FallbackMode.JUDGE0 and not judge0_api_url:
            raise ValueError("JUDGE0_API_URL is required when FALLBACK=JUDGE0")

        batch_workers = cls._get_env_int("BATCH_WORKERS", 1, env_vars)
        if batch_workers < 1:
            raise ValueError("BATCH_WORKERS must be at least 1")

        return cls(
            sessions_root=sessions_root,
            run_timeout_ms=cls._get_env_int("RUN_TIMEOUT_MS", 10_000, env_vars),
            batch_timeout_ms=cls._get_env_int("BATCH_TIMEOUT_MS", 15_000, env_vars),
            challenge_timeout_ms=cls._get_env_int("CHALLENGE_TIMEOUT_MS", 5_000, env_vars),
            startup_timeout_s=float(cls._get_env_value("STARTUP_TIMEOUT_S", "10", env_vars)),
            idle_timeout_s=cls._get_env_int("IDLE_TIMEOUT_S", 45 * 60, env_vars),
            session_logs=session_logs,
            batch_workers=batch_workers,
            fallback=fallback,
            judge0_api_url=judge0_api_url,
            judge0_rapidapi_key=cls._get_env_value("JUDGE0_RAPIDAPI_KEY", None, env_vars) or None,
            remote_max_wait_ms=cls._get_env_int("REMOTE_MAX_WAIT_MS", 10_000, env_vars),
            remote_poll_interval_ms=cls._get_env_int("REMOTE_POLL_INTERVAL_MS", 1_000, env_vars),
        )

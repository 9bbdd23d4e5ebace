# replay_sandbox/execution/determinism.py
"""One random seed per logical run, reapplied before every replay attempt."""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class DeterminismGuard:
    """
    Seed table keyed by run id.

    The seed itself is applied inside the interpreter: every /run request
    carries it and the REPL reseeds `random` (and numpy, when present) before
    executing. Retries after an error inside one logical run reuse the stored
    seed; only `reset()` starts a new one.
    """

    def __init__(self):
        self._seeds: Dict[str, int] = {}
        self._lock = threading.Lock()

    def initialize(self, run_id: str) -> int:
        """Draw a 32-bit seed the first time `run_id` is seen; no-op afterwards."""
        with self._lock:
            if run_id not in self._seeds:
                self._seeds[run_id] = secrets.randbits(32)
                logger.debug("Seed for run %s: %d", run_id, self._seeds[run_id])
            return self._seeds[run_id]

    def seed(self, run_id: str) -> Optional[int]:
        return self._seeds.get(run_id)

    def apply_seed(self, run_id: str) -> int:
        """Seed to send with the next attempt of `run_id` (first or replay)."""
        return self.initialize(run_id)

    def reset(self, run_id: str) -> None:
        with self._lock:
            self._seeds.pop(run_id, None)

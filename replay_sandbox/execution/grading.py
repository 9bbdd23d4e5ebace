# replay_sandbox/execution/grading.py
"""
Batch mode for automated grading.

Each test case runs on its own freshly started session, with the whole stdin
buffer queued up front. Running out of input is a real EOFError, and a case
that fails, hangs or crashes never affects its siblings.
"""

from __future__ import annotations

import logging
import math
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from ..errors import SandboxError
from ..models import BatchOptions, BatchSummary, RunMode, RunStatus, SourceUnit, TestCase, TestResult
from .coordinator import ExecutionCoordinator
from .replay import InputQueue

logger = logging.getLogger(__name__)


# ===== CHECKER FUNCTIONS =====

def exact_match(student_output: Any, expected_output: Any) -> bool:
    """Default checker: string equality after stripping surrounding whitespace."""
    return str(student_output).strip() == str(expected_output).strip()


def float_isclose(student_output: Any, expected_output: Any) -> bool:
    """
    Checker for floating-point answers.

    Uses math.isclose with rel_tol=1e-6 and abs_tol=1e-8.
    """
    try:
        return math.isclose(float(student_output), float(expected_output), rel_tol=1e-6, abs_tol=1e-8)
    except (ValueError, TypeError):
        return False


def unordered_list_equal(student_output: Any, expected_output: Any) -> bool:
    """Whitespace-separated values compared as multisets."""
    return sorted(str(student_output).split()) == sorted(str(expected_output).split())


CHECKERS: Dict[str, Callable[[Any, Any], bool]] = {
    "exact_match": exact_match,
    "float_isclose": float_isclose,
    "unordered_list_equal": unordered_list_equal,
}


def get_checker(name: Optional[str]) -> Callable[[Any, Any], bool]:
    try:
        return CHECKERS[name or "exact_match"]
    except KeyError:
        allowed = ", ".join(CHECKERS)
        raise ValueError(f"Unknown checker {name!r} (expected one of: {allowed})")


def split_stdin(stdin: str) -> List[str]:
    """One queued value per line; only the final newline is dropped, blank lines before it are values."""
    if not stdin:
        return []
    if stdin.endswith("\n"):
        stdin = stdin[:-1]
    return stdin.split("\n")


def summarize(results: List[TestResult]) -> BatchSummary:
    return BatchSummary(passed=sum(1 for r in results if r.passed), total=len(results), results=results)


# ===== TEST EXECUTION =====

class BatchGrader:
    """Handles test case execution and output validation."""

    def __init__(self, coordinator: ExecutionCoordinator, default_timeout_s: float = 15.0, workers: int = 1):
        self.coordinator = coordinator
        self.default_timeout_s = default_timeout_s
        self.workers = max(1, workers)

    def run(
        self,
        source: SourceUnit,
        stdin: str = "",
        expected_output: Optional[str] = None,
        time_limit_s: Optional[float] = None,
        echo_inputs: bool = False,
        checker: str = "exact_match",
    ) -> TestResult:
        """
        Run `source` once against a fixed stdin buffer on a throwaway session.

        `passed` requires a clean exit and, when `expected_output` is given,
        a checker match. Without an expected output a clean exit passes.
        """
        check = get_checker(checker)
        session_key = f"batch-{uuid.uuid4().hex[:8]}"
        try:
            result = self.coordinator.execute(
                source,
                session_key,
                InputQueue(split_stdin(stdin)),
                seed=None,
                mode=RunMode.BATCH,
                timeout_s=time_limit_s or self.default_timeout_s,
                echo_inputs=echo_inputs,
            )
        except SandboxError as e:
            logger.warning("Test case on %s failed to execute: %s", session_key, e)
            return TestResult(
                input=stdin,
                expected_output=expected_output,
                passed=False,
                status=RunStatus.RUNTIME_ERROR,
                error=str(e),
            )
        finally:
            self.coordinator.sessions.reset(session_key)

        passed = result.ok and (expected_output is None or check(result.stdout, expected_output))
        return TestResult(
            input=stdin,
            expected_output=expected_output,
            actual_output=result.stdout,
            passed=passed,
            status=result.status,
            error=result.error,
            time_ms=result.time_ms,
        )

    def run_batch(
        self,
        source: SourceUnit,
        test_cases: List[TestCase],
        options: Optional[BatchOptions] = None,
    ) -> List[TestResult]:
        """Run every case in isolation; results come back in input order."""
        options = options or BatchOptions()
        unit = SourceUnit(code=source.code, prepend=options.prepend or source.prepend, postpend=options.postpend or source.postpend)
        time_limit_s = options.timeout_ms / 1000.0 if options.timeout_ms else None
        get_checker(options.checker)

        def _one(case: TestCase) -> TestResult:
            return self.run(
                unit,
                case.input,
                case.expected_output,
                time_limit_s=time_limit_s,
                echo_inputs=options.echo_input,
                checker=options.checker,
            )

        if self.workers == 1 or len(test_cases) <= 1:
            results = [_one(case) for case in test_cases]
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                results = list(pool.map(_one, test_cases))

        logger.info("Batch finished: %d/%d passed", sum(r.passed for r in results), len(results))
        return results

# tests/test_grading.py
import pytest

from replay_sandbox.execution.coordinator import ExecutionCoordinator
from replay_sandbox.execution.grading import (
    BatchGrader,
    exact_match,
    float_isclose,
    get_checker,
    split_stdin,
    summarize,
    unordered_list_equal,
)
from replay_sandbox.models import BatchOptions, RunStatus, SourceUnit, TestCase

ADDER = "a = int(input())\nb = int(input())\nprint(a + b)"


@pytest.fixture
def grader(sessions):
    return BatchGrader(ExecutionCoordinator(sessions), default_timeout_s=5)


# ===== checkers =====

def test_exact_match_strips_whitespace():
    assert exact_match("5\n", "5")
    assert exact_match("  hi there \n\n", "hi there")
    assert not exact_match("5", "6")


def test_float_isclose():
    assert float_isclose("0.30000000000000004", "0.3")
    assert not float_isclose("0.31", "0.3")
    assert not float_isclose("abc", "0.3")


def test_unordered_list_equal():
    assert unordered_list_equal("3 1 2", "1 2 3")
    assert unordered_list_equal("b\na\n", "a b")
    assert not unordered_list_equal("1 2", "1 2 2")


def test_unknown_checker():
    with pytest.raises(ValueError):
        get_checker("fuzzy")
    assert get_checker(None) is exact_match


def test_split_stdin():
    assert split_stdin("") == []
    assert split_stdin("1\n2") == ["1", "2"]
    assert split_stdin("1\n2\n") == ["1", "2"]
    assert split_stdin("\n") == [""]
    assert split_stdin("a\n\nb") == ["a", "", "b"]
    assert split_stdin("a\n\n") == ["a", ""]
    assert split_stdin("\n\n") == ["", ""]


# ===== execution =====

def test_run_passes(grader):
    r = grader.run(SourceUnit(code=ADDER), "2\n3", "5")
    assert r.passed
    assert r.status == RunStatus.SUCCESS
    assert r.actual_output == "5\n"
    assert r.error is None


def test_wrong_answer(grader):
    r = grader.run(SourceUnit(code=ADDER), "2\n3", "6")
    assert not r.passed
    assert r.status == RunStatus.SUCCESS


def test_blank_final_line_is_read_as_a_value(grader):
    r = grader.run(SourceUnit(code="a = input()\nb = input()\nprint(repr(b))"), "a\n\n", "''")
    assert r.status == RunStatus.SUCCESS
    assert r.actual_output == "''\n"
    assert r.passed


def test_short_stdin_is_a_real_eof(grader):
    r = grader.run(SourceUnit(code=ADDER), "2", "2")
    assert not r.passed
    assert r.status == RunStatus.RUNTIME_ERROR
    assert r.error == "Line 2: EOFError: EOF when reading a line"


def test_echo_inputs_reproduces_transcript(grader):
    code = 'n = input("n: ")\nprint(n * 2)'
    quiet = grader.run(SourceUnit(code=code), "ab", echo_inputs=False)
    loud = grader.run(SourceUnit(code=code), "ab", echo_inputs=True)
    assert quiet.actual_output == "n: abab\n"
    assert loud.actual_output == "n: ab\nabab\n"
    assert quiet.passed  # no expected output: a clean exit passes


def test_every_case_gets_a_fresh_session(grader, sessions, started):
    code = "try:\n    seen += 1\nexcept NameError:\n    seen = 1\nprint(seen)"
    results = grader.run_batch(SourceUnit(code=code), [TestCase(expected_output="1")] * 3)
    assert [r.passed for r in results] == [True, True, True]
    assert len(started) == 3
    # Throwaway sessions are torn down
    assert sessions.sessions == {}


def test_run_batch_options(grader):
    cases = [
        TestCase(input="1\n2", expected_output="3"),
        TestCase(input="5\n5", expected_output="10"),
        TestCase(input="1", expected_output="1"),
    ]
    options = BatchOptions(prepend="OFFSET = 0", postpend="print('done')", checker="exact_match")
    results = grader.run_batch(SourceUnit(code=ADDER), cases, options)
    assert [r.passed for r in results] == [False, False, False]
    assert results[0].actual_output == "3\ndone\n"
    # Line numbers exclude the prepended scaffold
    assert results[2].error == "Line 2: EOFError: EOF when reading a line"


def test_float_checker_in_batch(grader):
    results = grader.run_batch(
        SourceUnit(code="print(0.1 + 0.2)"),
        [TestCase(expected_output="0.3")],
        BatchOptions(checker="float_isclose"),
    )
    assert results[0].passed


def test_results_follow_case_order(sessions):
    grader = BatchGrader(ExecutionCoordinator(sessions), workers=1)
    results = grader.run_batch(SourceUnit(code=ADDER), [TestCase(input=f"{i}\n1", expected_output=str(i + 1)) for i in range(4)])
    assert [r.actual_output for r in results] == ["1\n", "2\n", "3\n", "4\n"]


def test_unknown_checker_fails_fast(grader):
    with pytest.raises(ValueError):
        grader.run_batch(SourceUnit(code="print(1)"), [TestCase()], BatchOptions(checker="nope"))


def test_summarize(grader):
    results = grader.run_batch(
        SourceUnit(code=ADDER),
        [TestCase(input="1\n1", expected_output="2"), TestCase(input="1\n1", expected_output="3")],
    )
    summary = summarize(results)
    assert (summary.passed, summary.total) == (1, 2)

# tests/test_engine.py
import time

import pytest

from replay_sandbox.config import Config, FallbackMode
from replay_sandbox.engine import ExecutionEngine
from replay_sandbox.errors import InitializationFailure
from replay_sandbox.models import RunStatus, TestCase
from replay_sandbox.remote.judge0 import Judge0Client

NAME_PROGRAM = 'name = input("Name: ")\nprint("Hi " + name)'


@pytest.fixture
def engine(sessions, tmp_path):
    e = ExecutionEngine(Config(sessions_root=tmp_path), sessions=sessions)
    yield e
    e.close()


def test_submit_run_name_example(engine):
    first = engine.submit_run(NAME_PROGRAM, [])
    assert first.status == RunStatus.AWAITING_INPUT
    assert first.pending_prompt == "Name: "

    second = engine.submit_run(NAME_PROGRAM, [], "Ada")
    assert second.status == RunStatus.SUCCESS
    assert "Hi Ada" in second.stdout
    assert second.echo == "Ada"
    # Same logical run: resumed, not rebuilt
    assert second.run_id == first.run_id


def test_new_logical_run_gets_a_new_seed(engine):
    first = engine.submit_run(NAME_PROGRAM, [])
    seed = engine.guard.seed(first.run_id)
    again = engine.submit_run(NAME_PROGRAM, [])
    assert again.run_id != first.run_id
    assert engine.guard.seed(first.run_id) is None
    assert seed is not None


def test_mismatched_history_rebuilds_the_run(engine):
    code = 'a = input("a? ")\nb = input("b? ")\nprint(a + b)'
    engine.submit_run(code, [])
    # Caller supplies a history the engine has not seen; replay it in full
    r = engine.submit_run(code, ["x"], "y")
    assert r.status == RunStatus.SUCCESS
    assert r.stdout.endswith("xy\n")
    assert engine.get_run().queue.values == ["x", "y"]


def test_switching_program_resets_the_session(engine, started):
    engine.submit_run(NAME_PROGRAM, [], context_id="c1")
    engine.submit_run("print('other')", [], context_id="c1")
    assert len(started) == 2
    assert started[0].alive is False


def test_contexts_are_independent(engine):
    a = engine.submit_run(NAME_PROGRAM, [], context_id="a")
    b = engine.submit_run(NAME_PROGRAM, [], context_id="b")
    assert a.run_id != b.run_id
    assert engine.submit_run(NAME_PROGRAM, [], "Bo", context_id="b").ok
    assert engine.get_run("a").awaiting_input


def test_prepend_does_not_shift_line_numbers(engine):
    r = engine.submit_run("x = 1\ny = x / 0", [], prepend="import math\nimport random")
    assert r.error == "Line 2: ZeroDivisionError: division by zero"


def test_reset_run(engine, sessions):
    engine.submit_run(NAME_PROGRAM, [], context_id="c")
    engine.reset_run("c")
    engine.reset_run("c")
    assert engine.get_run("c") is None
    assert "run-c" not in sessions.sessions


def test_run_batch(engine):
    results = engine.run_batch(
        NAME_PROGRAM,
        [TestCase(input="Ada", expected_output="Name: Hi Ada"), TestCase(input="", expected_output="x")],
    )
    assert results[0].passed
    assert results[1].status == RunStatus.RUNTIME_ERROR
    assert "EOFError" in results[1].error


def test_challenge_registry(engine):
    game = engine.challenge("stone")
    assert engine.challenge("stone") is game
    game.initialize("def move(s): return s[0]")
    assert game.invoke("move", ["xy"]) == "x"
    engine.close_challenge("stone")
    assert not game.active
    assert engine.challenge("stone") is not game


def test_init_failure_without_fallback(broken_sessions, tmp_path):
    engine = ExecutionEngine(Config(sessions_root=tmp_path), sessions=broken_sessions)
    with pytest.raises(InitializationFailure):
        engine.submit_run("print(1)", [])


def test_remote_client_from_config(tmp_path, sessions):
    cfg = Config(sessions_root=tmp_path, fallback=FallbackMode.JUDGE0, judge0_api_url="https://j0.example.com")
    engine = ExecutionEngine(cfg, sessions=sessions)
    assert isinstance(engine.remote, Judge0Client)
    assert engine.coordinator.remote is engine.remote
    engine.close()


def test_idle_sweep_forgets_runs_and_challenges(make_sessions, tmp_path):
    sessions = make_sessions(idle_timeout_s=60)
    engine = ExecutionEngine(Config(sessions_root=tmp_path), sessions=sessions)
    try:
        first = engine.submit_run(NAME_PROGRAM, [], context_id="old")
        game = engine.challenge("stale")
        game.initialize("def move(s): return s[0]")
        for key in ("run-old", "challenge-stale"):
            sessions.get(key).last_used = time.time() - 120

        engine.submit_run(NAME_PROGRAM, [], context_id="fresh")

        assert engine.get_run("old") is None
        assert engine.guard.seed(first.run_id) is None
        assert engine.get_run("fresh") is not None
        assert not game.active
        assert engine.challenge("stale") is not game
    finally:
        engine.close()

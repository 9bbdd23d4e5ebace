# tests/test_challenge.py
import pytest

from replay_sandbox.errors import ChallengeError, SessionBusyError
from replay_sandbox.execution.challenge import ChallengeSession

COUNTER = (
    "moves = 0\n"
    "print('loaded')\n"
    "def move(s):\n"
    "    global moves\n"
    "    moves += 1\n"
    "    return s[0]\n"
    "def count():\n"
    "    return moves\n"
)


@pytest.fixture
def challenge(sessions):
    session = ChallengeSession(sessions, "challenge-test", timeout_s=2)
    yield session
    session.teardown()


def test_move_example(challenge):
    challenge.initialize("def move(s): return s[0]")
    assert challenge.active
    assert challenge.invoke("move", [["x", "y"]]) == "x"


def test_globals_persist_between_calls(challenge):
    assert challenge.initialize(COUNTER) == "loaded\n"
    challenge.invoke("move", ["ab"])
    challenge.invoke("move", ["cd"])
    assert challenge.invoke("count") == 2
    assert challenge.invocations == 3


def test_undefined_function(challenge):
    challenge.initialize(COUNTER)
    with pytest.raises(ChallengeError) as e:
        challenge.invoke("attack", [])
    assert "attack" in str(e.value)


def test_function_that_raises_reports_student_line(challenge):
    challenge.initialize("def move(s):\n    return s[10]")
    with pytest.raises(ChallengeError) as e:
        challenge.invoke("move", ["ab"])
    assert "Line 2: IndexError" in str(e.value)


def test_invoke_before_initialize(challenge):
    with pytest.raises(ChallengeError):
        challenge.invoke("move", [])


def test_broken_program_fails_to_initialize(challenge, sessions):
    with pytest.raises(ChallengeError) as e:
        challenge.initialize("def move(s):\n    return s[0]\nraise RuntimeError('setup failed')")
    assert "Line 3: RuntimeError: setup failed" in str(e.value)
    assert not challenge.active
    assert "challenge-test" not in sessions.sessions


def test_reinitialize_resets_state(challenge, started):
    challenge.initialize(COUNTER)
    challenge.invoke("move", ["a"])
    challenge.initialize(COUNTER)
    assert challenge.invoke("count") == 0
    assert challenge.invocations == 1
    assert len(started) == 2


def test_one_invoke_at_a_time(challenge, sessions):
    challenge.initialize(COUNTER)
    with sessions.busy("challenge-test"):
        with pytest.raises(SessionBusyError):
            challenge.invoke("move", ["a"])


def test_teardown(challenge, sessions):
    challenge.initialize(COUNTER)
    challenge.teardown()
    challenge.teardown()
    assert not challenge.active
    assert "challenge-test" not in sessions.sessions
    with pytest.raises(ChallengeError):
        challenge.invoke("count")


def test_exit_while_loading(challenge):
    with pytest.raises(ChallengeError) as e:
        challenge.initialize("import sys\nsys.exit(1)")
    assert str(e.value) == "Failed to initialize challenge session: Line 2: SystemExit: 1"
    assert not challenge.active

    challenge.initialize("import sys\ndef move(s):\n    return s[-1]\nsys.exit(0)")
    assert challenge.invoke("move", ["xy"]) == "y"


def test_interrupt_in_move_keeps_the_session(challenge, sessions):
    challenge.initialize(COUNTER + "def panic():\n    raise KeyboardInterrupt\n")
    challenge.invoke("move", ["a"])
    with pytest.raises(ChallengeError) as e:
        challenge.invoke("panic")
    assert "Line 10: KeyboardInterrupt" in str(e.value)
    assert challenge.active
    assert "challenge-test" in sessions.sessions
    assert challenge.invoke("count") == 1


def test_swept_session_needs_initialize(challenge, sessions):
    challenge.initialize(COUNTER)
    sessions.reset("challenge-test")
    with pytest.raises(ChallengeError) as e:
        challenge.invoke("move", ["a"])
    assert "expired" in str(e.value)
    assert not challenge.active

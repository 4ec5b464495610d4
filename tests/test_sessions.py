from __future__ import annotations

import pytest

from calls.sessions import CallState, InvalidTransition, SessionTable


def test_session_roles_are_fixed_by_who_initiated():
    table = SessionTable()
    session = table.create("alice", "bob", "audio", now=0.0)

    assert session.role_of("alice") == "offerer"
    assert session.role_of("bob") == "answerer"
    assert session.other("alice") == "bob"
    assert table.for_identity("bob") is session
    assert table.ringing_between("alice", "bob") is session
    assert table.ringing_between("bob", "alice") is None


def test_elapsed_time_starts_at_acceptance_not_ringing():
    session = SessionTable().create("a", "b", "video", now=10.0)
    session.transition(CallState.ACCEPTED, now=40.0)
    session.transition(CallState.ACTIVE, now=41.0)
    session.transition(CallState.ENDED, now=100.5, reason="hangup")

    assert session.elapsed_ms() == 60_500
    assert session.end_reason == "hangup"
    assert session.is_terminal


def test_unaccepted_session_has_no_elapsed_time():
    session = SessionTable().create("a", "b", "video", now=10.0)
    session.transition(CallState.TIMED_OUT, now=40.0)
    assert session.elapsed_ms() == 0
    assert session.end_reason == "timed_out"


@pytest.mark.parametrize(
    "path",
    [
        [CallState.ACTIVE],
        [CallState.ENDED],
        [CallState.DECLINED, CallState.ACCEPTED],
        [CallState.ACCEPTED, CallState.TIMED_OUT],
    ],
)
def test_illegal_transitions_are_rejected(path):
    session = SessionTable().create("a", "b", "audio", now=0.0)
    *legal, illegal = path
    for state in legal:
        session.transition(state, now=1.0)
    with pytest.raises(InvalidTransition):
        session.transition(illegal, now=2.0)


def test_discard_forgets_session():
    table = SessionTable()
    session = table.create("a", "b", "audio", now=0.0)
    table.discard(session)
    assert table.get(session.session_id) is None
    assert table.get(None) is None
    assert len(table) == 0

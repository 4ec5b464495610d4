"""Call session state machine and the table of live sessions."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum

from calls.schemas import Role


class CallState(str, Enum):
    RINGING = "ringing"
    ACCEPTED = "accepted"
    ACTIVE = "active"
    ENDED = "ended"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.RINGING: frozenset(
        {CallState.ACCEPTED, CallState.DECLINED, CallState.CANCELLED, CallState.TIMED_OUT}
    ),
    CallState.ACCEPTED: frozenset({CallState.ACTIVE, CallState.ENDED}),
    CallState.ACTIVE: frozenset({CallState.ENDED}),
}

TERMINAL_STATES = frozenset(
    {CallState.ENDED, CallState.DECLINED, CallState.CANCELLED, CallState.TIMED_OUT}
)


class InvalidTransition(RuntimeError):
    pass


@dataclass(slots=True)
class CallSession:
    """One pairing attempt, from ring to termination.

    The initiator always takes the offerer role and the responder the answerer
    role, so both ends are told the same assignment.
    """

    session_id: str
    initiator: str
    responder: str
    mode: str
    created_at: float
    state: CallState = CallState.RINGING
    accepted_at: float | None = None
    ended_at: float | None = None
    end_reason: str | None = None
    signals_relayed: int = 0
    payer: str | None = None
    payer_charged: int = 0
    settled: bool = False
    ring_task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_ringing(self) -> bool:
        return self.state is CallState.RINGING

    @property
    def is_connected(self) -> bool:
        return self.state in (CallState.ACCEPTED, CallState.ACTIVE)

    @property
    def parties(self) -> tuple[str, str]:
        return (self.initiator, self.responder)

    def involves(self, identity: str) -> bool:
        return identity in self.parties

    def other(self, identity: str) -> str:
        if identity == self.initiator:
            return self.responder
        if identity == self.responder:
            return self.initiator
        raise ValueError(f"{identity} is not part of session {self.session_id}")

    def role_of(self, identity: str) -> Role:
        return "offerer" if identity == self.initiator else "answerer"

    def transition(self, state: CallState, *, now: float, reason: str | None = None) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if state not in allowed:
            raise InvalidTransition(f"{self.session_id}: {self.state.value} -> {state.value}")
        self.state = state
        if state is CallState.ACCEPTED:
            self.accepted_at = now
        if state in TERMINAL_STATES:
            self.ended_at = now
            self.end_reason = reason or state.value
        if state is not CallState.RINGING:
            self.cancel_ring_timer()

    def cancel_ring_timer(self) -> None:
        task = self.ring_task
        self.ring_task = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def elapsed_ms(self) -> int:
        """Call time from acceptance to end; ring time is never counted."""

        if self.accepted_at is None or self.ended_at is None:
            return 0
        return max(0, int(round((self.ended_at - self.accepted_at) * 1000)))


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class SessionTable:
    """Live (ringing or connected) sessions; terminal sessions are dropped."""

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, initiator: str, responder: str, mode: str, *, now: float) -> CallSession:
        session = CallSession(
            session_id=uuid.uuid4().hex,
            initiator=initiator,
            responder=responder,
            mode=mode,
            created_at=now,
        )
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: object) -> CallSession | None:
        if not isinstance(session_id, str):
            return None
        return self._sessions.get(session_id)

    def for_identity(self, identity: str) -> CallSession | None:
        for session in self._sessions.values():
            if session.involves(identity):
                return session
        return None

    def ringing_between(self, initiator: str, responder: str) -> CallSession | None:
        for session in self._sessions.values():
            if session.is_ringing and session.initiator == initiator and session.responder == responder:
                return session
        return None

    def discard(self, session: CallSession) -> None:
        self._sessions.pop(session.session_id, None)

    def all(self) -> list[CallSession]:
        return list(self._sessions.values())

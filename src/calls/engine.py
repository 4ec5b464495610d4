"""Call engine: the single coordinator for presence, matchmaking, ringing, relay and billing.

Every mutating operation runs under one `asyncio.Lock`, so finding a partner,
removing them from the queue, creating the session and flipping both users to
ringing happen atomically. Outbound events are queued on each `Connection`
and never awaited here.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any

from calls.billing import BillingLedger, BillingPolicy
from calls.compatibility import is_compatible, missing_preferences
from calls.directory import Directory
from calls.errors import (
    AlreadyInCall,
    AuthError,
    InsufficientBalance,
    InvalidRequest,
    NoCompatiblePartner,
    PeerLowBalance,
    PeerUnavailable,
    PreferencesIncomplete,
    StaleSessionReference,
)
from calls.matchmaking import MatchmakingQueue, validate_mode
from calls.presence import Connection, PresenceRegistry
from calls.relay import SignalingRelay
from calls.schemas import Availability, PresenceEntry, Profile
from calls.sessions import CallSession, CallState, SessionTable
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


def _ignores_stale_sessions(func):
    """Late or duplicate client messages about finished sessions are dropped quietly."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except StaleSessionReference as exc:
            LOGGER.debug("Ignoring %s: %s", func.__name__, exc.detail)
            return None

    return wrapper


class CallEngine:
    def __init__(
        self,
        directory: Directory,
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._directory = directory
        self._clock = clock
        self._ring_timeout = settings.ring_timeout_seconds
        self._language_wildcard = settings.language_wildcard
        self._duplicate_ring_policy = settings.duplicate_ring_policy
        self._lock = asyncio.Lock()

        self.presence = PresenceRegistry()
        self.queue = MatchmakingQueue(language_wildcard=settings.language_wildcard, rng=rng)
        self.sessions = SessionTable()
        self.relay = SignalingRelay(self.presence)
        self.ledger = BillingLedger(directory, BillingPolicy.from_settings(settings))

    # ------------------------------------------------------------------
    # Connection lifecycle

    async def authenticate(self, connection: Connection, credential: Any) -> str:
        if not isinstance(credential, str) or not credential.strip():
            raise AuthError("Missing credential.")

        async with self._lock:
            identity = await self._directory.lookup_by_credential(credential.strip())
            if identity is None:
                raise AuthError()

            previous = self.presence.identity_for(connection)
            if previous is not None and previous != identity:
                self.presence.unregister(connection)
                await self._release(previous)

            replaced = self.presence.register(connection, identity)
            if replaced is not None:
                LOGGER.info("%s reconnected; closing previous connection", identity)
                replaced.close()

            connection.send("auth_ok", {"identity": identity})
            LOGGER.info("Authenticated %s on %s", identity, connection.connection_id)
            await self._broadcast_presence()
            return identity

    async def disconnect(self, connection: Connection) -> None:
        connection.close()
        async with self._lock:
            identity = self.presence.unregister(connection)
            if identity is None:
                return
            LOGGER.info("Disconnected %s", identity)
            await self._release(identity)
            await self._broadcast_presence()

    async def _release(self, identity: str) -> None:
        """Clean up after an identity that is no longer reachable."""

        self.queue.remove(identity)
        session = self.sessions.for_identity(identity)
        if session is None:
            return
        if session.is_ringing:
            self._finish_ringing(
                session,
                CallState.CANCELLED,
                notices={session.other(identity): "peer_hangup"},
                reason="disconnect",
            )
        else:
            await self._end_call(session, ender=identity, reason="disconnect")

    # ------------------------------------------------------------------
    # Presence

    async def snapshot(self) -> list[PresenceEntry]:
        async with self._lock:
            return await self.presence.snapshot(self._directory)

    async def presence_get(self, connection: Connection) -> None:
        async with self._lock:
            self._require_identity(connection)
            entries = await self.presence.snapshot(self._directory)
            connection.send("presence", _presence_payload(entries))

    async def _broadcast_presence(self) -> None:
        entries = await self.presence.snapshot(self._directory)
        self.presence.broadcast("presence", _presence_payload(entries))

    # ------------------------------------------------------------------
    # Matchmaking

    async def find_match(self, connection: Connection, mode: Any) -> CallSession | None:
        """Pair with the first compatible user queued under `mode`, or queue up."""

        mode = validate_mode(mode)
        async with self._lock:
            seeker = await self._ready_seeker(connection)
            try:
                partner_id = await self.queue.take_match(
                    seeker,
                    mode,
                    directory=self._directory,
                    is_free=self.presence.is_free,
                )
            except NoCompatiblePartner:
                self.queue.enqueue(seeker.identity, mode, now=self._clock())
                connection.send("queued", {"mode": mode})
                return None

            partner = await self._require_profile(partner_id)
            return await self._start_ringing(seeker, partner, mode)

    async def cancel_find(self, connection: Connection, mode: Any = None) -> bool:
        if mode is not None:
            mode = validate_mode(mode)
        async with self._lock:
            identity = self._require_identity(connection)
            return self.queue.remove(identity, mode)

    async def call_random(self, connection: Connection, mode: Any) -> CallSession | None:
        """Ring a uniformly random compatible free user; no waiting entry is created."""

        mode = validate_mode(mode)
        async with self._lock:
            seeker = await self._ready_seeker(connection)
            try:
                partner_id = await self.queue.pick_from_pool(
                    seeker,
                    self.presence.free_identities(),
                    directory=self._directory,
                )
            except NoCompatiblePartner:
                connection.send("no_partner", {"mode": mode})
                return None

            partner = await self._require_profile(partner_id)
            return await self._start_ringing(seeker, partner, mode)

    async def call_user(self, connection: Connection, target: Any, mode: Any) -> CallSession | None:
        mode = validate_mode(mode)
        if not isinstance(target, str) or not target:
            raise InvalidRequest("Missing call target.")

        async with self._lock:
            caller_id = self._require_identity(connection)
            if target == caller_id:
                raise InvalidRequest("You cannot call yourself.")
            if not self.presence.is_online(target):
                raise PeerUnavailable("That user is offline.", code="peer_offline")

            if self._duplicate_ring_policy == "collapse":
                pending = self.sessions.ringing_between(target, caller_id)
                if pending is not None:
                    LOGGER.info("Collapsing crossed ring into session %s", pending.session_id)
                    await self._accept(pending, caller_id)
                    return pending

            caller = await self._ready_seeker(connection)
            if not self.presence.is_free(target):
                raise PeerUnavailable("That user is busy.", code="peer_busy")

            callee = await self._require_profile(target)
            if missing_preferences(callee, language_wildcard=self._language_wildcard):
                raise PeerUnavailable("That user has not completed their profile.", code="incompatible")
            if not is_compatible(caller, callee, language_wildcard=self._language_wildcard):
                raise PeerUnavailable("Language or gender not compatible.", code="incompatible")

            return await self._start_ringing(caller, callee, mode)

    async def _ready_seeker(self, connection: Connection) -> Profile:
        """Profile of a caller allowed to start ringing someone."""

        identity = self._require_identity(connection)
        if not self.presence.is_free(identity):
            raise AlreadyInCall()
        profile = await self._require_profile(identity)
        missing = missing_preferences(profile, language_wildcard=self._language_wildcard)
        if missing:
            raise PreferencesIncomplete(f"Missing preferences: {', '.join(missing)}.")
        await self.ledger.ensure_can_pay(profile)
        return profile

    # ------------------------------------------------------------------
    # Ringing

    async def _start_ringing(self, initiator: Profile, responder: Profile, mode: str) -> CallSession:
        for identity in (initiator.identity, responder.identity):
            self.queue.remove(identity)
            self.presence.set_availability(identity, Availability.RINGING)

        session = self.sessions.create(initiator.identity, responder.identity, mode, now=self._clock())
        session.ring_task = asyncio.create_task(self._ring_timeout_after(session.session_id))

        self.presence.send(
            initiator.identity,
            "outgoing_call",
            {"session_id": session.session_id, "mode": mode, "counterpart": responder.public()},
        )
        self.presence.send(
            responder.identity,
            "incoming_call",
            {"session_id": session.session_id, "mode": mode, "counterpart": initiator.public()},
        )
        LOGGER.info(
            "Ringing session=%s %s -> %s (%s)",
            session.session_id,
            initiator.identity,
            responder.identity,
            mode,
        )
        await self._broadcast_presence()
        return session

    async def _ring_timeout_after(self, session_id: str) -> None:
        await asyncio.sleep(self._ring_timeout)
        try:
            async with self._lock:
                session = self.sessions.get(session_id)
                if session is None or not session.is_ringing:
                    return
                LOGGER.info("Ring timeout for session=%s", session_id)
                self._finish_ringing(
                    session,
                    CallState.TIMED_OUT,
                    notices={session.initiator: "call_timeout", session.responder: "call_missed"},
                )
                await self._broadcast_presence()
        except Exception:
            LOGGER.exception("Ring timeout handling failed for session=%s", session_id)

    def _finish_ringing(
        self,
        session: CallSession,
        state: CallState,
        *,
        notices: dict[str, str],
        reason: str | None = None,
    ) -> None:
        session.transition(state, now=self._clock(), reason=reason)
        self.sessions.discard(session)
        for identity in session.parties:
            self.presence.set_availability(identity, Availability.FREE)
        for identity, event in notices.items():
            self.presence.send(identity, event, {"session_id": session.session_id})
        LOGGER.info("Session %s finished ringing: %s", session.session_id, session.end_reason)

    @_ignores_stale_sessions
    async def accept(self, connection: Connection, session_id: Any) -> None:
        async with self._lock:
            identity = self._require_identity(connection)
            session = self._require_session(session_id, identity)
            await self._accept(session, identity)

    async def _accept(self, session: CallSession, identity: str) -> None:
        if not session.is_ringing or identity != session.responder:
            raise StaleSessionReference()

        initiator = await self._require_profile(session.initiator)
        responder = await self._require_profile(session.responder)
        for short, other in ((responder, initiator), (initiator, responder)):
            try:
                await self.ledger.ensure_can_pay(short)
            except InsufficientBalance:
                LOGGER.info("Rolling back session=%s: %s is short of coins", session.session_id, short.identity)
                self._finish_ringing(session, CallState.CANCELLED, notices={}, reason="low_balance")
                await self._broadcast_presence()
                if short.identity == identity:
                    self.presence.send(other.identity, "call_error", _error_payload(PeerLowBalance()))
                    raise
                self.presence.send(short.identity, "call_error", _error_payload(InsufficientBalance()))
                raise PeerLowBalance() from None

        await self.ledger.charge(session, initiator, responder)
        session.transition(CallState.ACCEPTED, now=self._clock())
        for party in session.parties:
            self.presence.set_availability(party, Availability.IN_CALL)
            self.presence.send(
                party,
                "call_accepted",
                {"session_id": session.session_id, "role": session.role_of(party), "mode": session.mode},
            )
        LOGGER.info("Session %s accepted", session.session_id)
        await self._broadcast_presence()

    @_ignores_stale_sessions
    async def decline(self, connection: Connection, session_id: Any) -> None:
        async with self._lock:
            identity = self._require_identity(connection)
            session = self._require_session(session_id, identity)
            if not session.is_ringing or identity != session.responder:
                raise StaleSessionReference()
            self._finish_ringing(session, CallState.DECLINED, notices={session.initiator: "call_declined"})
            await self._broadcast_presence()

    @_ignores_stale_sessions
    async def cancel_invite(self, connection: Connection, session_id: Any) -> None:
        async with self._lock:
            identity = self._require_identity(connection)
            session = self._require_session(session_id, identity)
            if not session.is_ringing or identity != session.initiator:
                raise StaleSessionReference()
            self._finish_ringing(session, CallState.CANCELLED, notices={session.responder: "call_cancelled"})
            await self._broadcast_presence()

    # ------------------------------------------------------------------
    # Connected calls

    async def signal(self, connection: Connection, session_id: Any, payload: Any) -> bool:
        async with self._lock:
            identity = self.presence.identity_for(connection)
            if identity is None:
                return False
            session = self.sessions.get(session_id)
            delivered = self.relay.relay(session, identity, payload)
            if delivered and session.state is CallState.ACCEPTED:
                session.transition(CallState.ACTIVE, now=self._clock())
            return delivered

    @_ignores_stale_sessions
    async def hangup(self, connection: Connection, session_id: Any) -> None:
        async with self._lock:
            identity = self._require_identity(connection)
            session = self._require_session(session_id, identity)
            if session.is_ringing:
                # Hanging up while ringing is a cancel from the caller, a decline from the callee.
                if identity == session.initiator:
                    notices = {session.responder: "call_cancelled"}
                    state = CallState.CANCELLED
                else:
                    notices = {session.initiator: "call_declined"}
                    state = CallState.DECLINED
                self._finish_ringing(session, state, notices=notices)
                await self._broadcast_presence()
                return
            await self._end_call(session, ender=identity, reason="hangup")
            await self._broadcast_presence()

    async def _end_call(self, session: CallSession, *, ender: str, reason: str) -> None:
        session.transition(CallState.ENDED, now=self._clock(), reason=reason)
        self.sessions.discard(session)
        for party in session.parties:
            self.presence.set_availability(party, Availability.FREE)
        self.presence.send(session.other(ender), "peer_hangup", {"session_id": session.session_id})

        initiator = await self._directory.get_profile(session.initiator)
        responder = await self._directory.get_profile(session.responder)
        event = await self.ledger.settle(session, initiator, responder)
        for party in session.parties:
            self.presence.send(
                party,
                "call_summary",
                {
                    "session_id": session.session_id,
                    "duration_ms": session.elapsed_ms(),
                    "billing_delta": event.delta_for(party) if event else 0,
                },
            )
        LOGGER.info("Session %s ended by %s (%s)", session.session_id, ender, reason)

    # ------------------------------------------------------------------
    # Dispatch

    async def dispatch(self, connection: Connection, event: str, data: dict[str, Any]) -> None:
        """Route one client event to the matching operation."""

        if event in ("authenticate", "auth"):
            credential = data.get("credential") or data.get("token") or data.get("phone")
            await self.authenticate(connection, credential)
        elif event == "find_match":
            await self.find_match(connection, data.get("mode"))
        elif event == "cancel_find":
            await self.cancel_find(connection, data.get("mode"))
        elif event == "call_random":
            await self.call_random(connection, data.get("mode"))
        elif event == "call_user":
            await self.call_user(connection, data.get("target"), data.get("mode"))
        elif event == "call_accept":
            await self.accept(connection, data.get("session_id"))
        elif event == "call_decline":
            await self.decline(connection, data.get("session_id"))
        elif event == "cancel_invite":
            await self.cancel_invite(connection, data.get("session_id"))
        elif event == "signal":
            await self.signal(connection, data.get("session_id"), data.get("payload"))
        elif event == "hangup":
            await self.hangup(connection, data.get("session_id"))
        elif event == "presence_get":
            await self.presence_get(connection)
        else:
            raise InvalidRequest(f"Unknown event: {event}")

    async def close(self) -> None:
        async with self._lock:
            for session in self.sessions.all():
                session.cancel_ring_timer()

    # ------------------------------------------------------------------
    # Helpers

    def _require_identity(self, connection: Connection) -> str:
        identity = self.presence.identity_for(connection)
        if identity is None:
            raise AuthError("Authenticate first.")
        return identity

    def _require_session(self, session_id: Any, identity: str) -> CallSession:
        session = self.sessions.get(session_id)
        if session is None or session.is_terminal or not session.involves(identity):
            raise StaleSessionReference(f"session={session_id!r} identity={identity}")
        return session

    async def _require_profile(self, identity: str) -> Profile:
        profile = await self._directory.get_profile(identity)
        if profile is None:
            raise AuthError(f"Unknown user: {identity}")
        return profile


def _presence_payload(entries: list[PresenceEntry]) -> dict[str, Any]:
    return {"users": [entry.model_dump(mode="json") for entry in entries]}


def _error_payload(exc: Exception) -> dict[str, Any]:
    code = getattr(exc, "code", "call_error")
    detail = getattr(exc, "detail", str(exc))
    return {"code": code, "error": detail}

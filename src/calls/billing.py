"""Billing ledger for accepted calls.

Rule: the payer (by gender) is charged a flat cost when a call is accepted;
the earner (by gender) is credited per *full* block of call time when it ends.
Partial blocks earn nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from calls.compatibility import normalize_gender
from calls.directory import Directory
from calls.errors import InsufficientBalance
from calls.schemas import BillingEvent, Profile
from calls.sessions import CallSession
from config.settings import Settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingPolicy:
    payer_gender: str = "male"
    earner_gender: str = "female"
    call_cost: int = 100
    earn_block_seconds: int = 300
    earn_units_per_block: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> BillingPolicy:
        return cls(
            payer_gender=settings.billing_payer_gender,
            earner_gender=settings.billing_earner_gender,
            call_cost=settings.billing_call_cost,
            earn_block_seconds=settings.billing_earn_block_seconds,
            earn_units_per_block=settings.billing_earn_units_per_block,
        )

    def is_payer(self, profile: Profile | None) -> bool:
        if profile is None or not self.payer_gender:
            return False
        return normalize_gender(profile.gender) == normalize_gender(self.payer_gender)

    def is_earner(self, profile: Profile | None) -> bool:
        if profile is None or not self.earner_gender:
            return False
        return normalize_gender(profile.gender) == normalize_gender(self.earner_gender)

    def blocks(self, duration_ms: int) -> int:
        return max(0, duration_ms) // (self.earn_block_seconds * 1000)


class BillingLedger:
    """Charges payers at acceptance and credits earners at call end.

    Per-session markers live on `CallSession` itself, so the ledger keeps no
    state of its own once a session is discarded.
    """

    def __init__(self, directory: Directory, policy: BillingPolicy) -> None:
        self._directory = directory
        self._policy = policy

    @property
    def policy(self) -> BillingPolicy:
        return self._policy

    async def ensure_can_pay(self, profile: Profile) -> None:
        """Raise InsufficientBalance when a payer cannot cover one call."""

        if not self._policy.is_payer(profile) or self._policy.call_cost <= 0:
            return
        balance = await self._directory.get_balance(profile.identity)
        if balance < self._policy.call_cost:
            raise InsufficientBalance()

    async def charge(
        self,
        session: CallSession,
        initiator: Profile | None,
        responder: Profile | None,
    ) -> int:
        """Debit the flat call cost from the session's payer, at most once.

        Returns the amount charged by this call (0 when nothing was due or the
        session was already charged).
        """

        if session.payer is not None or self._policy.call_cost <= 0:
            return 0
        payer = next((p for p in (initiator, responder) if self._policy.is_payer(p)), None)
        if payer is None:
            return 0

        session.payer = payer.identity
        session.payer_charged = self._policy.call_cost
        await self._directory.apply_billing_delta(payer.identity, -self._policy.call_cost)
        LOGGER.info(
            "Charged session=%s payer=%s cost=%d",
            session.session_id,
            payer.identity,
            self._policy.call_cost,
        )
        return self._policy.call_cost

    async def settle(
        self,
        session: CallSession,
        initiator: Profile | None,
        responder: Profile | None,
    ) -> BillingEvent | None:
        """Credit the earner and record history for an ended session, once.

        The payer was already debited at acceptance; the returned event still
        reports that debit so both parties see their full delta. Returns None
        for sessions that never reached ACCEPTED and for sessions that were
        already settled.
        """

        if session.accepted_at is None or session.settled:
            return None
        session.settled = True

        duration_ms = session.elapsed_ms()
        blocks = self._policy.blocks(duration_ms)
        event = BillingEvent(session_id=session.session_id, duration_ms=duration_ms, blocks=blocks)

        if session.payer is not None:
            event.payer = session.payer
            event.payer_delta = -session.payer_charged
        payee = next(
            (
                p
                for p in (initiator, responder)
                if self._policy.is_earner(p) and p.identity != session.payer
            ),
            None,
        )
        if payee is not None:
            event.payee = payee.identity
            event.payee_delta = blocks * self._policy.earn_units_per_block

        if event.payee and event.payee_delta:
            await self._directory.apply_billing_delta(event.payee, event.payee_delta)
        await self._directory.record_history(
            session.session_id,
            session.initiator,
            session.responder,
            session.mode,
            duration_ms,
        )

        LOGGER.info(
            "Settled session=%s duration_ms=%d blocks=%d payer=%s(%d) payee=%s(%d)",
            session.session_id,
            duration_ms,
            blocks,
            event.payer,
            event.payer_delta,
            event.payee,
            event.payee_delta,
        )
        return event

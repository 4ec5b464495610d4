"""Collaborator interface for the user directory.

The engine never owns user records: it resolves credentials, reads profiles and
balances, and pushes billing deltas and call history through this protocol.
`db.repository.UserDirectory` is the SQL-backed implementation.
"""

from __future__ import annotations

from typing import Protocol

from calls.schemas import Profile


class Directory(Protocol):
    async def lookup_by_credential(self, credential: str) -> str | None:
        """Return the identity for a token or phone, or None when unknown."""

    async def get_profile(self, identity: str) -> Profile | None: ...

    async def get_balance(self, identity: str) -> int: ...

    async def apply_billing_delta(self, identity: str, delta: int) -> int:
        """Adjust the coin balance and return the new balance."""

    async def record_history(
        self,
        session_id: str,
        a: str,
        b: str,
        mode: str,
        duration_ms: int,
    ) -> None: ...

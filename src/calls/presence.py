"""Presence registry: who is online, on which connection, and whether they can be rung."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from calls.directory import Directory
from calls.schemas import Availability, PresenceEntry

LOGGER = logging.getLogger(__name__)


class Connection:
    """One live client transport.

    Outbound events are queued so the engine never waits on a slow socket; the
    transport layer drains `next_event()` in order. Once closed, `next_event()`
    returns None after the already queued events, telling the transport to
    close its socket.
    """

    def __init__(self, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or uuid.uuid4().hex
        self.closed = False
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def send(self, event: str, data: dict[str, Any] | None = None) -> None:
        if self.closed:
            return
        self._outbox.put_nowait({"event": event, "data": data or {}})

    async def next_event(self) -> dict[str, Any] | None:
        return await self._outbox.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._outbox.put_nowait(None)


@dataclass(slots=True)
class PresenceRecord:
    identity: str
    connection: Connection
    availability: Availability


class PresenceRegistry:
    """Connection <-> identity bindings plus availability.

    Not thread-safe and not lock-protected on its own: `CallEngine` serializes
    every call into it.
    """

    def __init__(self) -> None:
        # Dict order doubles as registration order for snapshots.
        self._records: dict[str, PresenceRecord] = {}
        self._identity_by_connection: dict[str, str] = {}

    def register(self, connection: Connection, identity: str) -> Connection | None:
        """Bind `connection` to `identity`; returns the connection it replaced, if any."""

        replaced: Connection | None = None
        record = self._records.get(identity)
        if record is not None:
            if record.connection is not connection:
                replaced = record.connection
                self._identity_by_connection.pop(replaced.connection_id, None)
                record.connection = connection
        else:
            self._records[identity] = PresenceRecord(
                identity=identity,
                connection=connection,
                availability=Availability.FREE,
            )
        self._identity_by_connection[connection.connection_id] = identity
        return replaced

    def unregister(self, connection: Connection) -> str | None:
        """Drop the binding owned by `connection`; returns the identity it carried."""

        identity = self._identity_by_connection.pop(connection.connection_id, None)
        if identity is None:
            return None
        record = self._records.get(identity)
        if record is not None and record.connection is connection:
            del self._records[identity]
        return identity

    def identity_for(self, connection: Connection) -> str | None:
        return self._identity_by_connection.get(connection.connection_id)

    def is_online(self, identity: str) -> bool:
        return identity in self._records

    def availability(self, identity: str) -> Availability | None:
        record = self._records.get(identity)
        return record.availability if record else None

    def is_free(self, identity: str) -> bool:
        return self.availability(identity) is Availability.FREE

    def set_availability(self, identity: str, state: Availability) -> None:
        record = self._records.get(identity)
        if record is None:
            # Already disconnected; the caller raced a disconnect.
            LOGGER.debug("Ignoring availability %s for offline %s", state.value, identity)
            return
        record.availability = state

    def free_identities(self) -> list[str]:
        return [r.identity for r in self._records.values() if r.availability is Availability.FREE]

    def identities(self) -> list[str]:
        return list(self._records)

    def send(self, identity: str, event: str, data: dict[str, Any] | None = None) -> bool:
        record = self._records.get(identity)
        if record is None:
            return False
        record.connection.send(event, data)
        return True

    def broadcast(self, event: str, data: dict[str, Any]) -> None:
        for record in self._records.values():
            record.connection.send(event, data)

    async def snapshot(self, directory: Directory) -> list[PresenceEntry]:
        entries: list[PresenceEntry] = []
        for record in list(self._records.values()):
            profile = await directory.get_profile(record.identity)
            if profile is None:
                continue
            entries.append(
                PresenceEntry(
                    identity=record.identity,
                    name=profile.name,
                    avatar=profile.avatar,
                    gender=profile.gender,
                    language=profile.language,
                    location=profile.location,
                    availability=record.availability,
                    free=record.availability is Availability.FREE,
                )
            )
        return entries

from __future__ import annotations

import logging
from typing import Any

from calls.presence import PresenceRegistry
from calls.sessions import CallSession

LOGGER = logging.getLogger(__name__)


class SignalingRelay:
    """Forwards opaque negotiation payloads to the other participant.

    Payloads are never inspected or merged. Ordering follows from the engine
    handling one event at a time and each connection draining its outbox in order.
    """

    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence

    def relay(self, session: CallSession | None, sender: str, payload: Any) -> bool:
        if session is None or not session.is_connected or not session.involves(sender):
            LOGGER.debug("Dropping signal from %s for stale session", sender)
            return False

        delivered = self._presence.send(
            session.other(sender),
            "signal",
            {"session_id": session.session_id, "payload": payload},
        )
        if delivered:
            session.signals_relayed += 1
        return delivered

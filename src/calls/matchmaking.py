"""Matchmaking: per-mode FIFO waiting queues and the direct free-user pool.

Selection order is explicit per strategy:
- `take_match` (find_match): first compatible queue entry in insertion order.
- `pick_from_pool` (call_random): uniformly random compatible free user.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from calls.compatibility import is_compatible
from calls.directory import Directory
from calls.errors import InvalidRequest, NoCompatiblePartner
from calls.schemas import CALL_MODES, Profile

LOGGER = logging.getLogger(__name__)


def validate_mode(mode: object) -> str:
    if not isinstance(mode, str) or mode.strip().lower() not in CALL_MODES:
        raise InvalidRequest(f"Unsupported call mode: {mode!r}")
    return mode.strip().lower()


@dataclass(slots=True)
class QueueEntry:
    identity: str
    mode: str
    enqueued_at: float


class MatchmakingQueue:
    """Waiting lists keyed by call mode.

    An identity holds at most one entry across all modes; enqueuing again moves it.
    Callers serialize access (see `CallEngine`).
    """

    def __init__(
        self,
        *,
        language_wildcard: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self._queues: dict[str, list[QueueEntry]] = {mode: [] for mode in CALL_MODES}
        self._language_wildcard = language_wildcard
        self._rng = rng or random.Random()

    def enqueue(self, identity: str, mode: str, *, now: float) -> QueueEntry:
        self.remove(identity)
        entry = QueueEntry(identity=identity, mode=mode, enqueued_at=now)
        self._queues[mode].append(entry)
        LOGGER.info("Queued %s for %s (depth=%d)", identity, mode, len(self._queues[mode]))
        return entry

    def remove(self, identity: str, mode: str | None = None) -> bool:
        """Remove the identity's entry; a no-op when there is none."""

        modes = [mode] if mode else list(self._queues)
        removed = False
        for key in modes:
            queue = self._queues.get(key, [])
            kept = [entry for entry in queue if entry.identity != identity]
            if len(kept) != len(queue):
                self._queues[key] = kept
                removed = True
        return removed

    def mode_of(self, identity: str) -> str | None:
        for mode, queue in self._queues.items():
            if any(entry.identity == identity for entry in queue):
                return mode
        return None

    def entries(self, mode: str) -> list[QueueEntry]:
        return list(self._queues[mode])

    async def take_match(
        self,
        seeker: Profile,
        mode: str,
        *,
        directory: Directory,
        is_free: Callable[[str], bool],
    ) -> str:
        """Remove and return the first compatible, free entry queued under `mode`."""

        for entry in list(self._queues[mode]):
            if entry.identity == seeker.identity or not is_free(entry.identity):
                continue
            candidate = await directory.get_profile(entry.identity)
            if candidate is None:
                continue
            if is_compatible(seeker, candidate, language_wildcard=self._language_wildcard):
                self._queues[mode].remove(entry)
                return entry.identity
        raise NoCompatiblePartner()

    async def pick_from_pool(
        self,
        seeker: Profile,
        candidates: Iterable[str],
        *,
        directory: Directory,
    ) -> str:
        """Pick a random compatible identity among `candidates` (free online users)."""

        eligible: list[str] = []
        for identity in candidates:
            if identity == seeker.identity:
                continue
            candidate = await directory.get_profile(identity)
            if candidate is not None and is_compatible(
                seeker, candidate, language_wildcard=self._language_wildcard
            ):
                eligible.append(identity)
        if not eligible:
            raise NoCompatiblePartner()
        return self._rng.choice(eligible)

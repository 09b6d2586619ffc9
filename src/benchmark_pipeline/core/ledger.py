"""
Dedup ledger.

Authoritative in-memory answer to "has this game already been processed?".
Every canonical id is in exactly one state:

    UNSEEN -> IN_FLIGHT -> ACCEPTED
                        -> PERMANENTLY_FAILED
    IN_FLIGHT -> UNSEEN (release, when a batch is abandoned)

The fetch-exclusion set is ACCEPTED plus PERMANENTLY_FAILED only. In-flight
ids are never excluded from fetching; they are rejected later by claim().
Excluding them starves the pipeline because the provider keeps returning the
same queued games and the batch comes back empty.

Terminal states are persisted by the repositories; the ledger is hydrated
from them on startup before any fetch is issued.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from benchmark_pipeline.ingestion.models import GameId
from benchmark_pipeline.storage.models import LedgerStatus

if TYPE_CHECKING:
    from benchmark_pipeline.storage.repositories import LedgerRepository

logger = logging.getLogger(__name__)


class LedgerTransitionError(Exception):
    """An id was moved between states in a way the lifecycle forbids."""

    def __init__(self, game_id: GameId, current: LedgerStatus, target: LedgerStatus):
        super().__init__(f"{game_id}: cannot move from {current.value} to {target.value}")
        self.game_id = game_id
        self.current = current
        self.target = target


class DedupLedger:
    """
    Shared ledger for all pools.

    Usage:
        ledger = DedupLedger()
        await ledger.hydrate(ledger_repo)

        if await ledger.claim(game.game_id):
            ...
            await ledger.mark_accepted(game.game_id)
    """

    def __init__(self) -> None:
        self._states: dict[GameId, LedgerStatus] = {}
        self._lock = asyncio.Lock()
        self._hydrated = False

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated

    # =========================================================================
    # Reads
    # =========================================================================

    def status_of(self, game_id: GameId) -> LedgerStatus:
        return self._states.get(game_id, LedgerStatus.UNSEEN)

    def is_known(self, game_id: GameId) -> bool:
        """True once the id reached a terminal state."""
        return self.status_of(game_id).is_terminal

    def is_failed(self, game_id: GameId) -> bool:
        return self.status_of(game_id) == LedgerStatus.PERMANENTLY_FAILED

    def is_in_flight(self, game_id: GameId) -> bool:
        return self.status_of(game_id) == LedgerStatus.IN_FLIGHT

    def exclusion_set(self) -> frozenset[GameId]:
        """Ids a fetch should skip: accepted or permanently failed, nothing else."""
        return frozenset(gid for gid, status in self._states.items() if status.is_terminal)

    def counts(self) -> dict[str, int]:
        result = {status.value: 0 for status in LedgerStatus if status != LedgerStatus.UNSEEN}
        for status in self._states.values():
            result[status.value] += 1
        return result

    # =========================================================================
    # Transitions
    # =========================================================================

    async def claim(self, game_id: GameId) -> bool:
        """
        Move an unseen id to IN_FLIGHT.

        Returns False (and changes nothing) if the id is in flight or done,
        which callers treat as a silent duplicate skip.
        """
        async with self._lock:
            if self.status_of(game_id) != LedgerStatus.UNSEEN:
                return False
            self._states[game_id] = LedgerStatus.IN_FLIGHT
            return True

    async def release(self, game_id: GameId) -> None:
        """Give back an in-flight claim. Terminal ids are left untouched."""
        async with self._lock:
            if self._states.get(game_id) == LedgerStatus.IN_FLIGHT:
                del self._states[game_id]

    async def mark_accepted(self, game_id: GameId) -> None:
        await self._finish(game_id, LedgerStatus.ACCEPTED)

    async def mark_failed(self, game_id: GameId) -> None:
        await self._finish(game_id, LedgerStatus.PERMANENTLY_FAILED)

    async def _finish(self, game_id: GameId, target: LedgerStatus) -> None:
        async with self._lock:
            current = self.status_of(game_id)
            if current == target:
                return
            # Only a claimed id can finish
            if current != LedgerStatus.IN_FLIGHT:
                raise LedgerTransitionError(game_id, current, target)
            self._states[game_id] = target

    # =========================================================================
    # Hydration
    # =========================================================================

    async def hydrate(self, repo: "LedgerRepository", page_size: Optional[int] = None) -> int:
        """
        Load every persisted terminal entry.

        Returns the number of entries loaded. Must complete before the first
        fetch so a restart never accepts an id twice.
        """
        loaded = 0
        iterator = repo.iter_all(page_size) if page_size else repo.iter_all()
        async with self._lock:
            async for entry in iterator:
                try:
                    game_id = GameId.parse(entry.game_id)
                except ValueError:
                    logger.warning(f"Skipping unreadable ledger id {entry.game_id!r}")
                    continue
                self._states[game_id] = entry.status
                loaded += 1
            self._hydrated = True

        logger.info(f"Ledger hydrated with {loaded} entries")
        return loaded

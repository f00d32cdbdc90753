"""Closing Line Value (CLV) tracking.

CLV compares the entry price with the sharp consensus just before the
match starts. Positive CLV means the entry beat the closing line, a
measure of selection quality independent of how the bet settled.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import numpy as np

from sharpedge.db.models import ClvOutcome
from sharpedge.ledger.models import ClvEntry, Position
from sharpedge.ledger.repository import PositionRepository

logger = logging.getLogger(__name__)


def compute_clv_pct(entry_price: float, closing_consensus: float) -> float:
    """``(closing - entry) / entry * 100``; positive means the entry beat the close."""
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    return (closing_consensus - entry_price) / entry_price * 100.0


@dataclass(frozen=True)
class ClvStats:
    """Aggregate CLV over entries with a recorded closing line."""

    total_bets: int
    avg_clv: float  # percent
    positive_clv_pct: float  # percent of bets with CLV > 0
    win_rate: float  # percent of settled bets that won


def summarize_clv(entries: list[ClvEntry]) -> ClvStats:
    """
    Aggregate CLV statistics.

    Args:
        entries: CLV entries (those without ``clv_pct`` are ignored)

    Returns:
        ClvStats; all zeros when nothing has closed yet
    """
    closed = [e for e in entries if e.clv_pct is not None]
    if not closed:
        return ClvStats(0, 0.0, 0.0, 0.0)

    clv = np.array([e.clv_pct for e in closed], dtype=np.float64)
    settled = [e for e in closed if e.result != ClvOutcome.PENDING]
    wins = sum(1 for e in settled if e.result == ClvOutcome.WON)

    return ClvStats(
        total_bets=len(closed),
        avg_clv=float(np.mean(clv)),
        positive_clv_pct=float(np.mean(clv > 0) * 100.0),
        win_rate=wins / len(settled) * 100.0 if settled else 0.0,
    )


class ClvTracker:
    """Records entry, closing consensus and result for each position."""

    def __init__(self, repo: PositionRepository, owner_id: str):
        self.repo = repo
        self.owner_id = owner_id

    async def record_entry(self, position: Position) -> None:
        """Start tracking a newly opened position (no-op if already tracked)."""
        if position.position_id is None or position.consensus_prob is None:
            return
        if await self.repo.get_clv_entry(position.position_id):
            return
        await self.repo.insert_clv_entry(
            ClvEntry(
                position_id=position.position_id,
                owner_id=self.owner_id,
                match_id=position.match_id,
                outcome=position.outcome,
                entry_price=position.entry_price,
                entry_consensus=position.consensus_prob,
                commence_time=position.commence_time,
            )
        )

    async def record_closing_line(
        self, position_id: int, closing_consensus: float, entry_price: float | None = None
    ) -> ClvEntry | None:
        """
        Store the closing consensus for a position once its match starts.

        Args:
            position_id: Tracked position
            closing_consensus: Consensus fair probability at the start
            entry_price: Current average entry price, when fills were added
                after the first entry (defaults to the recorded entry price)

        Returns:
            Updated entry, or None if the position is not tracked, already
            has a closing line, or was expired without one
        """
        entry = await self.repo.get_clv_entry(position_id)
        if entry is None or entry.closed_at is not None:
            return None

        if entry_price is not None:
            entry.entry_price = entry_price
        entry.closing_consensus = closing_consensus
        entry.clv_pct = compute_clv_pct(entry.entry_price, closing_consensus)
        entry.closed_at = datetime.now(timezone.utc)
        await self.repo.update_clv_entry(entry)

        logger.debug(
            f"CLV recorded for position {position_id}: {entry.clv_pct:+.1f}% "
            f"(entry {entry.entry_price:.3f}, close {closing_consensus:.3f})"
        )
        return entry

    async def pending_closes(self) -> list[ClvEntry]:
        """Entries still waiting for a closing line."""
        return await self.repo.list_clv_entries(self.owner_id, pending_only=True)

    async def expire(self, position_id: int, at: datetime | None = None) -> None:
        """
        Stop waiting for a closing line that can no longer be captured.

        The entry keeps no ``clv_pct`` and so stays out of the statistics,
        but it is no longer returned by ``pending_closes``.
        """
        entry = await self.repo.get_clv_entry(position_id)
        if entry is None or entry.closed_at is not None:
            return
        entry.closed_at = at or datetime.now(timezone.utc)
        await self.repo.update_clv_entry(entry)
        logger.debug(f"CLV closing line missed for position {position_id}, no longer tracked")

    async def record_result(self, position_id: int, won: bool) -> None:
        entry = await self.repo.get_clv_entry(position_id)
        if entry is None:
            return
        entry.result = ClvOutcome.WON if won else ClvOutcome.LOST
        await self.repo.update_clv_entry(entry)

    async def stats(self) -> ClvStats:
        return summarize_clv(await self.repo.list_clv_entries(self.owner_id))

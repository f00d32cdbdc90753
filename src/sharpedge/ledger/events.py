"""Notification events for money-at-risk transitions.

Rejections never produce an event; they are logged only.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from sharpedge.db.models import PositionStatus
from sharpedge.ledger.models import Position

logger = logging.getLogger(__name__)


class BetEventKind(str, Enum):
    """Kinds of ledger transitions that notify operators."""

    PLACED = "placed"
    SOLD = "sold"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class BetEvent:
    """Position fields at the moment of a transition plus a short rationale."""

    kind: BetEventKind
    owner_id: str
    match_id: str
    sport: str
    home_team: str
    away_team: str
    outcome: str
    token_id: str
    shares: float
    entry_price: float
    cost_basis: float
    status: PositionStatus
    rationale: str
    edge: float | None = None
    consensus_prob: float | None = None
    order_id: str = ""
    exit_price: float | None = None
    profit: float | None = None
    fill_price: float | None = None
    fill_size_usd: float | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def title(self) -> str:
        if not self.away_team:
            return self.home_team
        return f"{self.home_team} vs {self.away_team}"

    @classmethod
    def from_position(
        cls,
        kind: BetEventKind,
        position: Position,
        rationale: str,
        fill_price: float | None = None,
        fill_size_usd: float | None = None,
    ) -> "BetEvent":
        return cls(
            kind=kind,
            owner_id=position.owner_id,
            match_id=position.match_id,
            sport=position.sport,
            home_team=position.home_team,
            away_team=position.away_team,
            outcome=position.outcome,
            token_id=position.token_id,
            shares=position.shares,
            entry_price=position.entry_price,
            cost_basis=position.cost_basis,
            status=position.status,
            rationale=rationale,
            edge=position.edge,
            consensus_prob=position.consensus_prob,
            order_id=position.order_id,
            exit_price=position.exit_price,
            profit=position.profit,
            fill_price=fill_price,
            fill_size_usd=fill_size_usd,
            created_at=position.created_at,
            resolved_at=position.resolved_at,
        )


class NotificationSink(ABC):
    """Fire-and-forget receiver of bet events.

    Implementations log and swallow their own delivery failures; a broken
    sink must never interrupt trading.
    """

    @abstractmethod
    async def notify(self, event: BetEvent) -> None:
        pass


class NullNotificationSink(NotificationSink):
    """Logs events and delivers nothing."""

    async def notify(self, event: BetEvent) -> None:
        logger.debug(f"Bet {event.kind.value}: {event.outcome} ({event.title}) - {event.rationale}")


class RecordingNotificationSink(NotificationSink):
    """Keeps every event in memory (dry runs and tests)."""

    def __init__(self):
        self.events: list[BetEvent] = []

    async def notify(self, event: BetEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: BetEventKind) -> list[BetEvent]:
        return [e for e in self.events if e.kind == kind]

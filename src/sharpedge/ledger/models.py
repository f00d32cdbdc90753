"""Position record and its lifecycle transitions."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from sharpedge.db.models import ClvOutcome, PositionStatus

WIN_PRICE = 1.0
LOSS_PRICE = 0.0


class PositionStateError(Exception):
    """Illegal lifecycle transition (e.g. resolving an already-closed position)."""


@dataclass
class Position:
    """One position per outcome token while open; the unit the ledger owns."""

    owner_id: str
    match_id: str
    sport: str
    home_team: str
    away_team: str
    outcome: str
    token_id: str
    shares: float
    entry_price: float  # size-weighted average entry price
    cost_basis: float  # USD paid
    condition_id: str = ""
    consensus_prob: float | None = None
    edge: float | None = None
    order_id: str = ""
    status: PositionStatus = PositionStatus.OPEN
    exit_price: float | None = None
    profit: float | None = None
    commence_time: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: datetime | None = None
    fill_count: int = 1
    last_fill_at: datetime | None = None
    position_id: int | None = None

    def __post_init__(self):
        if self.last_fill_at is None:
            self.last_fill_at = self.created_at

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def title(self) -> str:
        if not self.away_team:
            return self.home_team  # synced rows carry the exchange title here
        return f"{self.home_team} vs {self.away_team}"

    def accumulated(
        self,
        shares: float,
        price: float,
        size_usd: float,
        order_id: str = "",
        edge: float | None = None,
    ) -> "Position":
        """
        Return a copy with a new fill merged in.

        Args:
            shares: Shares bought in the new fill
            price: Fill price
            size_usd: Dollars spent on the new fill
            order_id: Exchange order id of the new fill
            edge: Edge at entry of the new fill

        Raises:
            PositionStateError: If the position is not open

        Notes:
            - Average price is weighted by dollar size:
              ``(old_price * old_cost + price * size_usd) / (old_cost + size_usd)``
        """
        if not self.is_open:
            raise PositionStateError(f"Cannot add to {self.status.value} position {self.token_id}")

        new_cost = self.cost_basis + size_usd
        if new_cost > 0:
            avg_price = (self.entry_price * self.cost_basis + price * size_usd) / new_cost
        else:
            avg_price = price

        return replace(
            self,
            shares=self.shares + shares,
            entry_price=avg_price,
            cost_basis=new_cost,
            order_id=order_id or self.order_id,
            edge=edge if edge is not None else self.edge,
            fill_count=self.fill_count + 1,
            last_fill_at=datetime.now(timezone.utc),
        )

    def closed(
        self,
        status: PositionStatus,
        exit_price: float,
        at: datetime | None = None,
        correction: bool = False,
    ) -> "Position":
        """
        Return a copy moved to a terminal status.

        Profit is ``shares * exit_price - cost_basis``; a loss exits at 0.

        Args:
            status: SOLD, WON or LOST
            exit_price: Sell price, 1.0 for a win, 0.0 for a loss
            at: Resolution time (defaults to now)
            correction: Allow re-classifying a terminal position (explicit
                reconciliation correction only)

        Raises:
            PositionStateError: If ``status`` is OPEN, or the position is
                already terminal and this is not a correction
        """
        if not status.is_terminal:
            raise PositionStateError("closed() requires a terminal status")
        if not self.is_open and not correction:
            raise PositionStateError(
                f"Position {self.token_id} is already {self.status.value}"
            )

        return replace(
            self,
            status=status,
            exit_price=exit_price,
            profit=self.shares * exit_price - self.cost_basis,
            resolved_at=at or datetime.now(timezone.utc),
        )

    def reopened(self, shares: float, avg_price: float) -> "Position":
        """
        Return a SOLD position corrected back to open.

        Reconciliation correction for a position the exchange still
        holds. WON and LOST are final and cannot be reopened.

        Raises:
            PositionStateError: If the position is not SOLD
        """
        if self.status != PositionStatus.SOLD:
            raise PositionStateError(
                f"Only sold positions can be reopened ({self.token_id} is {self.status.value})"
            )
        return replace(
            self,
            status=PositionStatus.OPEN,
            shares=shares,
            entry_price=avg_price,
            cost_basis=shares * avg_price,
            exit_price=None,
            profit=None,
            resolved_at=None,
        )

    def won(self, at: datetime | None = None) -> "Position":
        return self.closed(PositionStatus.WON, WIN_PRICE, at)

    def lost(self, at: datetime | None = None) -> "Position":
        return self.closed(PositionStatus.LOST, LOSS_PRICE, at)

    def sold(self, price: float, at: datetime | None = None) -> "Position":
        return self.closed(PositionStatus.SOLD, price, at)


@dataclass
class ClvEntry:
    """Closing-line-value record for one position."""

    position_id: int
    owner_id: str
    match_id: str
    outcome: str
    entry_price: float
    entry_consensus: float
    commence_time: datetime | None = None
    closing_consensus: float | None = None
    clv_pct: float | None = None
    result: ClvOutcome = ClvOutcome.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: datetime | None = None

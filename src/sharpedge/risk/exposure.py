"""Layered exposure limits applied to a requested order size.

Order of checks: per-outcome share cap (fixed-shares mode only),
per-outcome dollar cap, global percentage-of-balance cap. Each can shrink
or reject the request. The global cap always uses actual cost basis;
correlation-weighted exposure is advisory and never relaxes a hard cap.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sharpedge.config.policy import RiskPolicy
from sharpedge.ledger.models import Position
from sharpedge.risk.sizing import SizeDecision

logger = logging.getLogger(__name__)


@dataclass
class ExposureSnapshot:
    """Current risk usage derived from open positions.

    Built fresh from the ledger before every candidate; never cached
    across cycles.
    """

    total_cost_basis: float = 0.0
    cost_by_token: dict[str, float] = field(default_factory=dict)
    shares_by_token: dict[str, float] = field(default_factory=dict)
    positions: list[Position] = field(default_factory=list)

    @classmethod
    def from_positions(cls, positions: list[Position]) -> "ExposureSnapshot":
        snapshot = cls()
        for position in positions:
            if not position.is_open:
                continue
            snapshot.positions.append(position)
            snapshot.total_cost_basis += position.cost_basis
            token = position.token_id
            snapshot.cost_by_token[token] = snapshot.cost_by_token.get(token, 0.0) + position.cost_basis
            snapshot.shares_by_token[token] = snapshot.shares_by_token.get(token, 0.0) + position.shares
        return snapshot

    def cost_on(self, token_id: str) -> float:
        return self.cost_by_token.get(token_id, 0.0)

    def shares_on(self, token_id: str) -> float:
        return self.shares_by_token.get(token_id, 0.0)

    def correlated_exposure(
        self,
        match_id: str,
        commence_time: datetime | None,
        same_event_factor: float,
        same_day_factor: float,
    ) -> float:
        """
        Correlation-weighted open exposure relative to a new candidate.

        Each open position's cost basis is weighted by ``same_event_factor``
        if it is on the same match, ``same_day_factor`` if its match starts
        on the same calendar day, and 1.0 otherwise. Advisory only.
        """
        candidate_day = commence_time.date() if commence_time else None
        total = 0.0
        for position in self.positions:
            factor = 1.0
            if position.match_id == match_id:
                factor = same_event_factor
            elif candidate_day and position.commence_time:
                if position.commence_time.date() == candidate_day:
                    factor = same_day_factor
            total += position.cost_basis * factor
        return total


def apply_exposure_limits(
    request: SizeDecision,
    snapshot: ExposureSnapshot,
    policy: RiskPolicy,
    balance: float,
    price: float,
    token_id: str,
    live: bool = False,
) -> SizeDecision:
    """
    Shrink or reject a sized request so every hard limit holds.

    Args:
        request: Accepted output of the position sizer
        snapshot: Fresh exposure snapshot
        policy: Risk policy snapshot
        balance: Account balance (USD)
        price: Exchange ask used to convert dollars and shares
        token_id: Outcome token being bought
        live: Whether the match has started (selects in-game caps)

    Returns:
        SizeDecision that respects the per-outcome and global caps, or a
        rejection whose reason names the limit that was hit
    """
    if not request.accepted:
        return request

    size = request.size_usd
    shares = request.shares
    phase = "in-game" if live else "pre-game"

    if policy.fixed_shares_mode:
        share_cap = policy.share_cap(live)
        current_shares = snapshot.shares_on(token_id)
        remaining_shares = share_cap - current_shares
        if remaining_shares <= 0:
            return SizeDecision.reject(
                f"max {phase} shares reached ({current_shares:.0f}/{share_cap:.0f})"
            )
        if shares > remaining_shares:
            shares = remaining_shares
            size = shares * price

    dollar_cap = policy.per_market_cap_usd(live)
    current_cost = snapshot.cost_on(token_id)
    remaining_dollars = dollar_cap - current_cost
    if remaining_dollars <= 0:
        return SizeDecision.reject(
            f"max per market reached (${current_cost:.2f}/${dollar_cap:.2f} {phase})"
        )
    if size > remaining_dollars:
        logger.debug(f"Per-market cap shrinks ${size:.2f} to ${remaining_dollars:.2f} on {token_id}")
        size = remaining_dollars
        shares = size / price

    max_exposure = balance * policy.max_exposure_pct
    if snapshot.total_cost_basis + size > max_exposure:
        available = max(0.0, max_exposure - snapshot.total_cost_basis)
        if available < policy.min_bet_usd:
            return SizeDecision.reject(
                f"exposure limit reached (${snapshot.total_cost_basis:.2f}/${max_exposure:.2f})"
            )
        logger.debug(f"Global exposure cap shrinks ${size:.2f} to ${available:.2f} on {token_id}")
        size = available
        shares = size / price

    if size < policy.min_bet_usd or size <= 0:
        return SizeDecision.reject(
            f"size ${size:.2f} below minimum ${policy.min_bet_usd:.2f} after limits"
        )

    return SizeDecision(True, size, shares)

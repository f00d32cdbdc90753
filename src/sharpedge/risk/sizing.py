"""Position sizing: fractional Kelly on bankroll, or edge-scaled fixed shares."""

import logging
import math
from dataclasses import dataclass

from sharpedge.config.policy import RiskPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SizeDecision:
    """Requested order size, or a rejection with a reason."""

    accepted: bool
    size_usd: float
    shares: float
    reason: str = ""

    @classmethod
    def reject(cls, reason: str) -> "SizeDecision":
        return cls(False, 0.0, 0.0, reason)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (not banker's rounding)."""
    return math.floor(value + 0.5)


def kelly_fraction(edge: float, consensus_prob: float) -> float:
    """Full Kelly bankroll fraction for a binary contract.

    ``edge / (1 - consensus_prob)``; 0.0 for a non-positive edge.

    Example:
        >>> round(kelly_fraction(0.10, 0.55), 4)
        0.2222
    """
    if edge <= 0 or consensus_prob >= 1.0:
        return 0.0
    return edge / (1.0 - consensus_prob)


def recommended_fraction(edge: float, consensus_prob: float, policy: RiskPolicy) -> float:
    """Fractional Kelly, capped at the per-bet bankroll fraction."""
    fractional = kelly_fraction(edge, consensus_prob) * policy.kelly_fraction
    return min(fractional, policy.max_bet_pct)


def size_position(
    edge: float,
    consensus_prob: float,
    price: float,
    min_edge: float,
    balance: float,
    policy: RiskPolicy,
) -> SizeDecision:
    """
    Turn a qualified edge into an order size.

    Args:
        edge: Candidate edge
        consensus_prob: Consensus fair probability
        price: Exchange ask (0-1)
        min_edge: Threshold the candidate cleared (scales fixed-share size)
        balance: Available account balance (USD)
        policy: Risk policy snapshot

    Returns:
        SizeDecision before exposure limits are applied

    Notes:
        - Bankroll mode (shares_per_bet == 0): ``balance * min(kelly * k, max_bet_pct)``
          clamped to [min_bet_usd, max_bet_usd]
        - Fixed-shares mode: ``shares_per_bet`` scaled by
          ``min(edge / min_edge, max_edge_multiplier)`` and rounded to whole
          shares, then capped at max_bet_usd and floored at min_bet_usd
        - Rejects when the balance cannot cover the size
    """
    if price <= 0:
        return SizeDecision.reject(f"invalid price {price}")

    if policy.fixed_shares_mode:
        shares = float(policy.shares_per_bet)
        if policy.edge_proportional_sizing:
            base_edge = min_edge if min_edge > 0 else policy.min_edge
            if base_edge > 0:
                multiplier = min(edge / base_edge, policy.max_edge_multiplier)
            else:
                multiplier = policy.max_edge_multiplier
            shares = float(round_half_up(policy.shares_per_bet * multiplier))
            logger.debug(
                f"Edge-proportional sizing: {policy.shares_per_bet} x {multiplier:.2f} = {shares:.0f} shares"
            )
        size = shares * price

        if size > policy.max_bet_usd:
            size = policy.max_bet_usd
            shares = size / price
        if size < policy.min_bet_usd:
            size = policy.min_bet_usd
            shares = size / price
    else:
        size = balance * recommended_fraction(edge, consensus_prob, policy)
        size = min(max(size, policy.min_bet_usd), policy.max_bet_usd)
        shares = size / price

    if size <= 0:
        return SizeDecision.reject("size is zero")
    if size > balance:
        return SizeDecision.reject(
            f"insufficient balance (${size:.2f} needed, ${balance:.2f} available)"
        )

    return SizeDecision(True, size, shares)

"""Edge calculation and confidence-adaptive minimum edge.

The minimum edge a candidate must clear depends on how much the books
agree: more surviving books and lower variance lower the bar, but never
below the 4+ book tier and never above the 2-book tier.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sharpedge.config.policy import RiskPolicy
from sharpedge.odds.consensus import ConsensusResult

logger = logging.getLogger(__name__)


@dataclass
class ValueBetCandidate:
    """One exchange outcome evaluated against sharp consensus in one cycle."""

    match_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime
    outcome: str  # exchange outcome name
    team: str  # sportsbook team name the outcome maps to
    token_id: str
    condition_id: str
    exchange_price: float
    consensus: ConsensusResult
    edge: float
    min_edge: float
    recommended_fraction: float = 0.0  # fractional-Kelly bankroll share

    @property
    def consensus_prob(self) -> float:
        return self.consensus.fair_prob


@dataclass(frozen=True)
class EdgeDecision:
    """Outcome of the edge check for a single price."""

    qualified: bool
    edge: float
    min_edge: float
    reason: str = ""


def compute_edge(consensus_prob: float, exchange_price: float) -> float:
    """Fractional advantage of consensus over the exchange price.

    ``(consensus_prob - exchange_price) / exchange_price``; 0.10 means the
    contract is priced 10% below fair value.
    """
    return (consensus_prob - exchange_price) / exchange_price


def dynamic_min_edge(book_count: int, variance: float, policy: RiskPolicy) -> float:
    """
    Minimum edge for a consensus of ``book_count`` books with ``variance``.

    Args:
        book_count: Books surviving consensus filtering
        variance: Population variance of their fair probabilities
        policy: Risk policy snapshot

    Returns:
        Threshold edge; ``policy.min_edge`` when adaptive mode is off

    Notes:
        - Tier: 4+ books, exactly 3, otherwise the 2-book tier
        - Above the variance ceiling the tier is scaled by
          ``1 + (variance - ceiling) / ceiling`` and clamped to the 2-book tier
    """
    if not policy.dynamic_edge_enabled:
        return policy.min_edge

    if book_count >= 4:
        base = policy.min_edge_4_books
    elif book_count == 3:
        base = policy.min_edge_3_books
    else:
        base = policy.min_edge_2_books

    ceiling = policy.max_variance_for_low_edge
    if variance > ceiling:
        multiplier = 1 + (variance - ceiling) / ceiling
        base = min(base * multiplier, policy.min_edge_2_books)

    return base


def price_tier_min_edge(price: float, policy: RiskPolicy) -> float:
    """Minimum edge required by the price band of ``price``.

    Returns 0.0 when price tiers are disabled or the price is outside
    15-85 cents, so the band never lowers the book-based threshold.
    """
    if not policy.price_edge_enabled:
        return 0.0
    if 0.15 <= price < 0.25:
        return policy.edge_price_15_to_25
    if 0.25 <= price < 0.35:
        return policy.edge_price_25_to_35
    if 0.35 <= price < 0.65:
        return policy.edge_price_35_to_65
    if 0.65 <= price <= 0.85:
        return policy.edge_price_65_to_85
    return 0.0


def effective_min_edge(price: float, book_count: int, variance: float, policy: RiskPolicy) -> float:
    """Higher of the book-confidence threshold and the price-band threshold."""
    return max(
        dynamic_min_edge(book_count, variance, policy),
        price_tier_min_edge(price, policy),
    )


def evaluate_edge(consensus: ConsensusResult, exchange_price: float, policy: RiskPolicy) -> EdgeDecision:
    """
    Decide whether an exchange price qualifies against consensus.

    Args:
        consensus: Sharp-book consensus for the outcome
        exchange_price: Live ask on the exchange (0-1)
        policy: Risk policy snapshot

    Returns:
        EdgeDecision with the edge, the threshold used, and a reason when
        the candidate does not qualify
    """
    edge = compute_edge(consensus.fair_prob, exchange_price)
    threshold = effective_min_edge(exchange_price, consensus.book_count, consensus.variance, policy)

    if exchange_price < policy.min_price:
        reason = f"price {exchange_price:.2f} below floor {policy.min_price:.2f}"
        return EdgeDecision(False, edge, threshold, reason)
    if threshold > policy.min_edge_2_books:
        logger.debug(f"Price tier raised minimum edge to {threshold:.1%} at {exchange_price:.2f}")
    if edge < threshold:
        return EdgeDecision(False, edge, threshold, f"edge {edge:.1%} below minimum {threshold:.1%}")
    return EdgeDecision(True, edge, threshold)

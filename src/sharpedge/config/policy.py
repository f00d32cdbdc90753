"""Risk policy: the typed, versioned set of trading knobs.

A policy is an immutable snapshot. The engine re-reads it from a
``PolicySource`` at the start of every poll cycle so operators can tune
thresholds without restarting the process.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import asyncpg
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from sharpedge.db.models import Table

logger = logging.getLogger(__name__)

POLICY_VERSION = 1


class RiskPolicy(BaseModel):
    """Numeric knobs for valuation, sizing and exposure limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int = Field(default=POLICY_VERSION, ge=1, description="Policy schema version")
    auto_trade: bool = Field(default=True, description="Place orders for qualified candidates")

    # Consensus
    books_required: int = Field(default=2, ge=1, le=10, description="Minimum surviving sources")

    # Edge thresholds
    min_edge: float = Field(default=0.035, ge=0.0, le=1.0, description="Static minimum edge")
    dynamic_edge_enabled: bool = Field(default=False, description="Confidence-adaptive threshold")
    min_edge_4_books: float = Field(default=0.025, ge=0.0, le=1.0)
    min_edge_3_books: float = Field(default=0.035, ge=0.0, le=1.0)
    min_edge_2_books: float = Field(default=0.05, ge=0.0, le=1.0)
    max_variance_for_low_edge: float = Field(
        default=0.02,
        gt=0.0,
        le=1.0,
        description="Variance ceiling above which the tier threshold is scaled up",
    )
    price_edge_enabled: bool = Field(default=False, description="Per-price-band minimum edge")
    edge_price_15_to_25: float = Field(default=0.08, ge=0.0, le=1.0)
    edge_price_25_to_35: float = Field(default=0.05, ge=0.0, le=1.0)
    edge_price_35_to_65: float = Field(default=0.03, ge=0.0, le=1.0)
    edge_price_65_to_85: float = Field(default=0.04, ge=0.0, le=1.0)
    min_price: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Never buy below this exchange price (extreme underdogs)",
    )
    pre_game_buffer_minutes: int = Field(
        default=30,
        ge=0,
        le=240,
        description="Skip matches starting within this window (live matches allowed)",
    )

    # Sizing
    kelly_fraction: float = Field(default=0.25, gt=0.0, le=1.0, description="Fractional Kelly")
    max_bet_pct: float = Field(default=0.03, gt=0.0, le=1.0, description="Max bankroll per bet")
    min_bet_usd: float = Field(default=0.5, ge=0.0)
    max_bet_usd: float = Field(default=5.0, gt=0.0)
    shares_per_bet: int = Field(
        default=25,
        ge=0,
        description="Fixed shares per bet; 0 selects bankroll-fraction sizing",
    )
    edge_proportional_sizing: bool = Field(default=True)
    max_edge_multiplier: float = Field(default=3.0, ge=1.0, le=10.0)

    # Exposure limits
    max_exposure_pct: float = Field(default=0.5, gt=0.0, le=1.0)
    max_per_market_usd: float = Field(default=25.0, gt=0.0, description="Per-outcome dollar cap")
    max_shares_per_market: float = Field(default=100.0, gt=0.0, description="Per-outcome share cap")
    max_per_market_in_game_usd: float | None = Field(default=None, gt=0.0)
    max_shares_in_game: float | None = Field(default=None, gt=0.0)
    max_bets_per_event: int = Field(default=15, ge=1, description="Fills per match per 24h")

    # Correlation (advisory)
    correlation_enabled: bool = Field(default=True)
    same_event_correlation: float = Field(default=0.8, ge=0.0, le=1.0)
    same_day_correlation: float = Field(default=0.3, ge=0.0, le=1.0)

    # Exits
    edge_reversal_enabled: bool = Field(default=False)
    edge_reversal_threshold: float = Field(default=-0.02, ge=-1.0, le=1.0)
    take_profit_enabled: bool = Field(default=False)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "RiskPolicy":
        """Ensure tier thresholds are ordered and bet bounds are consistent."""
        if not (self.min_edge_4_books <= self.min_edge_3_books <= self.min_edge_2_books):
            raise ValueError(
                "edge tiers must satisfy min_edge_4_books <= min_edge_3_books <= min_edge_2_books"
            )
        if self.max_bet_usd < self.min_bet_usd:
            raise ValueError("max_bet_usd must be >= min_bet_usd")
        return self

    @property
    def fixed_shares_mode(self) -> bool:
        return self.shares_per_bet > 0

    def per_market_cap_usd(self, live: bool) -> float:
        """Per-outcome dollar cap for pre-game or in-game matches."""
        if live and self.max_per_market_in_game_usd is not None:
            return self.max_per_market_in_game_usd
        return self.max_per_market_usd

    def share_cap(self, live: bool) -> float:
        """Per-outcome share cap for pre-game or in-game matches."""
        if live and self.max_shares_in_game is not None:
            return self.max_shares_in_game
        return self.max_shares_per_market


def apply_overrides(policy: RiskPolicy, overrides: dict[str, Any]) -> RiskPolicy:
    """Return a new validated policy with ``overrides`` applied on top of ``policy``.

    Args:
        policy: Base policy (usually the defaults)
        overrides: Field name to value mapping

    Returns:
        New RiskPolicy instance

    Raises:
        pydantic.ValidationError: If a key is unknown or a value is out of bounds
    """
    merged = policy.model_dump()
    merged.update(overrides)
    return RiskPolicy.model_validate(merged)


class PolicySource(ABC):
    """Abstract provider of the current policy snapshot for an owner."""

    @abstractmethod
    async def get_policy(self, owner_id: str) -> RiskPolicy:
        """
        Load the policy currently in force for an owner.

        Args:
            owner_id: Policy owner identifier

        Returns:
            RiskPolicy snapshot for one poll cycle
        """
        pass


class StaticPolicySource(PolicySource):
    """Serves a fixed policy. Useful for tests and dry runs."""

    def __init__(self, policy: RiskPolicy | None = None):
        self.policy = policy or RiskPolicy()

    async def get_policy(self, owner_id: str) -> RiskPolicy:
        return self.policy


class PostgresPolicySource(PolicySource):
    """Reads per-owner JSONB overrides and merges them with the defaults.

    An invalid stored override is logged and the defaults are used, so a
    bad edit cannot stop the engine.
    """

    def __init__(self, pool: asyncpg.Pool, defaults: RiskPolicy | None = None):
        self.pool = pool
        self.defaults = defaults or RiskPolicy()

    async def get_policy(self, owner_id: str) -> RiskPolicy:
        async with self.pool.acquire() as conn:
            raw = await conn.fetchval(
                f"SELECT overrides FROM {Table.RISK_POLICIES} WHERE owner_id = $1",
                owner_id,
            )

        if raw is None:
            return self.defaults

        overrides = dict(raw)
        try:
            return apply_overrides(self.defaults, overrides)
        except ValidationError as e:
            logger.error(f"Invalid policy overrides for owner {owner_id}, using defaults: {e}")
            return self.defaults

    async def save_overrides(self, owner_id: str, overrides: dict[str, Any]) -> RiskPolicy:
        """Validate and persist overrides for an owner.

        Raises:
            pydantic.ValidationError: If the overrides do not produce a valid policy
        """
        policy = apply_overrides(self.defaults, overrides)
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.RISK_POLICIES} (owner_id, version, overrides, updated_at)
                VALUES ($1, $2, $3, now())
                ON CONFLICT (owner_id)
                DO UPDATE SET
                    version = EXCLUDED.version,
                    overrides = EXCLUDED.overrides,
                    updated_at = now()
                """,
                owner_id,
                policy.version,
                overrides,
            )
        logger.info(f"Saved policy overrides for owner {owner_id}: {sorted(overrides)}")
        return policy

"""Exit decision rules: edge reversal and live-game take-profit.

Pure functions. Whether the engine acts on them is controlled by
``RiskPolicy.edge_reversal_enabled`` and ``RiskPolicy.take_profit_enabled``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from sharpedge.ingestion.base import LiveScore
from sharpedge.odds.edge import compute_edge

# Regulation length in minutes by sport key
GAME_DURATIONS = {
    "basketball_nba": 48,
    "basketball_ncaab": 40,
    "americanfootball_nfl": 60,
    "americanfootball_ncaaf": 60,
    "icehockey_nhl": 60,
    "baseball_mlb": 180,
}
DEFAULT_GAME_DURATION = 60

ALWAYS_TAKE_PROFIT = 2.0
BLIND_TAKE_PROFIT = 1.0


@dataclass(frozen=True)
class SportThresholds:
    """Game-state thresholds for one sport family."""

    crunch_time_minutes: float
    close_game_points: int
    blowout_points: int
    break_minutes: float


SPORT_THRESHOLDS = {
    "basketball": SportThresholds(5, 10, 20, 20),
    "football": SportThresholds(8, 8, 17, 30),
    "hockey": SportThresholds(5, 2, 4, 20),
}
DEFAULT_THRESHOLDS = SportThresholds(10, 5, 15, 15)


def thresholds_for(sport_key: str) -> SportThresholds:
    for family, thresholds in SPORT_THRESHOLDS.items():
        if family in sport_key:
            return thresholds
    return DEFAULT_THRESHOLDS


def game_duration(sport_key: str) -> int:
    return GAME_DURATIONS.get(sport_key, DEFAULT_GAME_DURATION)


@dataclass(frozen=True)
class LiveGameState:
    """What is known about a match in progress."""

    has_scores: bool
    home_score: int | None
    away_score: int | None
    minutes_remaining: float | None
    is_live: bool
    is_completed: bool

    @property
    def score_diff(self) -> int | None:
        if self.home_score is None or self.away_score is None:
            return None
        return abs(self.home_score - self.away_score)


@dataclass(frozen=True)
class ExitDecision:
    should_exit: bool
    reason: str = ""


HOLD = ExitDecision(False)


def should_exit_on_edge_reversal(
    current_consensus: float, entry_price: float, threshold: float
) -> tuple[bool, float]:
    """
    Check whether the edge at entry has turned against the position.

    Args:
        current_consensus: Latest consensus fair probability for the outcome
        entry_price: Position's average entry price
        threshold: Exit when current edge is at or below this (e.g. -0.02)

    Returns:
        Tuple of (should_exit, current_edge)
    """
    current_edge = compute_edge(current_consensus, entry_price)
    return current_edge <= threshold, current_edge


def estimate_minutes_remaining(
    commence_time: datetime, sport_key: str, now: datetime | None = None
) -> float | None:
    """
    Estimate regulation minutes left from wall-clock time since the start.

    Elapsed time minus the sport's break allowance is subtracted from the
    regulation length, floored at 0.

    Returns:
        Minutes remaining, or None if the match has not started
    """
    now = now or datetime.now(timezone.utc)
    elapsed = (now - commence_time).total_seconds() / 60.0
    if elapsed < 0:
        return None

    played = max(0.0, elapsed - thresholds_for(sport_key).break_minutes)
    return max(0.0, game_duration(sport_key) - played)


def live_game_state(
    score: LiveScore | None,
    sport_key: str,
    commence_time: datetime,
    now: datetime | None = None,
) -> LiveGameState:
    """Combine the latest score (if any) with the time-based estimate."""
    minutes_remaining = estimate_minutes_remaining(commence_time, sport_key, now)

    if score is None or score.home_score is None or score.away_score is None:
        return LiveGameState(
            has_scores=False,
            home_score=None,
            away_score=None,
            minutes_remaining=minutes_remaining,
            is_live=minutes_remaining is not None and minutes_remaining > 0,
            is_completed=bool(score and score.completed),
        )

    return LiveGameState(
        has_scores=True,
        home_score=score.home_score,
        away_score=score.away_score,
        minutes_remaining=minutes_remaining,
        is_live=not score.completed and minutes_remaining is not None,
        is_completed=score.completed,
    )


def should_take_profit(profit_pct: float, state: LiveGameState, sport_key: str) -> ExitDecision:
    """
    Decide whether to lock in a gain given the game state.

    Args:
        profit_pct: ``(bid - entry) / entry``; 1.0 means +100%
        state: Live game state for the position's match
        sport_key: Odds feed sport key (selects thresholds)

    Returns:
        ExitDecision with a human-readable reason when exiting

    Notes:
        - +200% always exits; a completed game exits
        - Without live state, exit only at +100%
        - Blowouts hold unless +150% in crunch time
        - Close games exit at +50% in crunch time (+30% in the last 2
          minutes), at +100% in the late game, and at +100% past halfway
    """
    if profit_pct >= ALWAYS_TAKE_PROFIT:
        return ExitDecision(True, "200%+ profit")

    if state.is_completed:
        return ExitDecision(True, "game completed")

    if not state.is_live or state.minutes_remaining is None:
        if profit_pct >= BLIND_TAKE_PROFIT:
            return ExitDecision(True, "100%+ profit (no game state)")
        return HOLD

    t = thresholds_for(sport_key)
    minutes = state.minutes_remaining
    diff = state.score_diff
    pct = f"{profit_pct * 100:.0f}%"

    in_crunch_time = minutes <= t.crunch_time_minutes
    in_late_game = minutes <= t.crunch_time_minutes * 2
    close_game = diff is not None and diff <= t.close_game_points
    blowout = diff is not None and diff >= t.blowout_points

    if blowout:
        if profit_pct >= 1.5 and in_crunch_time:
            return ExitDecision(True, f"{pct} profit, blowout (+{diff}), locking in")
        return HOLD

    if close_game and in_crunch_time:
        if profit_pct >= 0.5:
            return ExitDecision(
                True, f"{pct} profit, crunch time ({minutes:.0f}min), close game ({diff})"
            )
        if minutes <= 2 and profit_pct >= 0.3:
            return ExitDecision(True, f"{pct} profit, last {minutes:.0f}min, close game ({diff})")

    if close_game and in_late_game and profit_pct >= 1.0:
        return ExitDecision(True, f"{pct} profit, late game ({minutes:.0f}min), close ({diff})")

    if close_game and profit_pct >= 1.0 and minutes <= game_duration(sport_key) / 2:
        return ExitDecision(True, f"{pct} profit, second half, close game ({diff})")

    return HOLD

"""Match exchange listings to sportsbook matches by team name and date."""

import logging
import re
import unicodedata
from datetime import timedelta

from sharpedge.ingestion.base import ExchangeMarket, OddsMatch

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")

MIN_PREFIX_CHARS = 4


def normalize_for_matching(name: str) -> str:
    """Lowercase, strip accents, and keep only ``a-z0-9``."""
    decomposed = unicodedata.normalize("NFD", name.lower())
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return _NON_ALNUM.sub("", stripped)


def outcome_matches_team(outcome: str, team: str) -> bool:
    """
    Fuzzy test whether an exchange outcome name refers to a sportsbook team.

    True when either normalized name contains the other, or the first four
    characters of the outcome appear in the team name ("76ers Phila" matches
    "Philadelphia 76ers").
    """
    a = normalize_for_matching(outcome)
    b = normalize_for_matching(team)
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    return len(a) >= MIN_PREFIX_CHARS and a[:MIN_PREFIX_CHARS] in b


def map_outcome_to_team(outcome: str, match: OddsMatch) -> str | None:
    """
    Map an exchange outcome to the sportsbook's team name.

    Returns:
        ``match.home_team`` or ``match.away_team``, or None when the outcome
        matches neither or both (ambiguous)
    """
    home = outcome_matches_team(outcome, match.home_team)
    away = outcome_matches_team(outcome, match.away_team)
    if home and not away:
        return match.home_team
    if away and not home:
        return match.away_team
    return None


def find_matching_match(market: ExchangeMarket, matches: list[OddsMatch]) -> OddsMatch | None:
    """
    Find the sportsbook match an exchange market is listed for.

    Both exchange outcomes must map to different teams of the same match,
    and the match must start within one day of the listing date (the
    listing date is local, the feed's commence time is UTC).
    """
    if len(market.outcomes) != 2:
        return None

    for match in matches:
        if market.game_date is not None:
            drift = abs(match.commence_time.date() - market.game_date)
            if drift > timedelta(days=1):
                continue

        teams = {map_outcome_to_team(o.name, match) for o in market.outcomes}
        if teams == {match.home_team, match.away_team}:
            return match

    return None

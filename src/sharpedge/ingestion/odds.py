"""Sportsbook odds feed client (The Odds API v4)."""

import logging
from datetime import datetime, timezone
from typing import Any

from sharpedge.config.settings import AppConfig
from sharpedge.ingestion.base import (
    BookMarket,
    LiveScore,
    OddsMatch,
    OddsProvider,
    Quote,
    TwoWayMarket,
)
from sharpedge.ingestion.http import get_json
from sharpedge.ingestion.retry import with_retry

logger = logging.getLogger(__name__)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_h2h(bookmaker: dict[str, Any], observed_at: datetime) -> TwoWayMarket | None:
    """Extract a clean two-outcome head-to-head market, or None."""
    h2h = next((m for m in bookmaker.get("markets", []) if m.get("key") == "h2h"), None)
    if h2h is None:
        return None

    outcomes = h2h.get("outcomes") or []
    if len(outcomes) != 2:
        # Missing side or a draw leg: not usable for a two-way devig
        return None

    quotes = []
    for outcome in outcomes:
        name = outcome.get("name")
        price = outcome.get("price")
        if not name or price is None:
            return None
        try:
            american = int(round(float(price)))
        except (TypeError, ValueError):
            return None
        if american == 0:
            return None
        quotes.append(Quote(bookmaker["key"], name, american, observed_at))

    return TwoWayMarket(quotes[0], quotes[1])


def parse_odds_match(event: dict[str, Any]) -> OddsMatch | None:
    """
    Convert one odds-feed event into an OddsMatch.

    Args:
        event: Raw event JSON with ``bookmakers`` and h2h markets

    Returns:
        OddsMatch, or None if the event is malformed (missing teams or time)

    Notes:
        - Uses the bookmaker-level ``last_update`` as the quote timestamp
        - Books without a clean two-outcome h2h market are kept with
          ``market=None`` so consensus can report them as missing
    """
    commence_time = parse_timestamp(event.get("commence_time"))
    home_team = event.get("home_team")
    away_team = event.get("away_team")
    if not event.get("id") or not home_team or not away_team or commence_time is None:
        return None

    books = []
    for bookmaker in event.get("bookmakers", []):
        key = bookmaker.get("key")
        last_update = parse_timestamp(bookmaker.get("last_update"))
        if not key or last_update is None:
            continue
        books.append(BookMarket(key, last_update, _parse_h2h(bookmaker, last_update)))

    return OddsMatch(
        id=event["id"],
        sport_key=event.get("sport_key", ""),
        sport_title=event.get("sport_title", ""),
        commence_time=commence_time,
        home_team=home_team,
        away_team=away_team,
        books=books,
    )


def parse_live_score(event: dict[str, Any]) -> LiveScore | None:
    """Convert one scores-feed event into a LiveScore, or None if malformed."""
    commence_time = parse_timestamp(event.get("commence_time"))
    home_team = event.get("home_team")
    away_team = event.get("away_team")
    if not event.get("id") or not home_team or not away_team or commence_time is None:
        return None

    by_team: dict[str, int] = {}
    for entry in event.get("scores") or []:
        try:
            by_team[entry["name"]] = int(entry["score"])
        except (KeyError, TypeError, ValueError):
            continue

    return LiveScore(
        match_id=event["id"],
        sport_key=event.get("sport_key", ""),
        commence_time=commence_time,
        home_team=home_team,
        away_team=away_team,
        home_score=by_team.get(home_team),
        away_score=by_team.get(away_team),
        completed=bool(event.get("completed")),
    )


class TheOddsApiProvider(OddsProvider):
    """Odds provider backed by The Odds API (American odds, h2h markets)."""

    def __init__(self, config: AppConfig):
        self.config = config

    async def _get(self, path: str, params: dict[str, Any], label: str) -> Any:
        config = self.config
        url = f"{config.odds_api_base_url}{path}"
        query = {"apiKey": config.odds_api_key.get_secret_value(), **params}
        return await with_retry(
            lambda: get_json(url, query, config.http_timeout_seconds),
            label,
            max_retries=config.max_retry_attempts,
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
        )

    async def fetch_odds(self, sport: str) -> list[OddsMatch]:
        if not self.config.odds_api_key.get_secret_value():
            logger.warning("odds_api_key not configured, returning empty odds")
            return []

        params = {
            "regions": "us,eu",
            "markets": "h2h",
            "oddsFormat": "american",
            "dateFormat": "iso",
            "bookmakers": ",".join(self.config.sharp_books),
        }
        payload = await self._get(f"/sports/{sport}/odds", params, f"odds-{sport}")

        matches = []
        for event in payload or []:
            match = parse_odds_match(event)
            if match is None:
                logger.debug(f"Skipping malformed odds event: {event.get('id')}")
                continue
            matches.append(match)

        logger.info(f"Fetched odds for {len(matches)} {sport} matches")
        return matches

    async def fetch_scores(self, sport: str) -> list[LiveScore]:
        if not self.config.odds_api_key.get_secret_value():
            return []

        payload = await self._get(f"/sports/{sport}/scores", {"daysFrom": 1}, f"scores-{sport}")
        scores = [s for s in (parse_live_score(e) for e in payload or []) if s is not None]
        logger.debug(f"Fetched {len(scores)} {sport} scores")
        return scores

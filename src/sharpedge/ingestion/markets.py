"""Exchange listing (Gamma) and live price (CLOB) client."""

import json
import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sharpedge.config.settings import AppConfig
from sharpedge.errors import CollaboratorError
from sharpedge.ingestion.base import ExchangeMarket, ExchangeOutcome, MarketProvider
from sharpedge.ingestion.http import get_json
from sharpedge.ingestion.retry import with_retry

logger = logging.getLogger(__name__)

# Exchange series per odds-feed sport key
SERIES_IDS = {
    "basketball_nba": 10345,
    "basketball_ncaab": 10470,
    "americanfootball_nfl": 10187,
    "americanfootball_ncaaf": 10210,
    "baseball_mlb": 3,
    "icehockey_nhl": 10346,
}

_SLUG_DATE = re.compile(r"(\d{4}-\d{2}-\d{2})$")
_SPREAD_PATTERN = re.compile(r"[+-]\d")


def _json_list(value: Any) -> list:
    """Decode a JSON-encoded list field; the listing API sends them as strings."""
    if isinstance(value, list):
        return value
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    return decoded if isinstance(decoded, list) else []


def is_moneyline_market(market: dict[str, Any], event_title: str) -> bool:
    """
    Decide whether a listed market is the match-winner (moneyline) market.

    ``groupItemTitle`` is authoritative when present; otherwise the question
    text is screened for totals and spreads.
    """
    group_title = market.get("groupItemTitle")
    if group_title:
        return group_title.lower() in ("winner", "moneyline")

    question = (market.get("question") or "").lower()
    if any(word in question for word in ("over", "under", "o/u", "total")):
        return False
    if "spread" in question or "handicap" in question or _SPREAD_PATTERN.search(question):
        return False
    return (
        " vs " in question
        or " vs. " in question
        or "win" in question
        or question == event_title.lower()
    )


def parse_slug_date(slug: str) -> date | None:
    match = _SLUG_DATE.search(slug or "")
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None


def parse_exchange_event(event: dict[str, Any], sport: str) -> ExchangeMarket | None:
    """
    Convert one listing event into an ExchangeMarket for its moneyline.

    Returns:
        ExchangeMarket, or None when the event has no usable two-outcome
        moneyline (no market, wrong outcome count, or over/under legs)
    """
    title = event.get("title") or ""
    moneyline = next(
        (m for m in event.get("markets") or [] if is_moneyline_market(m, title)),
        None,
    )
    if moneyline is None:
        return None

    names = _json_list(moneyline.get("outcomes"))
    token_ids = _json_list(moneyline.get("clobTokenIds"))
    prices = _json_list(moneyline.get("outcomePrices"))
    if len(names) != 2 or len(token_ids) != 2:
        return None
    if any(n.lower() in ("over", "under") or n.lower().startswith(("over ", "under ")) for n in names):
        return None

    outcomes = []
    for i, (name, token_id) in enumerate(zip(names, token_ids)):
        try:
            price = float(prices[i])
        except (IndexError, TypeError, ValueError):
            price = 0.0
        outcomes.append(ExchangeOutcome(name=name, token_id=str(token_id), price=price))

    slug = event.get("slug") or ""
    return ExchangeMarket(
        event_id=str(event.get("id", "")),
        slug=slug,
        title=title,
        sport=sport,
        condition_id=moneyline.get("conditionId") or "",
        game_date=parse_slug_date(slug),
        outcomes=outcomes,
    )


class PolymarketProvider(MarketProvider):
    """Listing and price feed for the Polymarket exchange."""

    def __init__(self, config: AppConfig):
        self.config = config

    async def fetch_markets(self, sport: str) -> list[ExchangeMarket]:
        series_id = SERIES_IDS.get(sport)
        if series_id is None:
            logger.debug(f"No exchange series for sport: {sport}")
            return []

        config = self.config
        today = datetime.now(timezone.utc).date()
        params = {
            "series_id": series_id,
            "active": "true",
            "closed": "false",
            "end_date_min": today.isoformat(),
            "end_date_max": (today + timedelta(days=2)).isoformat(),
            "limit": 50,
        }
        url = f"{config.gamma_api_base_url}/events"
        payload = await with_retry(
            lambda: get_json(url, params, config.http_timeout_seconds),
            f"markets-{sport}",
            max_retries=config.max_retry_attempts,
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
        )

        markets = [m for m in (parse_exchange_event(e, sport) for e in payload or []) if m]
        logger.info(f"Exchange: {len(markets)} moneyline markets for {sport}")
        return markets

    async def _fetch_price(self, token_id: str, side: str) -> float | None:
        config = self.config
        url = f"{config.clob_api_base_url}/price"
        params = {"token_id": token_id, "side": side}
        try:
            payload = await with_retry(
                lambda: get_json(url, params, config.http_timeout_seconds),
                f"price-{token_id[:10]}",
                max_retries=config.price_retry_attempts,
                base_delay_ms=config.retry_base_delay_ms,
                max_delay_ms=config.retry_max_delay_ms,
            )
        except CollaboratorError as e:
            logger.debug(f"Price lookup failed for {token_id}: {e}")
            return None

        try:
            price = float(payload["price"])
        except (KeyError, TypeError, ValueError):
            return None
        return price if 0.0 < price < 1.0 else None

    async def fetch_ask_price(self, token_id: str) -> float | None:
        # side=sell quotes the resting asks, i.e. the price we pay to buy
        return await self._fetch_price(token_id, "sell")

    async def fetch_bid_price(self, token_id: str) -> float | None:
        return await self._fetch_price(token_id, "buy")

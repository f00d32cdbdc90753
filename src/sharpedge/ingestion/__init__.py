"""Feed data types, feed clients, retry, and event matching."""

from sharpedge.ingestion.base import (
    BookMarket,
    ExchangeMarket,
    ExchangeOutcome,
    LiveScore,
    MarketProvider,
    OddsMatch,
    OddsProvider,
    Quote,
    TwoWayMarket,
)

__all__ = [
    "BookMarket",
    "ExchangeMarket",
    "ExchangeOutcome",
    "LiveScore",
    "MarketProvider",
    "OddsMatch",
    "OddsProvider",
    "Quote",
    "TwoWayMarket",
]

"""Abstract base classes and canonical row schemas for feed data."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime


# Canonical row schemas
@dataclass(frozen=True)
class Quote:
    """One sportsbook's price for one outcome."""

    source: str  # bookmaker key, e.g. 'pinnacle'
    outcome: str  # outcome (team) name as the book reports it
    price: int  # American odds, e.g. -118, +100
    observed_at: datetime  # UTC


@dataclass(frozen=True)
class TwoWayMarket:
    """A two-outcome market with both sides quoted by the same source."""

    outcome_a: Quote
    outcome_b: Quote

    def quote_for(self, outcome: str) -> Quote | None:
        """Quote whose outcome name equals ``outcome`` exactly, or None."""
        if self.outcome_a.outcome == outcome:
            return self.outcome_a
        if self.outcome_b.outcome == outcome:
            return self.outcome_b
        return None

    def other_side(self, quote: Quote) -> Quote:
        return self.outcome_b if quote is self.outcome_a else self.outcome_a


@dataclass(frozen=True)
class BookMarket:
    """One bookmaker's head-to-head market for a match.

    ``market`` is None when the book did not carry a clean two-outcome
    market (missing, single-sided, or with a draw leg).
    """

    key: str
    last_update: datetime  # UTC
    market: TwoWayMarket | None


@dataclass
class OddsMatch:
    """A match as reported by the sportsbook odds feed."""

    id: str
    sport_key: str
    sport_title: str
    commence_time: datetime  # UTC
    home_team: str
    away_team: str
    books: list[BookMarket] = field(default_factory=list)

    def book(self, key: str) -> BookMarket | None:
        for book in self.books:
            if book.key == key:
                return book
        return None


@dataclass(frozen=True)
class ExchangeOutcome:
    """One tradable outcome token on the exchange."""

    name: str
    token_id: str
    price: float  # last listed price (0-1); live ask is fetched separately


@dataclass
class ExchangeMarket:
    """A two-outcome moneyline market listed on the exchange."""

    event_id: str
    slug: str
    title: str
    sport: str
    condition_id: str
    game_date: date | None  # local calendar date from the listing slug
    outcomes: list[ExchangeOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class LiveScore:
    """Live or final score for a match from the odds feed."""

    match_id: str
    sport_key: str
    commence_time: datetime  # UTC
    home_team: str
    away_team: str
    home_score: int | None
    away_score: int | None
    completed: bool


# Abstract base classes
class OddsProvider(ABC):
    """Abstract sportsbook odds feed interface."""

    @abstractmethod
    async def fetch_odds(self, sport: str) -> list[OddsMatch]:
        """
        Fetch head-to-head odds for all upcoming and live matches of a sport.

        Args:
            sport: Odds feed sport key (e.g. 'basketball_nba')

        Returns:
            List of OddsMatch objects with American-odds quotes

        Raises:
            CollaboratorError: On transport or HTTP failure
        """
        pass

    @abstractmethod
    async def fetch_scores(self, sport: str) -> list[LiveScore]:
        """
        Fetch live and recently completed scores for a sport.

        Args:
            sport: Odds feed sport key

        Returns:
            List of LiveScore objects

        Raises:
            CollaboratorError: On transport or HTTP failure
        """
        pass


class MarketProvider(ABC):
    """Abstract exchange listing and price feed interface."""

    @abstractmethod
    async def fetch_markets(self, sport: str) -> list[ExchangeMarket]:
        """
        Fetch active two-outcome moneyline markets for a sport.

        Args:
            sport: Odds feed sport key

        Returns:
            List of ExchangeMarket objects

        Raises:
            CollaboratorError: On transport or HTTP failure
        """
        pass

    @abstractmethod
    async def fetch_ask_price(self, token_id: str) -> float | None:
        """
        Fetch the live ask (price to buy) for an outcome token.

        Returns:
            Ask price in (0, 1), or None if unavailable
        """
        pass

    @abstractmethod
    async def fetch_bid_price(self, token_id: str) -> float | None:
        """
        Fetch the live bid (price to sell) for an outcome token.

        Returns:
            Bid price in (0, 1), or None if unavailable
        """
        pass

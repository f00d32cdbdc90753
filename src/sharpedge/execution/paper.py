"""In-memory paper trading client for dry runs and tests."""

import logging
import uuid
from dataclasses import dataclass

from sharpedge.db.models import OrderSide
from sharpedge.errors import ErrorKind
from sharpedge.execution.base import (
    ExecutionClient,
    ExternalPosition,
    MarketResolution,
    OrderResult,
)
from sharpedge.ingestion.base import MarketProvider

logger = logging.getLogger(__name__)


@dataclass
class _PaperHolding:
    shares: float
    avg_price: float
    cur_price: float
    condition_id: str = ""
    title: str = ""
    outcome: str = ""


class PaperExecutionClient(ExecutionClient):
    """Fills every order instantly at the last price set for the token.

    Prices come from ``set_price`` or, when a market provider is given,
    from the live ask (BUY) or bid (SELL). Selling a token with no holding
    fails with the same insufficient-balance error a real broker returns
    for a position closed out of band.
    """

    def __init__(
        self,
        starting_balance: float = 1000.0,
        market_provider: MarketProvider | None = None,
    ):
        self.balance = starting_balance
        self.market_provider = market_provider
        self.prices: dict[str, float] = {}
        self.holdings: dict[str, _PaperHolding] = {}
        self.resolutions: dict[str, MarketResolution] = {}
        self.orders: list[tuple[str, OrderSide, float]] = []

    async def _quote(self, token_id: str, side: OrderSide) -> float | None:
        if self.market_provider is not None:
            if side == OrderSide.BUY:
                price = await self.market_provider.fetch_ask_price(token_id)
            else:
                price = await self.market_provider.fetch_bid_price(token_id)
            if price is not None:
                self.set_price(token_id, price)
        return self.prices.get(token_id)

    def set_price(self, token_id: str, price: float) -> None:
        self.prices[token_id] = price
        if token_id in self.holdings:
            self.holdings[token_id].cur_price = price

    def set_market_info(self, token_id: str, condition_id: str, title: str, outcome: str) -> None:
        """Attach listing metadata reported back by ``get_all_positions``."""
        holding = self.holdings.get(token_id)
        if holding:
            holding.condition_id = condition_id
            holding.title = title
            holding.outcome = outcome

    def resolve_market(
        self, condition_id: str, winning_outcome: str, winning_token_id: str | None = None
    ) -> None:
        self.resolutions[condition_id] = MarketResolution(True, winning_outcome, winning_token_id)

    async def get_balance(self) -> float:
        return self.balance

    async def place_order(self, token_id: str, side: OrderSide, amount: float) -> OrderResult:
        price = await self._quote(token_id, side)
        if price is None or price <= 0:
            return OrderResult.failed(f"no price for token {token_id}", ErrorKind.CLIENT_ERROR)
        if amount <= 0:
            return OrderResult.failed(f"invalid amount {amount}", ErrorKind.CLIENT_ERROR)

        self.orders.append((token_id, side, amount))
        order_id = f"paper-{uuid.uuid4().hex[:12]}"

        if side == OrderSide.BUY:
            if amount > self.balance:
                return OrderResult.failed(
                    "not enough balance / allowance", ErrorKind.INSUFFICIENT_BALANCE
                )
            shares = amount / price
            holding = self.holdings.get(token_id)
            if holding:
                cost = holding.shares * holding.avg_price + amount
                holding.shares += shares
                holding.avg_price = cost / holding.shares
                holding.cur_price = price
            else:
                self.holdings[token_id] = _PaperHolding(shares, price, price)
            self.balance -= amount
            logger.info(f"[paper] BUY {shares:.2f} @ {price:.3f} (${amount:.2f}) {token_id}")
            return OrderResult(True, order_id=order_id, filled_shares=shares, filled_price=price)

        holding = self.holdings.get(token_id)
        if holding is None or holding.shares + 1e-9 < amount:
            return OrderResult.failed(
                "not enough balance / allowance", ErrorKind.INSUFFICIENT_BALANCE
            )
        holding.shares -= amount
        if holding.shares <= 1e-9:
            del self.holdings[token_id]
        self.balance += amount * price
        logger.info(f"[paper] SELL {amount:.2f} @ {price:.3f} {token_id}")
        return OrderResult(True, order_id=order_id, filled_shares=amount, filled_price=price)

    async def get_all_positions(self) -> list[ExternalPosition]:
        return [
            ExternalPosition(
                token_id=token_id,
                shares=holding.shares,
                avg_price=holding.avg_price,
                cur_price=holding.cur_price,
                condition_id=holding.condition_id,
                title=holding.title,
                outcome=holding.outcome,
            )
            for token_id, holding in self.holdings.items()
        ]

    async def get_market_resolution(self, condition_id: str) -> MarketResolution:
        return self.resolutions.get(condition_id, MarketResolution(False))

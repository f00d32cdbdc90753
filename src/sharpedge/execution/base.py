"""Execution client interface and its result records."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from sharpedge.db.models import OrderSide
from sharpedge.errors import ErrorKind


@dataclass(frozen=True)
class OrderResult:
    """Outcome of an order submission.

    ``success=False`` means the order was never accepted; callers must
    not mutate the ledger on a failed result.
    """

    success: bool
    order_id: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    filled_shares: float | None = None
    filled_price: float | None = None

    @classmethod
    def failed(cls, error: str, kind: ErrorKind = ErrorKind.UNKNOWN) -> "OrderResult":
        return cls(False, error=error, error_kind=kind)


@dataclass(frozen=True)
class ExternalPosition:
    """A position as the exchange account reports it."""

    token_id: str
    shares: float
    avg_price: float
    cur_price: float | None
    condition_id: str = ""
    title: str = ""
    outcome: str = ""


@dataclass(frozen=True)
class MarketResolution:
    """Resolution state of an exchange market."""

    resolved: bool
    winning_outcome: str | None = None
    winning_token_id: str | None = None


class ExecutionClient(ABC):
    """Abstract order placement and account interface."""

    @abstractmethod
    async def get_balance(self) -> float:
        """
        Fetch available collateral balance.

        Returns:
            Balance in USD

        Raises:
            CollaboratorError: On transport or HTTP failure
        """
        pass

    @abstractmethod
    async def place_order(self, token_id: str, side: OrderSide, amount: float) -> OrderResult:
        """
        Submit a market order.

        Args:
            token_id: Outcome token
            side: BUY or SELL
            amount: USD to spend for a BUY, shares to sell for a SELL

        Returns:
            OrderResult; broker rejections are reported here, not raised
        """
        pass

    @abstractmethod
    async def get_all_positions(self) -> list[ExternalPosition]:
        """
        Fetch every position the account holds.

        Raises:
            CollaboratorError: On transport or HTTP failure
        """
        pass

    @abstractmethod
    async def get_market_resolution(self, condition_id: str) -> MarketResolution:
        """
        Query whether a market has resolved and which outcome won.

        Raises:
            CollaboratorError: On transport or HTTP failure
        """
        pass

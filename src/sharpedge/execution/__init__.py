"""Order execution clients."""

from sharpedge.execution.base import (
    ExecutionClient,
    ExternalPosition,
    MarketResolution,
    OrderResult,
)
from sharpedge.execution.paper import PaperExecutionClient

__all__ = [
    "ExecutionClient",
    "ExternalPosition",
    "MarketResolution",
    "OrderResult",
    "PaperExecutionClient",
]

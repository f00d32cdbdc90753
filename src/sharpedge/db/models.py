"""Lightweight table-name constants and column-name enums."""

from enum import Enum


# Table name constants
class Table:
    """Database table names."""

    POSITIONS = "positions"
    RISK_POLICIES = "risk_policies"
    CLV_TRACKING = "clv_tracking"
    SCHEMA_MIGRATIONS = "schema_migrations"


# Column name enums
class PositionStatus(str, Enum):
    """Position lifecycle status."""

    OPEN = "open"
    SOLD = "sold"
    WON = "won"
    LOST = "lost"

    @property
    def is_terminal(self) -> bool:
        return self is not PositionStatus.OPEN


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "BUY"
    SELL = "SELL"


class ClvOutcome(str, Enum):
    """Result recorded against a closing-line-value entry."""

    PENDING = "pending"
    WON = "won"
    LOST = "lost"

"""Bet Ledger: position lifecycle, persistence and reconciliation."""

from sharpedge.ledger.models import ClvEntry, Position, PositionStateError
from sharpedge.ledger.repository import InMemoryPositionRepository, PositionRepository

__all__ = [
    "ClvEntry",
    "Position",
    "PositionStateError",
    "InMemoryPositionRepository",
    "PositionRepository",
]

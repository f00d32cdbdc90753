"""Position store interface and an in-memory implementation."""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime

from sharpedge.db.models import PositionStatus
from sharpedge.ledger.models import ClvEntry, Position


class PositionRepository(ABC):
    """Persistence contract for the bet ledger.

    Every mutation touches a single row. Implementations backed by a
    transactional store wrap each call in its own transaction.
    """

    @abstractmethod
    async def get_open_position(self, owner_id: str, token_id: str) -> Position | None:
        """The open position on a token, if any (at most one exists)."""
        pass

    @abstractmethod
    async def get_latest_position(self, owner_id: str, token_id: str) -> Position | None:
        """The most recently created position on a token, in any status."""
        pass

    @abstractmethod
    async def list_open_positions(self, owner_id: str) -> list[Position]:
        pass

    @abstractmethod
    async def insert_position(self, position: Position) -> Position:
        """
        Persist a new position.

        Returns:
            The stored position with ``position_id`` assigned
        """
        pass

    @abstractmethod
    async def update_position(self, position: Position) -> None:
        """Overwrite the mutable fields of an existing position by id."""
        pass

    @abstractmethod
    async def count_fills_for_match(self, owner_id: str, match_id: str, since: datetime) -> int:
        """Fills on a match's positions whose latest fill is at or after ``since``."""
        pass

    @abstractmethod
    async def realized_pnl_since(self, owner_id: str, since: datetime) -> float:
        """Sum of profit over positions resolved at or after ``since``."""
        pass

    @abstractmethod
    async def insert_clv_entry(self, entry: ClvEntry) -> None:
        pass

    @abstractmethod
    async def update_clv_entry(self, entry: ClvEntry) -> None:
        pass

    @abstractmethod
    async def list_clv_entries(self, owner_id: str, pending_only: bool = False) -> list[ClvEntry]:
        """CLV entries for an owner; ``pending_only`` keeps those still awaiting a closing line."""
        pass

    @abstractmethod
    async def get_clv_entry(self, position_id: int) -> ClvEntry | None:
        pass


class InMemoryPositionRepository(PositionRepository):
    """Dict-backed repository for tests and paper trading.

    Stored objects are copied on the way in and out so callers cannot
    mutate ledger state without going through ``update_position``.
    """

    def __init__(self):
        self._positions: dict[int, Position] = {}
        self._clv: dict[int, ClvEntry] = {}
        self._next_id = 1

    def _owned(self, owner_id: str) -> list[Position]:
        return [p for p in self._positions.values() if p.owner_id == owner_id]

    async def get_open_position(self, owner_id: str, token_id: str) -> Position | None:
        for position in self._owned(owner_id):
            if position.token_id == token_id and position.status == PositionStatus.OPEN:
                return replace(position)
        return None

    async def get_latest_position(self, owner_id: str, token_id: str) -> Position | None:
        matches = [p for p in self._owned(owner_id) if p.token_id == token_id]
        if not matches:
            return None
        return replace(max(matches, key=lambda p: (p.created_at, p.position_id)))

    async def list_open_positions(self, owner_id: str) -> list[Position]:
        return [replace(p) for p in self._owned(owner_id) if p.is_open]

    async def insert_position(self, position: Position) -> Position:
        if position.is_open and await self.get_open_position(position.owner_id, position.token_id):
            raise ValueError(f"Open position already exists for token {position.token_id}")
        stored = replace(position, position_id=self._next_id)
        self._next_id += 1
        self._positions[stored.position_id] = stored
        return replace(stored)

    async def update_position(self, position: Position) -> None:
        if position.position_id not in self._positions:
            raise KeyError(f"Unknown position {position.position_id}")
        self._positions[position.position_id] = replace(position)

    async def count_fills_for_match(self, owner_id: str, match_id: str, since: datetime) -> int:
        return sum(
            p.fill_count
            for p in self._owned(owner_id)
            if p.match_id == match_id and p.last_fill_at >= since
        )

    async def realized_pnl_since(self, owner_id: str, since: datetime) -> float:
        return sum(
            p.profit or 0.0
            for p in self._owned(owner_id)
            if p.status.is_terminal and p.resolved_at is not None and p.resolved_at >= since
        )

    async def insert_clv_entry(self, entry: ClvEntry) -> None:
        self._clv[entry.position_id] = replace(entry)

    async def update_clv_entry(self, entry: ClvEntry) -> None:
        self._clv[entry.position_id] = replace(entry)

    async def list_clv_entries(self, owner_id: str, pending_only: bool = False) -> list[ClvEntry]:
        entries = [e for e in self._clv.values() if e.owner_id == owner_id]
        if pending_only:
            entries = [e for e in entries if e.closed_at is None]
        return [replace(e) for e in entries]

    async def get_clv_entry(self, position_id: int) -> ClvEntry | None:
        entry = self._clv.get(position_id)
        return replace(entry) if entry else None

"""asyncpg-backed position repository."""

import logging
from datetime import datetime

import asyncpg

from sharpedge.db.models import ClvOutcome, PositionStatus, Table
from sharpedge.ledger.models import ClvEntry, Position
from sharpedge.ledger.repository import PositionRepository

logger = logging.getLogger(__name__)

_POSITION_COLUMNS = """
    position_id, owner_id, match_id, sport, home_team, away_team, outcome,
    token_id, condition_id, shares, entry_price, consensus_prob, edge,
    cost_basis, order_id, status, exit_price, profit, commence_time,
    created_at, resolved_at, fill_count, last_fill_at
"""

_CLV_COLUMNS = """
    position_id, owner_id, match_id, outcome, entry_price, entry_consensus,
    commence_time, closing_consensus, clv_pct, result, created_at, closed_at
"""


def _row_to_position(row: asyncpg.Record) -> Position:
    return Position(
        position_id=row["position_id"],
        owner_id=row["owner_id"],
        match_id=row["match_id"],
        sport=row["sport"],
        home_team=row["home_team"],
        away_team=row["away_team"],
        outcome=row["outcome"],
        token_id=row["token_id"],
        condition_id=row["condition_id"],
        shares=float(row["shares"]),
        entry_price=float(row["entry_price"]),
        consensus_prob=row["consensus_prob"],
        edge=row["edge"],
        cost_basis=float(row["cost_basis"]),
        order_id=row["order_id"],
        status=PositionStatus(row["status"]),
        exit_price=row["exit_price"],
        profit=row["profit"],
        commence_time=row["commence_time"],
        created_at=row["created_at"],
        resolved_at=row["resolved_at"],
        fill_count=row["fill_count"],
        last_fill_at=row["last_fill_at"],
    )


def _row_to_clv(row: asyncpg.Record) -> ClvEntry:
    return ClvEntry(
        position_id=row["position_id"],
        owner_id=row["owner_id"],
        match_id=row["match_id"],
        outcome=row["outcome"],
        entry_price=float(row["entry_price"]),
        entry_consensus=float(row["entry_consensus"]),
        commence_time=row["commence_time"],
        closing_consensus=row["closing_consensus"],
        clv_pct=row["clv_pct"],
        result=ClvOutcome(row["result"]),
        created_at=row["created_at"],
        closed_at=row["closed_at"],
    )


class PostgresPositionRepository(PositionRepository):
    """Position store on the ``positions`` and ``clv_tracking`` tables.

    Each write runs in its own transaction; no call spans more than one
    position row.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_open_position(self, owner_id: str, token_id: str) -> Position | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_POSITION_COLUMNS}
                FROM {Table.POSITIONS}
                WHERE owner_id = $1 AND token_id = $2 AND status = $3
                """,
                owner_id,
                token_id,
                PositionStatus.OPEN.value,
            )
        return _row_to_position(row) if row else None

    async def get_latest_position(self, owner_id: str, token_id: str) -> Position | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_POSITION_COLUMNS}
                FROM {Table.POSITIONS}
                WHERE owner_id = $1 AND token_id = $2
                ORDER BY created_at DESC, position_id DESC
                LIMIT 1
                """,
                owner_id,
                token_id,
            )
        return _row_to_position(row) if row else None

    async def list_open_positions(self, owner_id: str) -> list[Position]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_POSITION_COLUMNS}
                FROM {Table.POSITIONS}
                WHERE owner_id = $1 AND status = $2
                ORDER BY created_at
                """,
                owner_id,
                PositionStatus.OPEN.value,
            )
        return [_row_to_position(row) for row in rows]

    async def insert_position(self, position: Position) -> Position:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                position_id = await conn.fetchval(
                    f"""
                    INSERT INTO {Table.POSITIONS}
                    (owner_id, match_id, sport, home_team, away_team, outcome,
                     token_id, condition_id, shares, entry_price, consensus_prob,
                     edge, cost_basis, order_id, status, exit_price, profit,
                     commence_time, created_at, resolved_at, fill_count, last_fill_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
                            $12, $13, $14, $15, $16, $17, $18, $19, $20, $21, $22)
                    RETURNING position_id
                    """,
                    position.owner_id,
                    position.match_id,
                    position.sport,
                    position.home_team,
                    position.away_team,
                    position.outcome,
                    position.token_id,
                    position.condition_id,
                    position.shares,
                    position.entry_price,
                    position.consensus_prob,
                    position.edge,
                    position.cost_basis,
                    position.order_id,
                    position.status.value,
                    position.exit_price,
                    position.profit,
                    position.commence_time,
                    position.created_at,
                    position.resolved_at,
                    position.fill_count,
                    position.last_fill_at,
                )
        position.position_id = position_id
        return position

    async def update_position(self, position: Position) -> None:
        if position.position_id is None:
            raise ValueError("update_position requires a stored position")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"""
                    UPDATE {Table.POSITIONS}
                    SET shares = $2,
                        entry_price = $3,
                        cost_basis = $4,
                        edge = $5,
                        order_id = $6,
                        status = $7,
                        exit_price = $8,
                        profit = $9,
                        resolved_at = $10,
                        fill_count = $11,
                        last_fill_at = $12
                    WHERE position_id = $1
                    """,
                    position.position_id,
                    position.shares,
                    position.entry_price,
                    position.cost_basis,
                    position.edge,
                    position.order_id,
                    position.status.value,
                    position.exit_price,
                    position.profit,
                    position.resolved_at,
                    position.fill_count,
                    position.last_fill_at,
                )

    async def count_fills_for_match(self, owner_id: str, match_id: str, since: datetime) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                f"""
                SELECT COALESCE(SUM(fill_count), 0)
                FROM {Table.POSITIONS}
                WHERE owner_id = $1 AND match_id = $2 AND last_fill_at >= $3
                """,
                owner_id,
                match_id,
                since,
            )
        return int(count)

    async def realized_pnl_since(self, owner_id: str, since: datetime) -> float:
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                f"""
                SELECT COALESCE(SUM(profit), 0)
                FROM {Table.POSITIONS}
                WHERE owner_id = $1 AND status <> $2 AND resolved_at >= $3
                """,
                owner_id,
                PositionStatus.OPEN.value,
                since,
            )
        return float(total)

    async def insert_clv_entry(self, entry: ClvEntry) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.CLV_TRACKING}
                (position_id, owner_id, match_id, outcome, entry_price,
                 entry_consensus, commence_time, result, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (position_id) DO NOTHING
                """,
                entry.position_id,
                entry.owner_id,
                entry.match_id,
                entry.outcome,
                entry.entry_price,
                entry.entry_consensus,
                entry.commence_time,
                entry.result.value,
                entry.created_at,
            )

    async def update_clv_entry(self, entry: ClvEntry) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {Table.CLV_TRACKING}
                SET entry_price = $2,
                    closing_consensus = $3,
                    clv_pct = $4,
                    result = $5,
                    closed_at = $6
                WHERE position_id = $1
                """,
                entry.position_id,
                entry.entry_price,
                entry.closing_consensus,
                entry.clv_pct,
                entry.result.value,
                entry.closed_at,
            )

    async def list_clv_entries(self, owner_id: str, pending_only: bool = False) -> list[ClvEntry]:
        pending_clause = "AND closed_at IS NULL" if pending_only else ""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_CLV_COLUMNS}
                FROM {Table.CLV_TRACKING}
                WHERE owner_id = $1 {pending_clause}
                ORDER BY created_at
                """,
                owner_id,
            )
        return [_row_to_clv(row) for row in rows]

    async def get_clv_entry(self, position_id: int) -> ClvEntry | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CLV_COLUMNS} FROM {Table.CLV_TRACKING} WHERE position_id = $1",
                position_id,
            )
        return _row_to_clv(row) if row else None

"""Tests for the asyncpg position repository against a mocked pool."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from sharpedge.db.models import ClvOutcome, PositionStatus, Table
from sharpedge.ledger.models import ClvEntry, Position
from sharpedge.ledger.postgres import PostgresPositionRepository

CREATED = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


def _mock_pool(conn) -> MagicMock:
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    return pool


@pytest.fixture
def conn():
    conn = AsyncMock()
    conn.transaction = MagicMock()
    return conn


@pytest.fixture
def repo(conn):
    return PostgresPositionRepository(_mock_pool(conn))


def _position(**overrides) -> Position:
    fields = dict(
        owner_id="owner-1",
        match_id="evt-1",
        sport="basketball_nba",
        home_team="Boston Celtics",
        away_team="Los Angeles Lakers",
        outcome="Celtics",
        token_id="tok-home",
        shares=10.0,
        entry_price=0.50,
        cost_basis=5.0,
        created_at=CREATED,
    )
    fields.update(overrides)
    return Position(**fields)


def _position_row(**overrides) -> dict:
    row = {
        "position_id": 7,
        "owner_id": "owner-1",
        "match_id": "evt-1",
        "sport": "basketball_nba",
        "home_team": "Boston Celtics",
        "away_team": "Los Angeles Lakers",
        "outcome": "Celtics",
        "token_id": "tok-home",
        "condition_id": "cond-1",
        "shares": 10,
        "entry_price": 0.5,
        "consensus_prob": 0.58,
        "edge": 0.16,
        "cost_basis": 5,
        "order_id": "paper-1",
        "status": "open",
        "exit_price": None,
        "profit": None,
        "commence_time": CREATED,
        "created_at": CREATED,
        "resolved_at": None,
        "fill_count": 1,
        "last_fill_at": CREATED,
    }
    row.update(overrides)
    return row


class TestPositions:
    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, repo, conn):
        conn.fetchval.return_value = 42

        stored = await repo.insert_position(_position())

        assert stored.position_id == 42
        sql = conn.fetchval.await_args.args[0]
        assert f"INSERT INTO {Table.POSITIONS}" in sql
        assert "open" in conn.fetchval.await_args.args
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_update_requires_id(self, repo, conn):
        with pytest.raises(ValueError):
            await repo.update_position(_position())
        conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_writes_status(self, repo, conn):
        position = _position(position_id=7).sold(0.70, at=CREATED)

        await repo.update_position(position)

        args = conn.execute.await_args.args
        assert args[1] == 7
        assert args[7] == "sold"
        assert args[8] == pytest.approx(0.70)

    @pytest.mark.asyncio
    async def test_open_position_row_mapping(self, repo, conn):
        conn.fetchrow.return_value = _position_row()

        position = await repo.get_open_position("owner-1", "tok-home")

        assert position.position_id == 7
        assert position.status == PositionStatus.OPEN
        assert isinstance(position.shares, float)
        assert position.cost_basis == pytest.approx(5.0)
        assert conn.fetchrow.await_args.args[1:] == ("owner-1", "tok-home", "open")

    @pytest.mark.asyncio
    async def test_missing_position_is_none(self, repo, conn):
        conn.fetchrow.return_value = None
        assert await repo.get_latest_position("owner-1", "tok-home") is None

    @pytest.mark.asyncio
    async def test_list_open(self, repo, conn):
        conn.fetch.return_value = [_position_row(), _position_row(position_id=8, token_id="tok-away")]

        positions = await repo.list_open_positions("owner-1")

        assert [p.token_id for p in positions] == ["tok-home", "tok-away"]

    @pytest.mark.asyncio
    async def test_aggregates_are_typed(self, repo, conn):
        conn.fetchval.return_value = 3
        assert await repo.count_fills_for_match("owner-1", "evt-1", CREATED) == 3

        conn.fetchval.return_value = 12
        pnl = await repo.realized_pnl_since("owner-1", CREATED)
        assert isinstance(pnl, float)
        assert pnl == pytest.approx(12.0)


class TestClvEntries:
    @pytest.mark.asyncio
    async def test_insert_is_idempotent(self, repo, conn):
        entry = ClvEntry(7, "owner-1", "evt-1", "Celtics", 0.50, 0.58, created_at=CREATED)

        await repo.insert_clv_entry(entry)

        sql = conn.execute.await_args.args[0]
        assert "ON CONFLICT (position_id) DO NOTHING" in sql
        assert "pending" in conn.execute.await_args.args

    @pytest.mark.asyncio
    async def test_pending_filter(self, repo, conn):
        conn.fetch.return_value = []

        await repo.list_clv_entries("owner-1", pending_only=True)
        assert "closed_at IS NULL" in conn.fetch.await_args.args[0]

        await repo.list_clv_entries("owner-1")
        assert "closed_at IS NULL" not in conn.fetch.await_args.args[0]

    @pytest.mark.asyncio
    async def test_row_mapping(self, repo, conn):
        conn.fetchrow.return_value = {
            "position_id": 7,
            "owner_id": "owner-1",
            "match_id": "evt-1",
            "outcome": "Celtics",
            "entry_price": 0.5,
            "entry_consensus": 0.58,
            "commence_time": CREATED,
            "closing_consensus": 0.61,
            "clv_pct": 0.22,
            "result": "won",
            "created_at": CREATED,
            "closed_at": CREATED,
        }

        entry = await repo.get_clv_entry(7)

        assert entry.result == ClvOutcome.WON
        assert entry.closing_consensus == pytest.approx(0.61)

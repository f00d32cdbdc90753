"""Tests for the poll-loop orchestrator.

Feeds are AsyncMocks; orders go to the paper client, positions to the
in-memory repository.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from conftest import NOW, make_book, make_exchange_market, make_match
from sharpedge.config.policy import RiskPolicy, StaticPolicySource
from sharpedge.db.models import ClvOutcome, OrderSide, PositionStatus
from sharpedge.errors import CollaboratorError, ErrorKind
from sharpedge.execution.base import OrderResult
from sharpedge.execution.paper import PaperExecutionClient
from sharpedge.ledger.events import BetEventKind
from sharpedge.scheduler.engine import ArbitrageEngine

BOOKS = ("pinnacle", "lowvig", "betonlineag")


def _match(home_odds=-150, away_odds=130, now=NOW, commence_time=None):
    books = [make_book(key, home_odds, away_odds, now=now) for key in BOOKS]
    return make_match(books, commence_time=commence_time)


@pytest.fixture
def asks():
    return {"tok-home": 0.50, "tok-away": 0.45}


@pytest.fixture
def bids():
    return {"tok-home": 0.48, "tok-away": 0.43}


@pytest.fixture
def odds_provider():
    provider = AsyncMock()
    provider.fetch_odds.return_value = [_match()]
    provider.fetch_scores.return_value = []
    return provider


@pytest.fixture
def market_provider(asks, bids):
    provider = AsyncMock()
    provider.fetch_markets.return_value = [make_exchange_market()]
    provider.fetch_ask_price.side_effect = lambda token_id: asks.get(token_id)
    provider.fetch_bid_price.side_effect = lambda token_id: bids.get(token_id)
    return provider


@pytest.fixture
def execution(market_provider):
    return PaperExecutionClient(starting_balance=1000.0, market_provider=market_provider)


def _engine(app_config, policy, odds_provider, market_provider, execution, ledger) -> ArbitrageEngine:
    return ArbitrageEngine(
        config=app_config,
        policy_source=StaticPolicySource(policy),
        odds_provider=odds_provider,
        market_provider=market_provider,
        execution=execution,
        ledger=ledger,
    )


@pytest.fixture
def engine(app_config, policy, odds_provider, market_provider, execution, ledger):
    return _engine(app_config, policy, odds_provider, market_provider, execution, ledger)


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_places_qualified_candidate(self, engine, ledger, sink, execution):
        summary = await engine.run_cycle(now=NOW)

        assert summary.markets_seen == 1
        assert summary.candidates == 1
        assert summary.placed == 1

        [candidate] = engine.candidates
        assert candidate.token_id == "tok-home"
        assert candidate.edge == pytest.approx((0.5798 - 0.50) / 0.50, abs=1e-3)
        assert candidate.consensus.book_count == 3
        assert candidate.recommended_fraction == pytest.approx(0.03)

        [position] = await ledger.open_positions()
        # 25 shares x 3 (edge multiplier cap) = $37.50, capped at max_bet_usd
        assert position.cost_basis == pytest.approx(5.0)
        assert position.shares == pytest.approx(10.0)
        assert execution.balance == pytest.approx(995.0)
        assert len(sink.of_kind(BetEventKind.PLACED)) == 1

    @pytest.mark.asyncio
    async def test_repeat_cycles_accumulate(self, engine, ledger):
        await engine.run_cycle(now=NOW)
        await engine.run_cycle(now=NOW)

        [position] = await ledger.open_positions()
        assert position.fill_count == 2
        assert position.cost_basis == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_max_bets_per_event(self, app_config, odds_provider, market_provider, execution, ledger):
        policy = RiskPolicy(max_bets_per_event=1)
        engine = _engine(app_config, policy, odds_provider, market_provider, execution, ledger)

        await engine.run_cycle(now=NOW)
        summary = await engine.run_cycle(now=NOW)

        assert summary.placed == 0
        assert summary.rejected == 1

    @pytest.mark.asyncio
    async def test_per_market_cap_stops_accumulation(
        self, app_config, odds_provider, market_provider, execution, ledger
    ):
        policy = RiskPolicy(max_per_market_usd=12.0)
        engine = _engine(app_config, policy, odds_provider, market_provider, execution, ledger)

        for _ in range(4):
            await engine.run_cycle(now=NOW)

        [position] = await ledger.open_positions()
        assert position.cost_basis == pytest.approx(12.0)

    @pytest.mark.asyncio
    async def test_auto_trade_off_only_reports(self, app_config, odds_provider, market_provider, execution, ledger):
        engine = _engine(
            app_config, RiskPolicy(auto_trade=False), odds_provider, market_provider, execution, ledger
        )

        summary = await engine.run_cycle(now=NOW)

        assert summary.candidates == 1
        assert summary.placed == 0
        assert await ledger.open_positions() == []

    @pytest.mark.asyncio
    async def test_pre_game_buffer(self, engine, odds_provider):
        odds_provider.fetch_odds.return_value = [_match(commence_time=NOW + timedelta(minutes=10))]

        summary = await engine.run_cycle(now=NOW)

        assert summary.candidates == 0

    @pytest.mark.asyncio
    async def test_live_match_allowed(self, engine, odds_provider):
        odds_provider.fetch_odds.return_value = [_match(commence_time=NOW - timedelta(minutes=20))]

        summary = await engine.run_cycle(now=NOW)

        assert summary.placed == 1

    @pytest.mark.asyncio
    async def test_stale_books_produce_no_candidates(self, engine, odds_provider):
        odds_provider.fetch_odds.return_value = [_match(now=NOW - timedelta(minutes=10))]

        summary = await engine.run_cycle(now=NOW)

        assert summary.candidates == 0

    @pytest.mark.asyncio
    async def test_feed_failure_skips_sport(self, engine, odds_provider, ledger):
        odds_provider.fetch_odds.side_effect = CollaboratorError(ErrorKind.SERVER_ERROR, "503", 503)

        summary = await engine.run_cycle(now=NOW)

        assert summary.sources_failed == 1
        assert summary.candidates == 0
        assert engine.cycle_count == 1
        assert engine.last_poll == NOW

    @pytest.mark.asyncio
    async def test_balance_failure_skips_candidate(self, engine, execution, ledger):
        with patch.object(
            execution, "get_balance", AsyncMock(side_effect=CollaboratorError(ErrorKind.NETWORK_TIMEOUT, "timeout"))
        ):
            summary = await engine.run_cycle(now=NOW)

        assert summary.rejected == 1
        assert await ledger.open_positions() == []

    @pytest.mark.asyncio
    async def test_failed_order_leaves_ledger_untouched(self, engine, execution, ledger, sink):
        failed = OrderResult.failed("market paused", ErrorKind.CLIENT_ERROR)
        with patch.object(execution, "place_order", AsyncMock(return_value=failed)):
            summary = await engine.run_cycle(now=NOW)

        assert summary.placed == 0
        assert await ledger.open_positions() == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_status(self, engine):
        await engine.run_cycle(now=NOW)

        status = await engine.status()

        assert status.cycles == 1
        assert status.last_poll == NOW
        assert status.open_positions == 1
        assert status.exposure == pytest.approx(5.0)
        assert len(status.candidates) == 1

    @pytest.mark.asyncio
    async def test_exposure_counts_fills_from_same_cycle(
        self, app_config, odds_provider, market_provider, execution, ledger, asks
    ):
        asks["tok-home-2"] = 0.50
        market_provider.fetch_markets.return_value = [
            make_exchange_market(),
            make_exchange_market(home_token="tok-home-2", away_token="tok-away-2"),
        ]
        policy = RiskPolicy(max_exposure_pct=0.008)
        engine = _engine(app_config, policy, odds_provider, market_provider, execution, ledger)

        summary = await engine.run_cycle(now=NOW)

        assert summary.placed == 2
        cost = {p.token_id: p.cost_basis for p in await ledger.open_positions()}
        assert cost["tok-home"] == pytest.approx(5.0)
        # Second order sees the first fill: $995 x 0.8% leaves $2.96
        assert cost["tok-home-2"] == pytest.approx(995.0 * 0.008 - 5.0)
        assert sum(cost.values()) <= 995.0 * 0.008 + 1e-9


class TestExits:
    @pytest.mark.asyncio
    async def test_edge_reversal_sells(self, app_config, odds_provider, market_provider, execution, ledger, sink):
        policy = RiskPolicy(edge_reversal_enabled=True)
        engine = _engine(app_config, policy, odds_provider, market_provider, execution, ledger)
        await engine.run_cycle(now=NOW)

        # Books flip: the home side is now the underdog
        odds_provider.fetch_odds.return_value = [_match(home_odds=130, away_odds=-150)]
        summary = await engine.run_cycle(now=NOW)

        assert summary.sold == 1
        [sold] = sink.of_kind(BetEventKind.SOLD)
        assert sold.token_id == "tok-home"
        assert sold.exit_price == pytest.approx(0.48)
        assert sold.rationale.startswith("Edge reversed")

    @pytest.mark.asyncio
    async def test_exits_disabled_by_default(self, engine, odds_provider):
        await engine.run_cycle(now=NOW)
        odds_provider.fetch_odds.return_value = [_match(home_odds=130, away_odds=-150)]

        summary = await engine.run_cycle(now=NOW)

        assert summary.sold == 0

    @pytest.mark.asyncio
    async def test_take_profit(self, app_config, odds_provider, market_provider, execution, ledger, bids):
        policy = RiskPolicy(take_profit_enabled=True)
        engine = _engine(app_config, policy, odds_provider, market_provider, execution, ledger)
        await engine.run_cycle(now=NOW)

        bids["tok-home"] = 0.99  # +98%, below the blind threshold
        assert await engine.check_exits(policy, {}, NOW) == 0

        bids["tok-home"] = 1.0  # +100% with no game state yet
        assert await engine.check_exits(policy, {}, NOW) == 1


class TestClvAndResolution:
    @pytest.mark.asyncio
    async def test_closing_line_then_resolution(self, engine, ledger, repo, execution):
        await engine.run_cycle(now=NOW)
        [position] = await ledger.open_positions()

        started = NOW + timedelta(hours=3, minutes=1)
        live = _match(home_odds=-160, away_odds=140, now=started)
        recorded = await engine.record_closing_lines({live.id: live}, engine.policy, started)

        assert recorded == 1
        entry = await repo.get_clv_entry(position.position_id)
        assert entry.closing_consensus is not None
        assert entry.clv_pct > 0

        execution.resolve_market("cond-1", "Celtics")
        summary = await engine.resolution_sweep()

        assert summary.won == 1
        stored = await repo.get_latest_position("owner-1", "tok-home")
        assert stored.status == PositionStatus.WON
        entry = await repo.get_clv_entry(position.position_id)
        assert entry.result == ClvOutcome.WON

    @pytest.mark.asyncio
    async def test_closing_line_waits_for_start(self, engine, ledger):
        await engine.run_cycle(now=NOW)
        match = _match()

        assert await engine.record_closing_lines({match.id: match}, engine.policy, NOW) == 0

    @pytest.mark.asyncio
    async def test_reconcile_settles_clv_result(self, engine, ledger, repo, execution):
        await engine.run_cycle(now=NOW)
        [position] = await ledger.open_positions()
        started = NOW + timedelta(hours=3, minutes=1)
        live = _match(home_odds=-160, away_odds=140, now=started)
        await engine.record_closing_lines({live.id: live}, engine.policy, started)

        # Redeemed on the exchange without the engine seeing the resolution
        execution.holdings["tok-home"].shares = 0.0
        execution.holdings["tok-home"].cur_price = 0.99
        summary = await engine.reconcile()

        assert summary.closed == 1
        stored = await repo.get_latest_position("owner-1", "tok-home")
        assert stored.status == PositionStatus.WON
        entry = await repo.get_clv_entry(position.position_id)
        assert entry.clv_pct > 0
        assert entry.result == ClvOutcome.WON

    @pytest.mark.asyncio
    async def test_already_closed_exit_settles_clv_result(
        self, app_config, odds_provider, market_provider, execution, ledger, repo, bids
    ):
        policy = RiskPolicy(take_profit_enabled=True)
        engine = _engine(app_config, policy, odds_provider, market_provider, execution, ledger)
        await engine.run_cycle(now=NOW)
        [position] = await ledger.open_positions()

        del execution.holdings["tok-home"]
        bids["tok-home"] = 1.0
        assert await engine.check_exits(policy, {}, NOW) == 0

        stored = await repo.get_latest_position("owner-1", "tok-home")
        assert stored.status == PositionStatus.WON
        entry = await repo.get_clv_entry(position.position_id)
        assert entry.result == ClvOutcome.WON

    @pytest.mark.asyncio
    async def test_resolved_before_close_expires_entry(self, engine, ledger, repo, execution):
        await engine.run_cycle(now=NOW)
        [position] = await ledger.open_positions()
        execution.resolve_market("cond-1", "Celtics")
        await engine.resolution_sweep()

        started = NOW + timedelta(hours=3, minutes=1)
        assert await engine.record_closing_lines({}, engine.policy, started) == 0

        assert await engine.clv.pending_closes() == []
        entry = await repo.get_clv_entry(position.position_id)
        assert entry.closing_consensus is None
        assert entry.closed_at == started
        assert entry.result == ClvOutcome.WON

    @pytest.mark.asyncio
    async def test_missing_match_expires_after_a_day(self, engine):
        await engine.run_cycle(now=NOW)

        await engine.record_closing_lines({}, engine.policy, NOW + timedelta(hours=4))
        assert len(await engine.clv.pending_closes()) == 1

        await engine.record_closing_lines({}, engine.policy, NOW + timedelta(hours=28))
        assert await engine.clv.pending_closes() == []

    @pytest.mark.asyncio
    async def test_reconcile_adds_untracked_paper_holding(self, engine, ledger, execution):
        execution.set_price("tok-knicks", 0.40)
        await execution.place_order("tok-knicks", OrderSide.BUY, 4.0)
        execution.set_market_info("tok-knicks", "cond-9", "Knicks vs. Nets", "Knicks")

        summary = await engine.reconcile()

        assert summary.added == 1
        [position] = await ledger.open_positions()
        assert position.match_id == "cond-9"
        assert position.outcome == "Knicks"
        assert position.shares == pytest.approx(10.0)


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_runs_bounded_cycles(self, engine):
        await engine.run(max_cycles=1)

        assert engine.cycle_count == 1
        assert engine.last_poll is not None
        assert not engine.monitoring

    @pytest.mark.asyncio
    async def test_cycle_error_does_not_stop_loop(self, engine):
        with patch.object(engine.policy_source, "get_policy", AsyncMock(side_effect=RuntimeError("boom"))):
            await engine.run(max_cycles=1)

        assert engine.cycle_count == 1

    @pytest.mark.asyncio
    async def test_reconcile_unavailable(self, engine, execution):
        with patch.object(
            execution, "get_all_positions", AsyncMock(side_effect=CollaboratorError(ErrorKind.SERVER_ERROR, "down"))
        ):
            assert await engine.reconcile() is None

"""Poll-loop orchestration.

One ``ArbitrageEngine`` per policy owner. Each cycle, strictly sequential:
    1. Re-read the risk policy
    2. Per sport: fetch odds, live scores and exchange markets
    3. Per exchange market: match to a sportsbook match, build consensus
       per outcome, fetch the live ask, evaluate the edge
    4. Per qualified candidate: size, apply exposure limits against a
       fresh ledger snapshot, place the order, record the fill
    5. Exit checks on open positions (when enabled by policy)
    6. Closing-line capture for matches that have started
A market-resolution sweep runs every ``resolution_sweep_every`` cycles,
between cycles.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sharpedge.config.policy import PolicySource, RiskPolicy
from sharpedge.config.settings import AppConfig
from sharpedge.db.models import OrderSide, PositionStatus
from sharpedge.errors import CollaboratorError
from sharpedge.evaluation.clv import ClvTracker
from sharpedge.execution.base import ExecutionClient
from sharpedge.ingestion.base import (
    ExchangeMarket,
    LiveScore,
    MarketProvider,
    OddsMatch,
    OddsProvider,
)
from sharpedge.ingestion.matching import find_matching_match, map_outcome_to_team
from sharpedge.ledger.exits import live_game_state, should_exit_on_edge_reversal, should_take_profit
from sharpedge.ledger.ledger import BetLedger, ReconcileSummary, ResolutionSummary
from sharpedge.ledger.models import Position
from sharpedge.odds.consensus import ConsensusResult, build_consensus
from sharpedge.odds.edge import ValueBetCandidate, evaluate_edge
from sharpedge.risk.exposure import ExposureSnapshot, apply_exposure_limits
from sharpedge.risk.sizing import recommended_fraction, size_position

logger = logging.getLogger(__name__)

EVENT_BET_WINDOW = timedelta(hours=24)
CLOSING_LINE_WINDOW = timedelta(hours=24)


@dataclass
class CycleSummary:
    """Counts for one poll cycle."""

    sources_failed: int = 0
    markets_seen: int = 0
    candidates: int = 0
    placed: int = 0
    rejected: int = 0
    sold: int = 0


@dataclass
class EngineStatus:
    """Read-only view of engine state for monitoring."""

    monitoring: bool
    last_poll: datetime | None
    cycles: int
    candidates: list[ValueBetCandidate] = field(default_factory=list)
    open_positions: int = 0
    exposure: float = 0.0
    today_pnl: float = 0.0


class ArbitrageEngine:
    """Sequential poll loop for one policy owner.

    All mutable state (latest candidates, score cache, last poll time,
    cycle counter, stop flag) lives on the instance; there is a single
    writer, the loop itself.

    Args:
        config: Process configuration (sports, books, timing)
        policy_source: Re-read at the start of every cycle
        odds_provider: Sportsbook odds and scores feed
        market_provider: Exchange listings and live prices
        execution: Order placement and account queries
        ledger: Bet ledger for this owner
        clv: Closing-line tracker (defaults to one on the ledger's store)
    """

    def __init__(
        self,
        config: AppConfig,
        policy_source: PolicySource,
        odds_provider: OddsProvider,
        market_provider: MarketProvider,
        execution: ExecutionClient,
        ledger: BetLedger,
        clv: ClvTracker | None = None,
    ):
        self.config = config
        self.policy_source = policy_source
        self.odds_provider = odds_provider
        self.market_provider = market_provider
        self.execution = execution
        self.ledger = ledger
        self.clv = clv or ClvTracker(ledger.repo, ledger.owner_id)

        self.monitoring = False
        self.last_poll: datetime | None = None
        self.cycle_count = 0
        self.candidates: list[ValueBetCandidate] = []
        self.scores: dict[str, LiveScore] = {}
        self.policy: RiskPolicy | None = None
        self._stop = asyncio.Event()

    @property
    def owner_id(self) -> str:
        return self.ledger.owner_id

    # Status accessors

    async def exposure(self) -> ExposureSnapshot:
        return ExposureSnapshot.from_positions(await self.ledger.open_positions())

    async def today_pnl(self) -> float:
        return await self.ledger.today_pnl()

    async def status(self) -> EngineStatus:
        snapshot = await self.exposure()
        return EngineStatus(
            monitoring=self.monitoring,
            last_poll=self.last_poll,
            cycles=self.cycle_count,
            candidates=list(self.candidates),
            open_positions=len(snapshot.positions),
            exposure=snapshot.total_cost_basis,
            today_pnl=await self.today_pnl(),
        )

    # Loop control

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        logger.info("Stop requested")
        self._stop.set()

    async def run(self, max_cycles: int | None = None, reconcile_on_start: bool = True) -> None:
        """
        Run poll cycles until ``stop()`` is called.

        Args:
            max_cycles: Exit after this many cycles (None runs until stopped)
            reconcile_on_start: Sync the ledger with the exchange account first

        Notes:
            - The stop flag is checked between cycles, never mid-cycle
            - An unexpected error fails only the cycle it occurred in
        """
        self._stop.clear()
        self.monitoring = True
        logger.info(
            f"Engine started for owner {self.owner_id}: {len(self.config.sports)} sports, "
            f"poll every {self.config.poll_interval_seconds:.0f}s"
        )

        try:
            if reconcile_on_start:
                await self.reconcile()
            while not self._stop.is_set():
                try:
                    await self.run_cycle()
                except Exception as e:
                    logger.error(f"Poll cycle {self.cycle_count} failed: {e}", exc_info=True)

                if self.cycle_count % self.config.resolution_sweep_every == 0:
                    try:
                        await self.resolution_sweep()
                    except Exception as e:
                        logger.error(f"Resolution sweep failed: {e}", exc_info=True)

                if max_cycles is not None and self.cycle_count >= max_cycles:
                    break

                try:
                    await asyncio.wait_for(
                        self._stop.wait(), timeout=self.config.poll_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self.monitoring = False
            logger.info(f"Engine stopped after {self.cycle_count} cycles")

    # Cycle

    async def run_cycle(self, now: datetime | None = None) -> CycleSummary:
        """Execute one poll cycle. See the module docstring for the steps."""
        now = now or datetime.now(timezone.utc)
        self.last_poll = now
        self.cycle_count += 1
        summary = CycleSummary()

        policy = await self.policy_source.get_policy(self.owner_id)
        self.policy = policy

        candidates: list[ValueBetCandidate] = []
        matches_by_id: dict[str, OddsMatch] = {}

        for sport in self.config.sports:
            try:
                matches = await self.odds_provider.fetch_odds(sport)
                markets = await self.market_provider.fetch_markets(sport)
            except CollaboratorError as e:
                logger.warning(f"Skipping {sport} this cycle: {e}")
                summary.sources_failed += 1
                continue

            await self._refresh_scores(sport)
            for match in matches:
                matches_by_id[match.id] = match

            for market in markets:
                summary.markets_seen += 1
                try:
                    found = await self.evaluate_market(market, matches, policy, now)
                except CollaboratorError as e:
                    logger.warning(f"Skipping market {market.slug}: {e}")
                    continue

                candidates.extend(found)
                if not policy.auto_trade:
                    continue
                for candidate in found:
                    if await self.execute_candidate(candidate, policy, now):
                        summary.placed += 1
                    else:
                        summary.rejected += 1

        self.candidates = candidates
        summary.candidates = len(candidates)

        summary.sold = await self.check_exits(policy, matches_by_id, now)
        await self.record_closing_lines(matches_by_id, policy, now)

        snapshot = await self.exposure()
        pnl = await self.today_pnl()
        pnl_str = f"+${pnl:.2f}" if pnl >= 0 else f"-${abs(pnl):.2f}"
        logger.info(
            f"Exposure: ${snapshot.total_cost_basis:.2f} | Today P&L: {pnl_str} | "
            f"{summary.candidates} value, {summary.placed} placed, {summary.sold} sold"
        )
        return summary

    async def _refresh_scores(self, sport: str) -> None:
        try:
            scores = await self.odds_provider.fetch_scores(sport)
        except CollaboratorError as e:
            logger.debug(f"Scores unavailable for {sport}: {e}")
            return
        for score in scores:
            self.scores[score.match_id] = score

    def _consensus(
        self, match: OddsMatch, team: str, policy: RiskPolicy, now: datetime
    ) -> ConsensusResult | None:
        return build_consensus(
            match,
            team,
            self.config.sharp_books,
            timedelta(seconds=self.config.max_odds_age_seconds),
            policy.books_required,
            now,
        )

    async def evaluate_market(
        self,
        market: ExchangeMarket,
        matches: list[OddsMatch],
        policy: RiskPolicy,
        now: datetime,
    ) -> list[ValueBetCandidate]:
        """
        Evaluate both outcomes of an exchange market against sharp consensus.

        Returns:
            Qualified candidates (possibly empty)

        Raises:
            CollaboratorError: If a price lookup fails after retries
        """
        match = find_matching_match(market, matches)
        if match is None:
            logger.debug(f"No sportsbook match for {market.title}")
            return []

        minutes_to_start = (match.commence_time - now).total_seconds() / 60
        if 0 < minutes_to_start < policy.pre_game_buffer_minutes:
            logger.debug(f"Skipping {match.home_team} vs {match.away_team}: starts in {minutes_to_start:.0f} min")
            return []

        found = []
        for outcome in market.outcomes:
            team = map_outcome_to_team(outcome.name, match)
            if team is None:
                logger.debug(f"Ambiguous outcome '{outcome.name}' for {market.title}")
                continue

            consensus = self._consensus(match, team, policy, now)
            if consensus is None:
                continue

            ask = await self.market_provider.fetch_ask_price(outcome.token_id)
            if ask is None:
                continue

            decision = evaluate_edge(consensus, ask, policy)
            logger.debug(
                f"{outcome.name}: edge {decision.edge:+.1%} (min {decision.min_edge:.1%}, "
                f"{consensus.book_count} books)"
            )
            if not decision.qualified:
                continue

            found.append(
                ValueBetCandidate(
                    match_id=match.id,
                    sport=match.sport_key,
                    home_team=match.home_team,
                    away_team=match.away_team,
                    commence_time=match.commence_time,
                    outcome=outcome.name,
                    team=team,
                    token_id=outcome.token_id,
                    condition_id=market.condition_id,
                    exchange_price=ask,
                    consensus=consensus,
                    edge=decision.edge,
                    min_edge=decision.min_edge,
                    recommended_fraction=recommended_fraction(
                        decision.edge, consensus.fair_prob, policy
                    ),
                )
            )
        return found

    async def execute_candidate(
        self, candidate: ValueBetCandidate, policy: RiskPolicy, now: datetime
    ) -> bool:
        """
        Size, limit, place and record one candidate.

        Returns:
            True if an order filled and was recorded; False on a logged
            rejection or execution failure (no ledger mutation)
        """
        label = f"{candidate.outcome} ({candidate.home_team} vs {candidate.away_team})"

        fills = await self.ledger.repo.count_fills_for_match(
            self.owner_id, candidate.match_id, now - EVENT_BET_WINDOW
        )
        if fills >= policy.max_bets_per_event:
            logger.info(f"Skipped {label}: max bets per event reached ({fills}/{policy.max_bets_per_event})")
            return False

        try:
            balance = await self.execution.get_balance()
        except CollaboratorError as e:
            logger.warning(f"Skipped {label}: balance unavailable ({e})")
            return False

        request = size_position(
            candidate.edge,
            candidate.consensus_prob,
            candidate.exchange_price,
            candidate.min_edge,
            balance,
            policy,
        )
        if not request.accepted:
            logger.info(f"Skipped {label}: {request.reason}")
            return False

        # Fresh snapshot per candidate: sees fills made earlier this cycle
        snapshot = await self.exposure()
        if policy.correlation_enabled:
            correlated = snapshot.correlated_exposure(
                candidate.match_id,
                candidate.commence_time,
                policy.same_event_correlation,
                policy.same_day_correlation,
            )
            logger.debug(
                f"Exposure for {label}: actual ${snapshot.total_cost_basis:.2f}, "
                f"correlated ${correlated:.2f}"
            )

        decision = apply_exposure_limits(
            request,
            snapshot,
            policy,
            balance,
            candidate.exchange_price,
            candidate.token_id,
            live=now >= candidate.commence_time,
        )
        if not decision.accepted:
            logger.info(f"Skipped {label}: {decision.reason}")
            return False

        result = await self.execution.place_order(candidate.token_id, OrderSide.BUY, decision.size_usd)
        if not result.success:
            logger.warning(f"Order failed for {label}: {result.error}")
            return False

        position = await self.ledger.record_fill(
            candidate,
            size_usd=decision.size_usd,
            shares=result.filled_shares or decision.shares,
            order_id=result.order_id or "",
            price=result.filled_price,
        )
        if position.fill_count == 1:
            await self.clv.record_entry(position)

        logger.info(
            f"Bet placed: {candidate.outcome} @ {candidate.exchange_price * 100:.0f}¢, "
            f"${decision.size_usd:.2f} ({decision.shares:.1f} shares), edge {candidate.edge:+.1%}"
        )
        return True

    # Exits

    async def check_exits(
        self, policy: RiskPolicy, matches_by_id: dict[str, OddsMatch], now: datetime
    ) -> int:
        """
        Apply the take-profit and edge-reversal rules to open positions.

        Returns:
            Number of positions sold
        """
        if not (policy.take_profit_enabled or policy.edge_reversal_enabled):
            return 0

        sold = 0
        for position in await self.ledger.open_positions():
            bid = await self.market_provider.fetch_bid_price(position.token_id)
            if bid is None:
                continue

            reason = self._exit_reason(position, bid, policy, matches_by_id, now)
            if reason is None:
                continue

            result = await self.ledger.sell(position, self.execution, bid, reason)
            if result.success:
                sold += 1
                continue
            # An already-closed position is settled by price inside sell()
            latest = await self.ledger.repo.get_latest_position(self.owner_id, position.token_id)
            if latest is not None and latest.position_id == position.position_id:
                await self._record_clv_results([latest])
        return sold

    def _exit_reason(
        self,
        position: Position,
        bid: float,
        policy: RiskPolicy,
        matches_by_id: dict[str, OddsMatch],
        now: datetime,
    ) -> str | None:
        if policy.take_profit_enabled and position.commence_time and position.entry_price > 0:
            profit_pct = (bid - position.entry_price) / position.entry_price
            state = live_game_state(
                self.scores.get(position.match_id), position.sport, position.commence_time, now
            )
            decision = should_take_profit(profit_pct, state, position.sport)
            if decision.should_exit:
                return f"Take profit: {decision.reason}"

        if policy.edge_reversal_enabled:
            match = matches_by_id.get(position.match_id)
            team = map_outcome_to_team(position.outcome, match) if match else None
            consensus = self._consensus(match, team, policy, now) if team else None
            if consensus is not None:
                should_exit, current_edge = should_exit_on_edge_reversal(
                    consensus.fair_prob, position.entry_price, policy.edge_reversal_threshold
                )
                if should_exit:
                    return f"Edge reversed to {current_edge:+.1%}"

        return None

    # CLV and resolutions

    async def record_closing_lines(
        self, matches_by_id: dict[str, OddsMatch], policy: RiskPolicy, now: datetime
    ) -> int:
        """
        Capture the consensus for tracked positions whose match has started.

        Entries that can no longer get a closing line are expired: the
        position is already closed, or the match started more than a day
        ago, and its match is not in the current feed.

        Returns:
            Number of closing lines recorded
        """
        pending = await self.clv.pending_closes()
        if not pending:
            return 0
        open_ids = {p.position_id for p in await self.ledger.open_positions()}

        recorded = 0
        for entry in pending:
            if entry.commence_time is not None and now < entry.commence_time:
                continue

            match = matches_by_id.get(entry.match_id)
            team = map_outcome_to_team(entry.outcome, match) if match else None
            consensus = self._consensus(match, team, policy, now) if team else None
            if consensus is not None:
                if await self.clv.record_closing_line(entry.position_id, consensus.fair_prob):
                    recorded += 1
                continue

            stale = entry.commence_time is None or now - entry.commence_time > CLOSING_LINE_WINDOW
            if stale or entry.position_id not in open_ids:
                await self.clv.expire(entry.position_id, now)
        return recorded

    async def _record_clv_results(self, positions: list[Position]) -> None:
        for position in positions:
            if position.status in (PositionStatus.WON, PositionStatus.LOST):
                await self.clv.record_result(position.position_id, position.status == PositionStatus.WON)

    async def resolution_sweep(self) -> ResolutionSummary:
        """Resolve settled markets and record CLV results."""
        summary = await self.ledger.check_market_resolutions(self.execution)
        await self._record_clv_results(summary.positions)
        return summary

    async def reconcile(self) -> ReconcileSummary | None:
        """Reconcile the ledger with the exchange account; None if unavailable.

        Positions the reconciliation settles as won or lost get their CLV
        result recorded.
        """
        try:
            external = await self.execution.get_all_positions()
        except CollaboratorError as e:
            logger.warning(f"Reconciliation skipped: {e}")
            return None
        summary = await self.ledger.reconcile(external)
        await self._record_clv_results(summary.positions)
        return summary

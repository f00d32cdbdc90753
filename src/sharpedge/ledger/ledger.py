"""Bet Ledger: fills, sells, resolutions and reconciliation.

Every operation mutates at most one position row per repository call.
Each money-at-risk transition emits a ``BetEvent``; rejections and
no-ops do not.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from sharpedge.db.models import OrderSide, PositionStatus
from sharpedge.errors import CollaboratorError, ErrorKind, classify_order_error
from sharpedge.execution.base import ExecutionClient, ExternalPosition, OrderResult
from sharpedge.ledger.events import BetEvent, BetEventKind, NotificationSink, NullNotificationSink
from sharpedge.ledger.models import LOSS_PRICE, WIN_PRICE, Position
from sharpedge.ledger.repository import PositionRepository
from sharpedge.odds.edge import ValueBetCandidate

logger = logging.getLogger(__name__)

WON_PRICE_FLOOR = 0.95
LOST_PRICE_CEILING = 0.05
SHARE_DRIFT_TOLERANCE = 0.01
PRICE_DRIFT_TOLERANCE = 0.005

_NON_SPORTS_KEYWORDS = ("temperature", "weather", "price", "bitcoin", "ethereum")


def is_sports_position(position: ExternalPosition) -> bool:
    """Default relevance predicate for untracked exchange positions.

    A head-to-head title (" vs ") with none of the non-sports keywords.
    """
    title = position.title.lower()
    if " vs " not in title and " vs." not in title:
        return False
    return not any(keyword in title for keyword in _NON_SPORTS_KEYWORDS)


def classify_by_price(cur_price: float | None) -> tuple[PositionStatus, float]:
    """
    Infer how an out-of-band closed position ended from its last price.

    Returns:
        Tuple of (status, exit_price): WON at 1.0 for >= 0.95, LOST at 0.0
        for <= 0.05 or no price, otherwise SOLD at the price itself
    """
    if cur_price is not None and cur_price >= WON_PRICE_FLOOR:
        return PositionStatus.WON, WIN_PRICE
    if cur_price is None or cur_price <= LOST_PRICE_CEILING:
        return PositionStatus.LOST, LOSS_PRICE
    return PositionStatus.SOLD, cur_price


@dataclass
class ResolutionSummary:
    checked: int = 0
    resolved: int = 0
    won: int = 0
    lost: int = 0
    positions: list[Position] = field(default_factory=list)  # resolved this sweep


@dataclass
class ReconcileSummary:
    synced: int = 0  # internally open positions examined
    closed: int = 0
    added: int = 0
    updated: int = 0
    positions: list[Position] = field(default_factory=list)  # closed this pass

    @property
    def mutations(self) -> int:
        return self.closed + self.added + self.updated


class BetLedger:
    """Owns the position lifecycle for one policy owner.

    Args:
        repo: Position store
        owner_id: Policy owner whose positions this ledger manages
        sink: Notification sink for placed/sold/resolved events
    """

    def __init__(
        self,
        repo: PositionRepository,
        owner_id: str,
        sink: NotificationSink | None = None,
    ):
        self.repo = repo
        self.owner_id = owner_id
        self.sink = sink or NullNotificationSink()

    async def _emit(self, event: BetEvent) -> None:
        try:
            await self.sink.notify(event)
        except Exception as e:
            logger.error(f"Notification sink failed for {event.kind.value} event: {e}", exc_info=True)

    async def open_positions(self) -> list[Position]:
        return await self.repo.list_open_positions(self.owner_id)

    async def record_fill(
        self,
        candidate: ValueBetCandidate,
        size_usd: float,
        shares: float,
        order_id: str = "",
        price: float | None = None,
    ) -> Position:
        """
        Record a BUY fill, merging into the open position on the token.

        Args:
            candidate: Evaluated candidate that was bought
            size_usd: Dollars spent
            shares: Shares received
            order_id: Exchange order id
            price: Fill price (defaults to the candidate's exchange price)

        Returns:
            The stored position after the fill
        """
        fill_price = price if price is not None else candidate.exchange_price
        existing = await self.repo.get_open_position(self.owner_id, candidate.token_id)

        if existing:
            position = existing.accumulated(shares, fill_price, size_usd, order_id, candidate.edge)
            await self.repo.update_position(position)
            logger.info(
                f"Added to {position.outcome}: +{shares:.2f} shares @ {fill_price:.3f} "
                f"(now {position.shares:.2f} @ {position.entry_price:.3f}, ${position.cost_basis:.2f})"
            )
            rationale = f"Added to position at +{candidate.edge * 100:.1f}% edge"
        else:
            position = await self.repo.insert_position(
                Position(
                    owner_id=self.owner_id,
                    match_id=candidate.match_id,
                    sport=candidate.sport,
                    home_team=candidate.home_team,
                    away_team=candidate.away_team,
                    outcome=candidate.outcome,
                    token_id=candidate.token_id,
                    condition_id=candidate.condition_id,
                    shares=shares,
                    entry_price=fill_price,
                    cost_basis=size_usd,
                    consensus_prob=candidate.consensus_prob,
                    edge=candidate.edge,
                    order_id=order_id,
                    commence_time=candidate.commence_time,
                )
            )
            logger.info(
                f"Opened {position.outcome} ({position.title}): {shares:.2f} shares @ "
                f"{fill_price:.3f} (${size_usd:.2f})"
            )
            rationale = (
                f"+{candidate.edge * 100:.1f}% edge vs {candidate.consensus.book_count}-book "
                f"consensus {candidate.consensus_prob * 100:.1f}%"
            )

        await self._emit(
            BetEvent.from_position(
                BetEventKind.PLACED,
                position,
                rationale,
                fill_price=fill_price,
                fill_size_usd=size_usd,
            )
        )
        return position

    async def mark_sold(self, position: Position, price: float, rationale: str) -> Position:
        sold = position.sold(price)
        await self.repo.update_position(sold)
        logger.info(
            f"Sold {sold.outcome} ({sold.title}) @ {price:.3f}, profit ${sold.profit:.2f}"
        )
        await self._emit(BetEvent.from_position(BetEventKind.SOLD, sold, rationale))
        return sold

    async def mark_resolved(self, position: Position, won: bool, rationale: str) -> Position:
        resolved = position.won() if won else position.lost()
        await self.repo.update_position(resolved)
        logger.info(
            f"{'WON' if won else 'LOST'}: {resolved.outcome} ({resolved.title}), "
            f"profit ${resolved.profit:.2f}"
        )
        await self._emit(BetEvent.from_position(BetEventKind.RESOLVED, resolved, rationale))
        return resolved

    async def _close_by_price(
        self, position: Position, cur_price: float | None, rationale: str
    ) -> Position:
        status, exit_price = classify_by_price(cur_price)
        if status == PositionStatus.SOLD:
            return await self.mark_sold(position, exit_price, rationale)
        return await self.mark_resolved(position, status == PositionStatus.WON, rationale)

    async def sell(
        self,
        position: Position,
        client: ExecutionClient,
        bid_price: float,
        rationale: str = "Exit",
    ) -> OrderResult:
        """
        Sell an open position's full share count at market.

        Args:
            position: Open position to exit
            client: Execution client
            bid_price: Current bid; used as the exit price on success
            rationale: Reason attached to the notification

        Returns:
            The broker's OrderResult

        Notes:
            - Success marks the position SOLD at ``bid_price``
            - An insufficient-balance rejection means the position was
              already closed out of band; it is closed via the price-based
              classification using ``bid_price``
            - Any other failure leaves the ledger untouched
        """
        result = await client.place_order(position.token_id, OrderSide.SELL, position.shares)

        if result.success:
            await self.mark_sold(position, bid_price, rationale)
            return result

        kind = result.error_kind or classify_order_error(result.error)
        if kind == ErrorKind.INSUFFICIENT_BALANCE:
            logger.info(f"Position already closed: {position.outcome}, classifying by price")
            await self._close_by_price(position, bid_price, "Closed outside the engine")
        else:
            logger.warning(f"Sell failed for {position.outcome}: {result.error}")
        return result

    async def check_market_resolutions(self, client: ExecutionClient) -> ResolutionSummary:
        """
        Resolve open positions whose exchange markets have settled.

        A position wins when the reported winning outcome name matches its
        outcome name case-insensitively (or, when the exchange reports no
        name, when the winning token is the position's token). A failed
        query is logged and retried on the next sweep.
        """
        summary = ResolutionSummary()
        by_condition: dict[str, list[Position]] = {}
        for position in await self.open_positions():
            if position.condition_id:
                by_condition.setdefault(position.condition_id, []).append(position)

        for condition_id, positions in by_condition.items():
            summary.checked += len(positions)
            try:
                resolution = await client.get_market_resolution(condition_id)
            except CollaboratorError as e:
                logger.warning(f"Resolution check failed for {condition_id}: {e}")
                continue

            if not resolution.resolved:
                continue

            for position in positions:
                if resolution.winning_outcome:
                    won = resolution.winning_outcome.strip().lower() == position.outcome.strip().lower()
                else:
                    won = resolution.winning_token_id == position.token_id
                resolved = await self.mark_resolved(
                    position, won, f"Market resolved: {resolution.winning_outcome or 'unknown'}"
                )
                summary.positions.append(resolved)
                summary.resolved += 1
                if won:
                    summary.won += 1
                else:
                    summary.lost += 1

        if summary.resolved:
            logger.info(
                f"Resolution check: {summary.checked} open, {summary.resolved} resolved "
                f"({summary.won} won, {summary.lost} lost)"
            )
        return summary

    async def reconcile(
        self,
        external_positions: list[ExternalPosition],
        is_relevant: Callable[[ExternalPosition], bool] = is_sports_position,
    ) -> ReconcileSummary:
        """
        Bring the ledger in line with the exchange's view of the account.

        Args:
            external_positions: Everything the exchange reports as held
            is_relevant: Whether an untracked position belongs to this
                engine's market universe

        Returns:
            ReconcileSummary of the mutations made

        Notes:
            - Open positions missing or zeroed externally are closed by
              their last external price (>= 0.95 won, <= 0.05 lost,
              otherwise sold at that price)
            - Held tokens with no open row are added when relevant; a WON
              or LOST row is never re-opened; a SOLD row is corrected back
              to open
            - Open rows whose share count or average price drifted are
              updated in place
            - Running twice on an unchanged external view mutates nothing
              the second time
        """
        summary = ReconcileSummary()
        external = {p.token_id: p for p in external_positions}
        open_positions = await self.open_positions()
        open_tokens = {p.token_id for p in open_positions}
        summary.synced = len(open_positions)

        for position in open_positions:
            held = external.get(position.token_id)
            if held is None or held.shares <= 0:
                cur_price = held.cur_price if held else None
                closed = await self._close_by_price(position, cur_price, "Reconciled with exchange")
                summary.positions.append(closed)
                summary.closed += 1
            elif (
                abs(held.shares - position.shares) > SHARE_DRIFT_TOLERANCE
                or abs(held.avg_price - position.entry_price) > PRICE_DRIFT_TOLERANCE
            ):
                drifted = replace(
                    position,
                    shares=held.shares,
                    entry_price=held.avg_price,
                    cost_basis=held.shares * held.avg_price,
                )
                await self.repo.update_position(drifted)
                logger.info(
                    f"Reconciled {position.outcome}: {position.shares:.2f} @ {position.entry_price:.3f} -> "
                    f"{held.shares:.2f} @ {held.avg_price:.3f}"
                )
                summary.updated += 1

        for held in external_positions:
            if held.shares <= 0 or held.token_id in open_tokens:
                continue
            if not is_relevant(held):
                logger.debug(f"Sync: skipping unrelated position '{held.title}'")
                continue

            existing = await self.repo.get_latest_position(self.owner_id, held.token_id)
            if existing is not None:
                if existing.status in (PositionStatus.WON, PositionStatus.LOST):
                    continue
                reopened = existing.reopened(held.shares, held.avg_price)
                await self.repo.update_position(reopened)
                logger.info(
                    f"Reopened {existing.outcome}: still held ({held.shares:.2f} shares), was {existing.status.value}"
                )
                summary.updated += 1
                continue

            await self.repo.insert_position(
                Position(
                    owner_id=self.owner_id,
                    match_id=held.condition_id or f"synced-{held.token_id[:8]}",
                    sport="synced",
                    home_team=held.title,
                    away_team="",
                    outcome=held.outcome or "Unknown",
                    token_id=held.token_id,
                    condition_id=held.condition_id,
                    shares=held.shares,
                    entry_price=held.avg_price,
                    cost_basis=held.shares * held.avg_price,
                    consensus_prob=held.cur_price,
                    edge=0.0,
                )
            )
            logger.info(
                f"Synced untracked position: {held.outcome or 'Unknown'} "
                f"({held.shares:.2f} shares @ {held.avg_price:.3f})"
            )
            summary.added += 1

        if summary.mutations:
            logger.info(
                f"Reconciliation: {summary.closed} closed, {summary.added} added, "
                f"{summary.updated} updated"
            )
        return summary

    async def realized_pnl_since(self, since: datetime) -> float:
        return await self.repo.realized_pnl_since(self.owner_id, since)

    async def today_pnl(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return await self.realized_pnl_since(start)

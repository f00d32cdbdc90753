"""Discord embed formatting for bet events.

Pure functions that return Discord Embed objects. No database or state dependencies.
"""

import discord

from sharpedge.db.models import PositionStatus
from sharpedge.ledger.events import BetEvent, BetEventKind


def _cents(price: float | None) -> str:
    if price is None:
        return "-"
    return f"{price * 100:.0f}¢"


def _signed_usd(amount: float | None) -> str:
    if amount is None:
        return "-"
    sign = "+" if amount >= 0 else "-"
    return f"{sign}${abs(amount):.2f}"


def _sport_display(sport: str) -> str:
    """'basketball_nba' -> 'NBA'."""
    return sport.rsplit("_", 1)[-1].upper()


def format_bet_placed_embed(event: BetEvent) -> discord.Embed:
    """Format a bet placed (or added to) as a Discord embed.

    Args:
        event: PLACED bet event

    Returns:
        Discord Embed object ready to send
    """
    embed = discord.Embed(
        title=f"Bet Placed: {event.outcome}",
        description=event.title,
        color=discord.Color.blue(),
        timestamp=event.emitted_at,
    )

    embed.add_field(name="Sport", value=_sport_display(event.sport), inline=True)
    embed.add_field(name="Price", value=_cents(event.fill_price), inline=True)
    embed.add_field(
        name="Size",
        value=f"${event.fill_size_usd or 0.0:.2f}",
        inline=True,
    )

    if event.consensus_prob is not None:
        embed.add_field(
            name="Sharp Consensus",
            value=f"{event.consensus_prob * 100:.1f}%",
            inline=True,
        )
    if event.edge is not None:
        embed.add_field(name="Edge", value=f"+{event.edge * 100:.1f}%", inline=True)

    embed.add_field(
        name="Position",
        value=f"{event.shares:.1f} shares @ {_cents(event.entry_price)} (${event.cost_basis:.2f})",
        inline=False,
    )
    embed.set_footer(text=event.rationale)
    return embed


def format_bet_sold_embed(event: BetEvent) -> discord.Embed:
    """Format an explicit sell as a Discord embed."""
    profit = event.profit or 0.0
    embed = discord.Embed(
        title=f"Bet Sold: {event.outcome}",
        description=event.title,
        color=discord.Color.green() if profit >= 0 else discord.Color.orange(),
        timestamp=event.emitted_at,
    )

    embed.add_field(name="Bought", value=f"{_cents(event.entry_price)} (${event.cost_basis:.2f})", inline=True)
    embed.add_field(name="Sold", value=_cents(event.exit_price), inline=True)
    embed.add_field(name="P&L", value=_signed_usd(event.profit), inline=True)
    embed.set_footer(text=event.rationale)
    return embed


def format_bet_resolved_embed(event: BetEvent) -> discord.Embed:
    """Format a won/lost resolution as a Discord embed."""
    won = event.status == PositionStatus.WON
    embed = discord.Embed(
        title=f"{'Won' if won else 'Lost'}: {event.outcome}",
        description=event.title,
        color=discord.Color.green() if won else discord.Color.red(),
        timestamp=event.emitted_at,
    )

    embed.add_field(name="Entry", value=f"{_cents(event.entry_price)} (${event.cost_basis:.2f})", inline=True)
    embed.add_field(name="Shares", value=f"{event.shares:.1f}", inline=True)
    embed.add_field(name="P&L", value=_signed_usd(event.profit), inline=True)
    embed.set_footer(text=event.rationale)
    return embed


def format_bet_event_embed(event: BetEvent) -> discord.Embed:
    """Dispatch to the formatter for the event kind."""
    if event.kind == BetEventKind.PLACED:
        return format_bet_placed_embed(event)
    if event.kind == BetEventKind.SOLD:
        return format_bet_sold_embed(event)
    return format_bet_resolved_embed(event)

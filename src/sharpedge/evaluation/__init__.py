"""Bet-selection quality metrics."""

from sharpedge.evaluation.clv import ClvStats, ClvTracker, compute_clv_pct, summarize_clv

__all__ = ["ClvStats", "ClvTracker", "compute_clv_pct", "summarize_clv"]

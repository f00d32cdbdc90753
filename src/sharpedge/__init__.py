"""Sportsbook-consensus arbitrage engine for binary prediction-market contracts."""

__version__ = "0.1.0"

"""Odds normalization, sharp consensus, and edge evaluation."""

from sharpedge.odds.consensus import ConsensusResult, build_consensus
from sharpedge.odds.devig import devig, implied_probability
from sharpedge.odds.edge import (
    EdgeDecision,
    ValueBetCandidate,
    compute_edge,
    dynamic_min_edge,
    effective_min_edge,
    evaluate_edge,
)

__all__ = [
    "ConsensusResult",
    "build_consensus",
    "devig",
    "implied_probability",
    "EdgeDecision",
    "ValueBetCandidate",
    "compute_edge",
    "dynamic_min_edge",
    "effective_min_edge",
    "evaluate_edge",
]

"""Poll-loop orchestration."""

from sharpedge.scheduler.engine import ArbitrageEngine, CycleSummary, EngineStatus

__all__ = ["ArbitrageEngine", "CycleSummary", "EngineStatus"]

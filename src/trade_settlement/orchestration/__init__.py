"""Orchestration layer: scheduled sweeps across the settlement services."""

from trade_settlement.orchestration.sweeps import SweepReport, run_sweeps, sweep_forever

__all__ = ["SweepReport", "run_sweeps", "sweep_forever"]

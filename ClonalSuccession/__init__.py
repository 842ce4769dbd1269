"""Clonal succession simulation package.

This package simulates a cell population in which one of three clones is
active at a time: its stem cells divide and suppress the dormant clones until
the clone declines and a successor is activated, while homeostasis keeps the
total population near its target.

Main entry points:
- ClonalSuccession.simulator: SuccessionSimulator class for programmatic use
- ClonalSuccession.config: Simulation configuration
- ClonalSuccession.io: Config loading and history/record/snapshot export
- ClonalSuccession.events: Typed events produced each tick
- ClonalSuccession.plotting: Population history figure
- run_simulation: Command-line interface
"""

from ClonalSuccession.cell import Cell, CellKind, Clone, InvariantViolation, LifecycleState, StemState
from ClonalSuccession.config import SuccessionConfig
from ClonalSuccession.events import Event, EventQueue, SuccessionRecord
from ClonalSuccession.homeostasis import PopulationController
from ClonalSuccession.io import (
    load_population_history_csv,
    load_simulation_config,
    save_population_history_csv,
    save_snapshot_csv,
    save_succession_records_json,
)
from ClonalSuccession.lifecycle import CellLifecycleManager
from ClonalSuccession.simulator import SuccessionSimulator
from ClonalSuccession.spatial import DiskSpace, SpatialQuery
from ClonalSuccession.stem_manager import StemCellManager

__all__ = [
    # Core classes
    "Cell",
    "CellKind",
    "Clone",
    "LifecycleState",
    "StemState",
    "InvariantViolation",
    "SuccessionConfig",
    "Event",
    "EventQueue",
    "SuccessionRecord",
    "CellLifecycleManager",
    "StemCellManager",
    "PopulationController",
    "SuccessionSimulator",
    "DiskSpace",
    "SpatialQuery",
    # Functions
    "load_simulation_config",
    "load_population_history_csv",
    "save_population_history_csv",
    "save_snapshot_csv",
    "save_succession_records_json",
]

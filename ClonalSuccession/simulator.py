"""Clonal succession simulator.

Owns the lifecycle manager, stem-cell manager, population controller and the
spatial collaborator, and advances them one frame at a time in a fixed order:

    1. age cells, remove the dead (senescent deaths feed the dying-cell signal)
    2. attempt divisions under the capacity gate
    3. recompute the global suppression level
    4. evaluate succession triggers
    5. homeostasis (rate control and the periodic mechanisms)
    6. ease the spatial boundary toward its population-dependent radius

Every random draw goes through one ``np.random.Generator`` seeded from the
config, so a run is replayable from (seed, tick count). Each ``tick`` returns
the events produced during that frame as an immutable tuple.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Iterable, Mapping, Optional

import numpy as np

from ClonalSuccession.cell import CLONES, Cell, Clone, InvariantViolation, LifecycleState, new_stem_cell
from ClonalSuccession.config import SuccessionConfig, resolve_parameter_name
from ClonalSuccession.events import Event, EventQueue, SuccessionOccurred, SuccessionRecord
from ClonalSuccession.homeostasis import PopulationController
from ClonalSuccession.lifecycle import CellLifecycleManager
from ClonalSuccession.spatial import DiskSpace, SpatialQuery
from ClonalSuccession.stem_manager import StemCellManager

logger = logging.getLogger(__name__)

CAGE_MIN_RADIUS = 14.0
CAGE_MAX_RADIUS = 280.0

# Only stem-cell creation on activation bypasses the division gate, and a
# clone never holds more than one stem cell.
CAPACITY_OVERSHOOT = len(CLONES)


class SuccessionSimulator:
    """Tick-driven clonal succession simulation."""

    def __init__(self, config: Optional[SuccessionConfig] = None, spatial: Optional[SpatialQuery] = None) -> None:
        self.config = config if config is not None else SuccessionConfig()
        self.rng = np.random.default_rng(self.config.random_seed)
        self.events = EventQueue()
        self.spatial = spatial if spatial is not None else DiskSpace(
            self.rng, min_radius=CAGE_MIN_RADIUS, max_radius=CAGE_MAX_RADIUS
        )
        self.lifecycle = CellLifecycleManager(
            self.rng,
            self.events,
            spatial=self.spatial,
            max_cells=self.config.max_cells,
            senescent_extra_aging=self.config.senescent_extra_aging,
        )
        self.stem_manager = StemCellManager(
            self.rng,
            self.events,
            division_limit=self.config.division_limit,
            activation_threshold=self.config.activation_threshold,
            suppression_strength=self.config.suppression_strength,
            dying_signal_threshold=self.config.dying_signal_threshold,
            spatial=self.spatial,
            create_stem_cell=self._create_stem_cell,
            retire_stem_cell=self.lifecycle.retire_cell,
        )
        self.controller = PopulationController(
            self.lifecycle,
            self.stem_manager,
            self.rng,
            self.events,
            spatial=self.spatial,
            target_population=self.config.target_population,
            population_tolerance=self.config.population_tolerance,
        )
        self.frame = 0
        self.reset()

    # -------------------------------------------------------------------------
    # Reset / seeding
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Clear all state and reseed with one active stem cell of the first clone."""
        self.rng.bit_generator.state = np.random.default_rng(self.config.random_seed).bit_generator.state
        self.frame = 0
        self._population_ceiling = 0
        self.events.clear()
        self.events.tick = 0
        self.lifecycle.clear()
        self.stem_manager.reset()
        self.controller.reset()
        self._create_stem_cell(self.stem_manager.active_clone, register=True)
        logger.info("Simulation reset (seed=%d, max_cells=%d)", self.config.random_seed, self.config.max_cells)

    def _create_stem_cell(self, clone: Clone, register: bool = False) -> Cell:
        cell = new_stem_cell(
            self.lifecycle.allocate_id(),
            clone,
            self.rng,
            max_divisions=self.config.division_limit,
            activation_threshold=self.stem_manager.clone_activation_thresholds[clone],
        )
        self.lifecycle.add_cell(cell)
        if register:
            self.stem_manager.register(cell)
        return cell

    # -------------------------------------------------------------------------
    # Stepping
    # -------------------------------------------------------------------------

    def tick(self) -> tuple[Event, ...]:
        """Advance one frame and return the events it produced."""
        self.events.tick = self.frame
        max_cells = self.config.max_cells

        for cell in self.lifecycle.update_cells():
            if cell.is_stem:
                self.stem_manager.unregister(cell)
            if cell.state is LifecycleState.SENESCENT:
                self.stem_manager.record_dying_cell_signal()

        for parent, _child in self.lifecycle.process_divisions():
            if parent.is_stem:
                self.stem_manager.note_division(parent.clone)

        self.stem_manager.update_suppression_signal(self.lifecycle.cells, max_cells)
        self.stem_manager.check_activation_conditions(self.lifecycle.cells, max_cells)
        self.controller.update(self.frame)
        self.spatial.update_boundary(self.lifecycle.get_cell_count(), max_cells)

        self.frame += 1
        if self.config.check_invariants:
            self.validate_invariants()
        return self.events.drain()

    def run(self, ticks: int) -> list[SuccessionRecord]:
        """Advance ``ticks`` frames; returns the succession records produced."""
        if ticks < 0:
            raise ValueError("ticks must be non-negative")
        records: list[SuccessionRecord] = []
        for _ in range(int(ticks)):
            for event in self.tick():
                if isinstance(event, SuccessionOccurred):
                    records.append(event.record)
        return records

    def validate_invariants(self) -> None:
        population = self.lifecycle.get_cell_count()
        ceiling = max(self.config.max_cells + CAPACITY_OVERSHOOT, self._population_ceiling)
        if population > ceiling:
            raise InvariantViolation(f"population {population} exceeds capacity ceiling {ceiling}")
        # a capacity lowered at runtime leaves an excess that may only shrink
        self._population_ceiling = min(self._population_ceiling, population + CAPACITY_OVERSHOOT)
        for cell in self.lifecycle.cells:
            if cell.divisions_left < 0:
                raise InvariantViolation(f"cell {cell.cell_id} has negative divisions_left")
        self.stem_manager.validate()

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def set_parameter(self, name: str, value: Any) -> SuccessionConfig:
        """Change one parameter at runtime (clamped like any config value)."""
        field_name = resolve_parameter_name(name)
        if field_name not in {f.name for f in dataclasses.fields(SuccessionConfig)}:
            raise ValueError(f"Unknown parameter: {name}")
        changes = {field_name: value}
        if field_name == "max_cells" and self.config.target_population == self.config.max_cells:
            changes["target_population"] = value
        self.config = dataclasses.replace(self.config, **changes)
        self._population_ceiling = self.lifecycle.get_cell_count() + CAPACITY_OVERSHOOT
        self._push_config()
        return self.config

    def _push_config(self) -> None:
        cfg = self.config
        self.lifecycle.set_max_cells(cfg.max_cells)
        self.lifecycle.senescent_extra_aging = cfg.senescent_extra_aging
        if cfg.activation_threshold != self.stem_manager.activation_threshold:
            self.stem_manager.set_activation_threshold(cfg.activation_threshold)
        self.stem_manager.set_suppression_strength(cfg.suppression_strength)
        self.stem_manager.set_dying_signal_threshold(cfg.dying_signal_threshold)
        self.stem_manager.set_division_limit(cfg.division_limit)
        self.controller.set_target_population(cfg.target_population)
        self.controller.set_population_tolerance(cfg.population_tolerance)

    # -------------------------------------------------------------------------
    # Introspection / export
    # -------------------------------------------------------------------------

    @property
    def succession_history(self) -> list[SuccessionRecord]:
        return list(self.stem_manager.succession_history)

    def state(self) -> dict[str, Any]:
        """Compact snapshot of the aggregate simulation state."""
        return {
            "frame": self.frame,
            "population": self.lifecycle.get_cell_count(),
            "active_clone": self.stem_manager.active_clone.value,
            "suppression_level": self.stem_manager.suppression_level,
            "activation_threshold": self.stem_manager.activation_threshold,
            "clone_counts": {c.value: n for c, n in self.lifecycle.clone_counts().items()},
            "state_counts": {s.value: n for s, n in self.lifecycle.state_counts().items()},
            "stem_cells": {c.value: len(self.stem_manager.registries[c].cells) for c in CLONES},
            "successions": len(self.stem_manager.succession_history),
        }

    def summary(self) -> dict[str, Any]:
        out = self.state()
        out["config"] = self.config.to_dict()
        out["deaths"] = self.lifecycle.get_death_statistics()
        out["divisions"] = self.lifecycle.division_total
        out["activation_metrics"] = self.stem_manager.get_activation_metrics()
        out["homeostasis"] = self.controller.get_homeostasis_metrics()
        out["succession_records"] = [r.to_dict() for r in self.stem_manager.succession_history]
        return out

    def cell_snapshots(self) -> list[dict]:
        return [cell.snapshot() for cell in self.lifecycle.cells]

    def history_rows(self) -> list[dict[str, int]]:
        return self.lifecycle.history_rows()

    def seed_history(self, rows: Iterable[Mapping[str, Any]]) -> None:
        self.lifecycle.seed_history(rows)

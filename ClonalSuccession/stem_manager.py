"""Stem-cell manager: global suppression level and clone succession.

Keeps one stem-cell registry per clone and a single global suppression level
describing how strongly the active clone holds the dormant clones back. Each
tick the level is recomputed from population trends and pushed to every
dormant stem cell, then the succession triggers are evaluated in precedence
order:

    1. population_crash        total < 30% of capacity             urgency 10
    2. stem_cell_depletion     active stem cells exhausted + low   urgency 9
    3. dying_cell_signals      senescent deaths >= threshold + low urgency 8
    4. high_senescence         active clone >50% senescent,
                               declining + low                     urgency 7
    5. population_decline      declining, < 40% capacity + low,
                               sustained > 60 frames               urgency 6
    6. natural_succession      low for > 120 frames and a dormant
                               stem cell with progress > 0.7       urgency 5

"low" means the suppression level is strictly below the activation threshold.
A succession is followed by a cooldown of max(60, 180 - 12 * urgency) frames.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Optional, Sequence

import numpy as np

from ClonalSuccession import stem
from ClonalSuccession.cell import CLONES, Cell, Clone, InvariantViolation, LifecycleState, StemState
from ClonalSuccession.events import (
    ActivationThresholdChanged,
    DyingCellSignalRecorded,
    EventQueue,
    StemCellActivated,
    StemCellDeactivated,
    SuccessionOccurred,
    SuccessionRecord,
    SuppressionLevelChanged,
)
from ClonalSuccession.lifecycle import count_by_clone, count_by_clone_and_state
from ClonalSuccession.spatial import SpatialQuery
from ClonalSuccession.stochastic import weighted_choice

logger = logging.getLogger(__name__)

POPULATION_HISTORY_LENGTH = 100
SUCCESSION_HISTORY_LENGTH = 20
CONDITIONS_LOG_LENGTH = 100

CRASH_FRACTION = 0.3
NEAR_CAPACITY_FRACTION = 0.9
SMALL_CLONE_FRACTION = 0.3
DECLINE_SMALL_FRACTION = 0.4
MODERATE_FRACTION = 0.7
DEPLETION_DIVISIONS = 5
HIGH_SENESCENCE_RATIO = 0.5
READY_PROGRESS = 0.7
DECLINE_FRAMES_REQUIRED = 60
NATURAL_FRAMES_REQUIRED = 120
LEAST_RECENT_MIN_HISTORY = 3

SPATIAL_SELECTION_RADIUS = 20.0
NEVER_ACTIVATED_FRAMES = 60000

STRATEGY_HEALTHIEST = "healthiest_stem_cells"
STRATEGY_SPATIAL = "spatial_proximity"
STRATEGY_LEAST_RECENT = "least_recent"
STRATEGY_RANDOM_WEIGHTED = "random_weighted"

StemCellFactory = Callable[[Clone], Optional[Cell]]
StemCellRetirer = Callable[[Cell], None]


def succession_cooldown(urgency: int) -> int:
    """Frames during which succession is not re-evaluated."""
    return max(60, 180 - int(urgency) * 12)


def next_in_cycle(clone: Clone) -> Clone:
    return CLONES[(CLONES.index(clone) + 1) % len(CLONES)]


def is_declining(history: Sequence[int]) -> bool:
    """Latest sample more than 20% below the mean of samples 10..6 back."""
    if len(history) < 10:
        return False
    samples = list(history)
    window = samples[-10:-5]
    return samples[-1] < (sum(window) / len(window)) * 0.8


def senescence_estimate(history: Sequence[int]) -> float:
    """Fraction lost from the recent peak once a clone has fallen below 70% of it."""
    if len(history) < 5:
        return 0.0
    samples = list(history)
    current = samples[-1]
    peak = max(samples[-20:])
    if peak > 0 and current < peak * 0.7:
        return min(1.0, (peak - current) / peak)
    return 0.0


@dataclass
class CloneRegistry:
    clone: Clone
    cells: list[Cell] = field(default_factory=list)
    divisions_left: int = 25

    def active_cells(self) -> list[Cell]:
        return [c for c in self.cells if c.stem.is_active]

    def dormant_cells(self) -> list[Cell]:
        return [c for c in self.cells if not c.stem.is_active and c.stem.state is not StemState.DEPLETED]

    def producing_cells(self) -> list[Cell]:
        return [c for c in self.cells if stem.can_produce(c)]


class StemCellManager:
    """Suppression signalling and succession decisions across the three clones."""

    def __init__(
        self,
        rng: np.random.Generator,
        events: EventQueue,
        division_limit: int = 25,
        activation_threshold: float = 0.3,
        suppression_strength: float = 1.0,
        dying_signal_threshold: int = 10,
        spatial: Optional[SpatialQuery] = None,
        create_stem_cell: Optional[StemCellFactory] = None,
        retire_stem_cell: Optional[StemCellRetirer] = None,
    ) -> None:
        self.rng = rng
        self.events = events
        self.division_limit = int(division_limit)
        self.suppression_strength = float(suppression_strength)
        self.dying_signal_threshold = int(dying_signal_threshold)
        self.spatial = spatial
        self.create_stem_cell = create_stem_cell
        self.retire_stem_cell = retire_stem_cell
        self._base_activation_threshold = float(activation_threshold)
        self.reset()

    def reset(self) -> None:
        self.registries = {c: CloneRegistry(c, divisions_left=self.division_limit) for c in CLONES}
        self.active_clone = Clone.RED
        self.suppression_level = 1.0
        self.activation_threshold = self._base_activation_threshold
        self.clone_activation_thresholds = {c: self.activation_threshold for c in CLONES}
        self.dying_cell_signals = 0
        self.succession_cooldown = 0
        self.low_suppression_frames = 0
        self.decline_frames = 0
        self.population_history = {c: deque(maxlen=POPULATION_HISTORY_LENGTH) for c in CLONES}
        self.succession_history: deque[SuccessionRecord] = deque(maxlen=SUCCESSION_HISTORY_LENGTH)
        self.conditions_log: deque[dict[str, Any]] = deque(maxlen=CONDITIONS_LOG_LENGTH)
        # the seed clone counts as activated at tick 0
        self.last_activation_tick: dict[Clone, Optional[int]] = {c: None for c in CLONES}
        self.last_activation_tick[Clone.RED] = 0
        self.activation_count = 0
        self.activation_triggers: Counter[str] = Counter()
        self.average_activation_interval = 0.0

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register(self, cell: Cell) -> None:
        if not cell.is_stem:
            raise TypeError(f"cell {cell.cell_id} is not a stem cell")
        registry = self.registries[cell.clone]
        if cell in registry.cells:
            return
        registry.cells.append(cell)
        cell.stem.activation_threshold = self.clone_activation_thresholds[cell.clone]
        if cell.clone is self.active_clone:
            self._activate(cell)

    def unregister(self, cell: Cell) -> bool:
        registry = self.registries[cell.clone]
        if cell not in registry.cells:
            return False
        registry.cells.remove(cell)
        return True

    def note_division(self, clone: Clone) -> None:
        """Consume one division from the clone-level budget."""
        registry = self.registries[clone]
        registry.divisions_left = max(0, registry.divisions_left - 1)

    def stem_cells(self, clone: Optional[Clone] = None) -> list[Cell]:
        if clone is not None:
            return list(self.registries[clone].cells)
        return [c for clone in CLONES for c in self.registries[clone].cells]

    def clones_with_active_stem_cells(self) -> list[Clone]:
        return [c for c in CLONES if self.registries[c].active_cells()]

    def _activate(self, cell: Cell) -> None:
        if stem.activate(cell):
            self.events.emit(StemCellActivated, cell_id=cell.cell_id, clone=cell.clone)

    def _deactivate(self, cell: Cell) -> None:
        if stem.deactivate(cell):
            self.events.emit(StemCellDeactivated, cell_id=cell.cell_id, clone=cell.clone)

    # -------------------------------------------------------------------------
    # Suppression
    # -------------------------------------------------------------------------

    def update_suppression_signal(self, cells: Sequence[Cell], max_cells: int) -> float:
        """Recompute the global suppression level and push it to dormant stem cells."""
        counts = count_by_clone(cells)
        for clone in CLONES:
            self.population_history[clone].append(counts[clone])

        total = len(cells)
        active_count = counts[self.active_clone]
        active_share = active_count / total if total > 0 else 0.0

        previous = self.suppression_level
        self.suppression_level = self._next_suppression_level(total, active_count, active_share, max_cells)
        if self.suppression_level != previous:
            self.events.emit(SuppressionLevelChanged, level=self.suppression_level, previous=previous)

        for clone in CLONES:
            if clone is self.active_clone:
                continue
            for cell in self.registries[clone].cells:
                stem.suppress(cell, self.suppression_level)
        return self.suppression_level

    def _next_suppression_level(self, total: int, active_count: int, active_share: float, max_cells: int) -> float:
        level = self.suppression_level
        declining = is_declining(self.population_history[self.active_clone])

        if total >= max_cells * NEAR_CAPACITY_FRACTION:
            base = min(1.0, level + 0.05)
        elif declining and active_count < max_cells * SMALL_CLONE_FRACTION:
            base = max(0.1, level - 0.08)
        elif declining:
            base = max(0.1, level - 0.05)
        elif active_share > 0.8 and active_count > max_cells * 0.5:
            base = min(1.0, level + 0.03)
        else:
            base = max(0.1, level - 0.01)

        senescence_factor = max(0.0, 1.0 - senescence_estimate(self.population_history[self.active_clone]) * 2)
        level = base * senescence_factor * self._stem_health_factor(self.active_clone) * self.suppression_strength
        return float(min(1.0, max(0.1, level)))

    def _stem_health_factor(self, clone: Clone) -> float:
        active = self.registries[clone].active_cells()
        if not active:
            return 0.5
        return 0.5 + 0.5 * (sum(stem.health(c) for c in active) / len(active))

    def is_suppression_low(self) -> bool:
        return self.suppression_level < self.activation_threshold

    # -------------------------------------------------------------------------
    # Succession triggers
    # -------------------------------------------------------------------------

    def check_activation_conditions(self, cells: Sequence[Cell], max_cells: int) -> Optional[SuccessionRecord]:
        """Evaluate the succession triggers; returns the record when a succession happened."""
        if self.succession_cooldown > 0:
            self.succession_cooldown -= 1
            return None

        total = len(cells)
        counts = count_by_clone(cells)
        active_count = counts[self.active_clone]
        active_states = count_by_clone_and_state(cells)[self.active_clone]
        active_senescent_ratio = active_states[LifecycleState.SENESCENT] / active_count if active_count else 0.0
        low = self.is_suppression_low()
        declining = is_declining(self.population_history[self.active_clone])
        crash = total < max_cells * CRASH_FRACTION

        self.low_suppression_frames = self.low_suppression_frames + 1 if low else 0
        declining_small = declining and active_count < max_cells * DECLINE_SMALL_FRACTION and low
        self.decline_frames = self.decline_frames + 1 if declining_small else 0

        trigger, urgency = "", 0
        if crash:
            trigger, urgency = "population_crash", 10
        elif self._active_stem_cells_depleted() and low:
            trigger, urgency = "stem_cell_depletion", 9
        elif self.dying_cell_signals >= self.dying_signal_threshold and low:
            trigger, urgency = "dying_cell_signals", 8
        elif active_senescent_ratio > HIGH_SENESCENCE_RATIO and declining and low:
            trigger, urgency = "high_senescence", 7
        elif declining_small and self.decline_frames > DECLINE_FRAMES_REQUIRED:
            trigger, urgency = "population_decline", 6
        elif low and self.low_suppression_frames > NATURAL_FRAMES_REQUIRED and self.has_dormant_stem_cells_ready():
            trigger, urgency = "natural_succession", 5

        self.conditions_log.append({
            "tick": self.events.tick,
            "total_cells": total,
            "max_cells": max_cells,
            "active_clone": self.active_clone.value,
            "active_clone_count": active_count,
            "active_clone_senescent_ratio": active_senescent_ratio,
            "declining": declining,
            "suppression_low": low,
            "suppression_level": self.suppression_level,
            "activation_threshold": self.activation_threshold,
            "dying_cell_signals": self.dying_cell_signals,
            "low_suppression_frames": self.low_suppression_frames,
            "decline_frames": self.decline_frames,
            "trigger": trigger,
            "urgency": urgency,
        })

        if not trigger:
            return None
        return self._trigger_succession(cells, max_cells, trigger, urgency)

    def _active_stem_cells_depleted(self) -> bool:
        registry = self.registries[self.active_clone]
        if registry.divisions_left <= 0:
            return True
        return all(
            c.state is not LifecycleState.DIVIDING
            or c.stem.state is StemState.DEPLETED
            or c.divisions_left < DEPLETION_DIVISIONS
            for c in registry.active_cells()
        )

    def has_dormant_stem_cells_ready(self) -> bool:
        for clone in CLONES:
            if clone is self.active_clone:
                continue
            if any(c.stem.activation_progress > READY_PROGRESS for c in self.registries[clone].dormant_cells()):
                return True
        return False

    def record_dying_cell_signal(self) -> int:
        self.dying_cell_signals += 1
        self.events.emit(DyingCellSignalRecorded, count=self.dying_cell_signals, threshold=self.dying_signal_threshold)
        return self.dying_cell_signals

    # -------------------------------------------------------------------------
    # Succession
    # -------------------------------------------------------------------------

    def _trigger_succession(self, cells: Sequence[Cell], max_cells: int, trigger: str, urgency: int) -> SuccessionRecord:
        tick = self.events.tick
        signals = self.dying_cell_signals
        self.dying_cell_signals = 0
        self.low_suppression_frames = 0
        self.decline_frames = 0
        self.succession_cooldown = succession_cooldown(urgency)

        old_clone = self.active_clone
        population = len(cells)
        clone_counts = count_by_clone(cells)
        state_counts = count_by_clone_and_state(cells)
        strategy = self.selection_strategy(population, max_cells)
        new_clone = self.select_next_clone(strategy)
        self._update_activation_metrics(tick, trigger)

        for cell in self.registries[old_clone].cells:
            self._deactivate(cell)
        self.active_clone = new_clone
        self.last_activation_tick[new_clone] = tick
        registry = self.registries[new_clone]
        registry.divisions_left = self.division_limit
        if not registry.producing_cells():
            self._replace_stem_cells(new_clone)
        for cell in registry.cells:
            self._activate(cell)

        record = SuccessionRecord(
            tick=tick,
            old_clone=old_clone,
            new_clone=new_clone,
            population_before=population,
            population_ratio=population / max_cells if max_cells > 0 else 0.0,
            clone_counts_before=MappingProxyType(clone_counts),
            state_counts_before=MappingProxyType({
                c: MappingProxyType(states) for c, states in state_counts.items()
            }),
            trigger=trigger,
            urgency=urgency,
            suppression_level=self.suppression_level,
            activation_threshold=self.activation_threshold,
            dying_cell_signals=signals,
            selection_strategy=strategy,
        )
        self.succession_history.append(record)
        self.events.emit(SuccessionOccurred, record=record)
        logger.info(
            "Succession at tick %d: %s -> %s (trigger=%s, urgency=%d, strategy=%s)",
            tick, old_clone.value, new_clone.value, trigger, urgency, strategy,
        )
        return record

    def _replace_stem_cells(self, clone: Clone) -> None:
        """Retire a clone's spent stem cells and seed exactly one fresh one."""
        if self.create_stem_cell is None:
            logger.warning("Clone %s has no dividing stem cell and no stem-cell factory is set", clone.value)
            return
        for cell in list(self.registries[clone].cells):
            self.unregister(cell)
            if self.retire_stem_cell is not None:
                self.retire_stem_cell(cell)
        cell = self.create_stem_cell(clone)
        if cell is not None:
            self.register(cell)
        logger.debug("Seeded stem cell for clone %s", clone.value)

    def _update_activation_metrics(self, tick: int, trigger: str) -> None:
        previous = [t for t in self.last_activation_tick.values() if t is not None]
        if self.activation_count > 0 and previous:
            interval = tick - max(previous)
            self.average_activation_interval += (interval - self.average_activation_interval) / self.activation_count
        self.activation_count += 1
        self.activation_triggers[trigger] += 1

    # -------------------------------------------------------------------------
    # Next-clone selection
    # -------------------------------------------------------------------------

    def selection_strategy(self, population: int, max_cells: int) -> str:
        if population < max_cells * CRASH_FRACTION:
            return STRATEGY_HEALTHIEST
        if population < max_cells * MODERATE_FRACTION:
            return STRATEGY_SPATIAL
        if len(self.succession_history) >= LEAST_RECENT_MIN_HISTORY:
            return STRATEGY_LEAST_RECENT
        return STRATEGY_RANDOM_WEIGHTED

    def select_next_clone(self, strategy: str) -> Clone:
        if strategy == STRATEGY_HEALTHIEST:
            return self._select_healthiest()
        if strategy == STRATEGY_SPATIAL:
            return self._select_by_free_niche()
        if strategy == STRATEGY_LEAST_RECENT:
            return self._select_least_recent()
        if strategy == STRATEGY_RANDOM_WEIGHTED:
            return self._select_random_weighted()
        raise ValueError(f"Unknown selection strategy: {strategy}")

    def _candidates(self) -> list[Clone]:
        return [c for c in CLONES if c is not self.active_clone]

    def _select_healthiest(self) -> Clone:
        best, best_health = None, -1.0
        for clone in self._candidates():
            registry = self.registries[clone]
            if not registry.cells:
                continue
            avg = sum(stem.health(c) for c in registry.cells) / len(registry.cells)
            if avg > best_health:
                best, best_health = clone, avg
        return best if best is not None else next_in_cycle(self.active_clone)

    def _select_by_free_niche(self) -> Clone:
        """Dormant clone whose stem cells sit in the least crowded neighbourhood."""
        if self.spatial is None:
            return self._select_random_weighted()
        crowding: dict[Clone, float] = {}
        for clone in self._candidates():
            dormant = self.registries[clone].dormant_cells()
            if dormant:
                crowding[clone] = float(np.mean([
                    len(self.spatial.neighbors(c, SPATIAL_SELECTION_RADIUS)) for c in dormant
                ]))
        if not crowding:
            return self._select_random_weighted()
        lowest = min(crowding.values())
        best = [c for c, v in crowding.items() if v == lowest]
        if len(best) > 1:
            return self._select_random_weighted()
        return best[0]

    def _select_least_recent(self) -> Clone:
        candidates = self._candidates()
        never = [c for c in candidates if self.last_activation_tick[c] is None]
        if never:
            return never[0]
        return min(candidates, key=lambda c: self.last_activation_tick[c])

    def time_since_activation(self, clone: Clone) -> int:
        last = self.last_activation_tick[clone]
        if last is None:
            return NEVER_ACTIVATED_FRAMES
        return self.events.tick - last

    def _select_random_weighted(self) -> Clone:
        weights = []
        for clone in CLONES:
            if clone is self.active_clone:
                weights.append(0.0)
                continue
            weight = 1.0 + len(self.registries[clone].cells) * 0.5
            weight *= 1.0 + self.time_since_activation(clone) * 0.01
            weights.append(weight)
        return weighted_choice(self.rng, CLONES, weights)

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def set_activation_threshold(self, value: float) -> None:
        """Set the global threshold; per-clone thresholds and all stem cells follow."""
        self.activation_threshold = float(min(1.0, max(0.0, value)))
        self._base_activation_threshold = self.activation_threshold
        for clone in CLONES:
            self.clone_activation_thresholds[clone] = self.activation_threshold
            for cell in self.registries[clone].cells:
                cell.stem.activation_threshold = self.activation_threshold
        self.events.emit(ActivationThresholdChanged, threshold=self.activation_threshold)

    def set_clone_activation_threshold(self, clone: Clone, threshold: float, reasons: Sequence[str] = ()) -> None:
        threshold = float(min(1.0, max(0.0, threshold)))
        self.clone_activation_thresholds[clone] = threshold
        for cell in self.registries[clone].cells:
            cell.stem.activation_threshold = threshold
        self.events.emit(ActivationThresholdChanged, threshold=threshold, clone=clone, reasons=tuple(reasons))

    def set_suppression_strength(self, multiplier: float) -> None:
        self.suppression_strength = float(min(2.0, max(0.1, multiplier)))

    def set_dying_signal_threshold(self, value: int) -> None:
        self.dying_signal_threshold = max(1, int(value))

    def set_division_limit(self, value: int) -> None:
        self.division_limit = max(1, int(value))

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """Raise ``InvariantViolation`` if more than one clone is producing or suppression is out of range."""
        producing = self.clones_with_active_stem_cells()
        if len(producing) > 1:
            raise InvariantViolation(f"multiple clones hold active stem cells: {[c.value for c in producing]}")
        if not 0.0 <= self.suppression_level <= 1.0:
            raise InvariantViolation(f"suppression level {self.suppression_level} outside [0, 1]")
        for cell in self.stem_cells():
            if not 0.0 <= cell.stem.suppression_level <= 1.0:
                raise InvariantViolation(
                    f"stem cell {cell.cell_id} suppression level {cell.stem.suppression_level} outside [0, 1]"
                )

    def most_recent_succession(self) -> Optional[SuccessionRecord]:
        return self.succession_history[-1] if self.succession_history else None

    def get_activation_metrics(self) -> dict[str, Any]:
        return {
            "activation_count": self.activation_count,
            "average_activation_interval": self.average_activation_interval,
            "activation_triggers": dict(self.activation_triggers),
            "last_activation_tick": {
                c.value: t for c, t in self.last_activation_tick.items()
            },
        }

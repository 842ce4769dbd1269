"""Population homeostasis controller.

Two adjustments run every tick:

- the shared division probability follows a piecewise function of
  population / target (maximum far below target, half the base rate far above);
- a reference death rate follows the symmetric piecewise function and scales
  overpopulation senescence.

Outside the tolerance band the controller either arms a temporary division
boost or forces a share of the excess into senescence. Three mechanisms run
periodically on a shared frame counter, staggered so they never coincide:

    boundary senescence     every 30 frames (frame % 30 == 0)
    resource competition    every 60 frames (frame % 60 == 20)
    balanced replacement    every 90 frames (frame % 90 == 40)

All three push cells to SENESCENT through Bernoulli trials whose
probabilities are clamped to [0, 1].
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Mapping, Optional, Sequence

import numpy as np
from scipy.stats import linregress

from ClonalSuccession.cell import CLONES, Cell, Clone, LifecycleState
from ClonalSuccession.events import (
    DeathRateAdjusted,
    DivisionRateAdjusted,
    DominantCloneChanged,
    EventQueue,
    PopulationCorrection,
)
from ClonalSuccession.lifecycle import CellLifecycleManager
from ClonalSuccession.spatial import SpatialQuery
from ClonalSuccession.stem_manager import StemCellManager
from ClonalSuccession.stochastic import bernoulli, random_subset

logger = logging.getLogger(__name__)

DIVISION_RATE_BASE = 0.008
DIVISION_RATE_MAX = 0.02
DEATH_RATE_BASE = 0.002
DEATH_RATE_MAX = 0.01
BOOST_MULTIPLIER = 1.5
BOOST_FRAMES = 120
OVERPOPULATION_FRACTION = 0.2

BOUNDARY_INTERVAL, BOUNDARY_PHASE = 30, 0
RESOURCE_INTERVAL, RESOURCE_PHASE = 60, 20
BALANCED_INTERVAL, BALANCED_PHASE = 90, 40

BOUNDARY_THRESHOLD = 0.15
BOUNDARY_PROBABILITY = 0.05

RESOURCE_MIN_DIVIDING = 10
RESOURCE_RADIUS = 20.0
RESOURCE_MAX_NEIGHBORS = 6
RESOURCE_THRESHOLD = 0.7
RESOURCE_FACTOR = 0.03

DOMINANT_SHARE = 0.4
DECLINE_WINDOW = 10
DECLINE_SLOPE = -0.5
DECLINE_MIN_COUNT = 5
HIGH_SENESCENCE_RATIO = 0.4
HIGH_SENESCENCE_MIN_COUNT = 5
LOW_BALANCE = 0.4
SELECTIVE_MIN_CELLS = 10
SELECTIVE_SHARE = 0.7
SELECTIVE_FRACTION = 0.05
SELECTIVE_PROBABILITY = 0.2

HISTORY_LENGTH = 100
TRANSITION_HISTORY_LENGTH = 10


# -----------------------------------------------------------------------------
# Piecewise rates and trend helpers
# -----------------------------------------------------------------------------

def division_rate_for(ratio: float, base: float = DIVISION_RATE_BASE, max_rate: float = DIVISION_RATE_MAX) -> float:
    """Division probability for a population / target ratio."""
    if ratio < 0.5:
        return max_rate
    if ratio > 1.2:
        return base * 0.5
    if ratio > 0.9:
        return base * max(0.5, 1 - (ratio - 0.9) * 5)
    return base * min(1 + (0.9 - ratio) * 2, 2.5)


def death_rate_for(ratio: float, base: float = DEATH_RATE_BASE, max_rate: float = DEATH_RATE_MAX) -> float:
    """Reference death rate for a population / target ratio."""
    if ratio > 1.5:
        return max_rate
    if ratio < 0.8:
        return base * 0.5
    if ratio > 1.0:
        return base * min(1 + (ratio - 1.0) * 3, 3.0)
    return base * max(0.5, ratio)


def clone_shares(counts: Mapping[Clone, int]) -> dict[Clone, float]:
    total = sum(counts.values())
    if total == 0:
        return {c: 0.0 for c in CLONES}
    return {c: counts.get(c, 0) / total for c in CLONES}


def find_dominant_clone(shares: Mapping[Clone, float], threshold: float = DOMINANT_SHARE) -> Optional[Clone]:
    """Clone with the largest share if that share reaches ``threshold``.

    Ties resolve to the first clone in canonical order.
    """
    best, best_share = None, 0.0
    for clone in CLONES:
        share = shares.get(clone, 0.0)
        if share > best_share:
            best, best_share = clone, share
    return best if best_share >= threshold else None


def trend_slope(samples: Sequence[float]) -> float:
    """Least-squares slope of ``samples`` against their index."""
    y = np.asarray(samples, dtype=np.float64)
    if y.size < 2:
        return 0.0
    return float(linregress(np.arange(y.size, dtype=np.float64), y).slope)


def find_declining_clones(history: Mapping[Clone, Sequence[int]]) -> list[Clone]:
    """Clones whose last ten samples fall faster than half a cell per sample."""
    declining = []
    for clone in CLONES:
        samples = list(history.get(clone, ()))
        if len(samples) < DECLINE_WINDOW:
            continue
        window = samples[-DECLINE_WINDOW:]
        if trend_slope(window) < DECLINE_SLOPE and window[-1] > DECLINE_MIN_COUNT:
            declining.append(clone)
    return declining


def clone_balance(shares: Mapping[Clone, float]) -> float:
    """1 for an even split across present clones, falling with the spread; 0.2 for a single clone."""
    present = [s for s in shares.values() if s > 0]
    if len(present) <= 1:
        return 0.2
    ideal = 1.0 / len(present)
    std = math.sqrt(sum((s - ideal) ** 2 for s in present) / len(present))
    return max(0.0, 1.0 - std * 3)


def count_balance(counts: Mapping[Clone, int]) -> float:
    """Balance from the coefficient of variation of present clone counts."""
    present = np.array([n for n in counts.values() if n > 0], dtype=np.float64)
    if present.size <= 1:
        return 0.2
    mean = float(present.mean())
    cv = float(present.std()) / mean if mean > 0 else 1.0
    return max(0.0, 1.0 - min(1.0, cv))


def replacement_ratio(divisions: int, deaths: int) -> float:
    if deaths > 0:
        return divisions / deaths
    return 2.0 if divisions > 0 else 1.0


# -----------------------------------------------------------------------------
# Controller
# -----------------------------------------------------------------------------

class PopulationController:
    """Closed-loop control of total population and clone balance."""

    def __init__(
        self,
        lifecycle: CellLifecycleManager,
        stem_manager: StemCellManager,
        rng: np.random.Generator,
        events: EventQueue,
        spatial: Optional[SpatialQuery] = None,
        target_population: int = 100,
        population_tolerance: float = 0.1,
    ) -> None:
        self.lifecycle = lifecycle
        self.stem_manager = stem_manager
        self.rng = rng
        self.events = events
        self.spatial = spatial
        self.target_population = max(10, int(target_population))
        self.population_tolerance = float(population_tolerance)
        self.reset()

    def reset(self) -> None:
        self.division_rate = DIVISION_RATE_BASE
        self.current_death_rate = DEATH_RATE_BASE
        self.boost_frames = 0
        self.population_history: deque[int] = deque(maxlen=HISTORY_LENGTH)
        self.clone_population_history = {c: deque(maxlen=HISTORY_LENGTH) for c in CLONES}
        self.population_stability = 1.0
        self.clone_balance = 1.0
        self.replacement_balance = 1.0
        self.replacement_ratio = 1.0
        self.boundary_effects = 0.0
        self.resource_competition = 0.0
        self.last_adjustment: Optional[dict] = None
        self.last_dominant_clone: Optional[Clone] = None
        self.clone_transitions: deque[tuple[int, Clone, Clone]] = deque(maxlen=TRANSITION_HISTORY_LENGTH)

    # -------------------------------------------------------------------------
    # Per-tick entry point
    # -------------------------------------------------------------------------

    def update(self, frame: int) -> None:
        population = self.lifecycle.get_cell_count()
        ratio = population / self.target_population
        self._track_population()
        self._adjust_division_rate(ratio)
        self._adjust_death_rate(ratio)

        lower = self.target_population * (1 - self.population_tolerance)
        upper = self.target_population * (1 + self.population_tolerance)
        if population < lower:
            self._boost_division_rate(population)
        elif population > upper:
            self._increase_senescence(population)

        if frame % BOUNDARY_INTERVAL == BOUNDARY_PHASE:
            self.apply_boundary_senescence()
        if frame % RESOURCE_INTERVAL == RESOURCE_PHASE:
            self.apply_resource_competition()
        if frame % BALANCED_INTERVAL == BALANCED_PHASE:
            self.update_balanced_replacement()
        self._update_metrics()

    def _track_population(self) -> None:
        self.population_history.append(self.lifecycle.get_cell_count())
        for clone, n in self.lifecycle.clone_counts().items():
            self.clone_population_history[clone].append(n)

    def _adjust_division_rate(self, ratio: float) -> None:
        rate = division_rate_for(ratio)
        boosted = self.boost_frames > 0
        if boosted:
            self.boost_frames -= 1
            rate = DIVISION_RATE_MAX * BOOST_MULTIPLIER
        if rate != self.division_rate:
            self.events.emit(DivisionRateAdjusted, rate=rate, population_ratio=ratio, boosted=boosted)
        self.division_rate = rate
        self.lifecycle.division_probability_base = rate

    def _adjust_death_rate(self, ratio: float) -> None:
        rate = death_rate_for(ratio)
        if rate != self.current_death_rate:
            self.events.emit(DeathRateAdjusted, rate=rate, population_ratio=ratio)
        self.current_death_rate = rate

    def _boost_division_rate(self, population: int) -> None:
        if self.boost_frames > 0:
            return
        self.boost_frames = BOOST_FRAMES
        self.last_adjustment = {"kind": "boost_division", "tick": self.events.tick, "population": population}
        self.events.emit(PopulationCorrection, kind="boost_division", population=population, target=self.target_population)

    def _increase_senescence(self, population: int) -> int:
        dividing = self.lifecycle.get_cells_by_state(LifecycleState.DIVIDING)
        excess = population - self.target_population
        count = min(len(dividing), math.ceil(excess * OVERPOPULATION_FRACTION))
        probability = self.current_death_rate / DEATH_RATE_MAX
        aged = 0
        for cell in random_subset(self.rng, dividing, count):
            if bernoulli(self.rng, probability):
                if self.lifecycle.force_senescence(cell, "overpopulation", probability, excess=excess):
                    aged += 1
        self.last_adjustment = {"kind": "increase_senescence", "tick": self.events.tick, "population": population}
        self.events.emit(PopulationCorrection, kind="increase_senescence", population=population, target=self.target_population)
        return aged

    # -------------------------------------------------------------------------
    # Periodic mechanisms
    # -------------------------------------------------------------------------

    def apply_boundary_senescence(self) -> int:
        """Age-weighted senescence for cells within 15% of the boundary radius."""
        if self.spatial is None:
            return 0
        candidates = (
            self.lifecycle.get_cells_by_state(LifecycleState.DIVIDING)
            + self.lifecycle.get_cells_by_state(LifecycleState.NON_DIVIDING)
        )
        affected = 0
        for cell in candidates:
            distance = self.spatial.distance_to_boundary(cell)
            if distance >= BOUNDARY_THRESHOLD:
                continue
            probability = BOUNDARY_PROBABILITY * (1 - distance / BOUNDARY_THRESHOLD) * cell.age_fraction * 1.5
            if bernoulli(self.rng, probability) and self.lifecycle.force_senescence(
                cell, "boundary", probability, distance_from_boundary=distance, age_fraction=cell.age_fraction
            ):
                affected += 1
                self.boundary_effects = min(1.0, self.boundary_effects + 0.05)
        if affected == 0:
            self.boundary_effects = max(0.0, self.boundary_effects - 0.01)
        else:
            logger.debug("Boundary senescence: %d cells", affected)
        return affected

    def apply_resource_competition(self) -> int:
        """Crowding-driven senescence among dividing cells."""
        if self.spatial is None:
            return 0
        dividing = self.lifecycle.get_cells_by_state(LifecycleState.DIVIDING)
        if len(dividing) < RESOURCE_MIN_DIVIDING:
            return 0
        total = self.lifecycle.get_cell_count()
        resource_factor = max(0.5, min(1.0, self.target_population / total))

        affected = 0
        for cell in dividing:
            neighbors = self._neighbor_cells(cell)
            crowding = min(1.0, len(neighbors) / RESOURCE_MAX_NEIGHBORS)
            if crowding <= RESOURCE_THRESHOLD:
                continue
            same_clone = sum(1 for n in neighbors if n.clone is cell.clone) / max(1, len(neighbors))
            probability = RESOURCE_FACTOR * (crowding - RESOURCE_THRESHOLD) / (1 - RESOURCE_THRESHOLD)
            probability *= 1 + same_clone * 0.5
            probability *= cell.age_fraction * 1.5
            probability *= 2 - resource_factor
            if bernoulli(self.rng, probability) and self.lifecycle.force_senescence(
                cell,
                "resource_competition",
                probability,
                neighbors=len(neighbors),
                same_clone_fraction=same_clone,
                crowding=crowding,
                resource_factor=resource_factor,
            ):
                affected += 1
                self.resource_competition = min(1.0, self.resource_competition + 0.05)
        if affected == 0:
            self.resource_competition = max(0.0, self.resource_competition - 0.01)
        else:
            logger.debug("Resource competition: %d cells", affected)
        return affected

    def _neighbor_cells(self, cell: Cell) -> list[Cell]:
        found = (self.lifecycle.get(i) for i in self.spatial.neighbors(cell, RESOURCE_RADIUS))
        return [n for n in found if n is not None]

    def update_balanced_replacement(self) -> None:
        """Per-clone threshold adjustment and selective pressure on a runaway clone."""
        counts = self.lifecycle.clone_counts()
        if sum(counts.values()) == 0:
            return
        state_counts = self.lifecycle.clone_state_counts()
        shares = clone_shares(counts)
        dominant = find_dominant_clone(shares)
        declining = find_declining_clones(self.clone_population_history)
        high_senescence = [
            c for c in CLONES
            if counts[c] > HIGH_SENESCENCE_MIN_COUNT
            and state_counts[c][LifecycleState.SENESCENT] / counts[c] > HIGH_SENESCENCE_RATIO
        ]

        self._track_dominant_clone(dominant)
        self.replacement_balance = clone_balance(shares)
        self.replacement_ratio = replacement_ratio(self.lifecycle.division_total, self.lifecycle.death_count)
        self._adjust_activation_thresholds(shares, dominant, declining, high_senescence)
        pressured = self.apply_selective_pressure(dominant)
        logger.debug(
            "Balanced replacement: dominant=%s declining=%s high_senescence=%s pressured=%d",
            dominant.value if dominant else None,
            [c.value for c in declining],
            [c.value for c in high_senescence],
            pressured,
        )

    def _track_dominant_clone(self, dominant: Optional[Clone]) -> None:
        if dominant is None or dominant is self.last_dominant_clone:
            return
        if self.last_dominant_clone is not None:
            self.clone_transitions.append((self.events.tick, self.last_dominant_clone, dominant))
            self.events.emit(DominantCloneChanged, previous=self.last_dominant_clone, current=dominant)
        self.last_dominant_clone = dominant

    def _adjust_activation_thresholds(
        self,
        shares: Mapping[Clone, float],
        dominant: Optional[Clone],
        declining: Sequence[Clone],
        high_senescence: Sequence[Clone],
    ) -> None:
        base = self.stem_manager.activation_threshold
        for clone in CLONES:
            factor = 1.0
            reasons = []
            if clone in declining:
                factor *= 0.7
                reasons.append("declining")
            if clone in high_senescence:
                factor *= 0.8
                reasons.append("high_senescence")
            if clone is dominant:
                factor *= 1.3
                reasons.append("dominant")
            if self.replacement_balance < LOW_BALANCE:
                if shares[clone] < 0.2:
                    factor *= 0.8
                    reasons.append("underrepresented")
                elif shares[clone] > 0.5:
                    factor *= 1.2
                    reasons.append("overrepresented")
            threshold = max(0.1, min(0.9, base * factor))
            self.stem_manager.set_clone_activation_threshold(clone, threshold, reasons)

    def apply_selective_pressure(self, dominant: Optional[Clone]) -> int:
        """Force the oldest 5% of a >70% clone's dividing cells senescent, 20% chance each."""
        if dominant is None:
            return 0
        members = self.lifecycle.get_cells_by_clone(dominant)
        if len(members) < SELECTIVE_MIN_CELLS:
            return 0
        share = len(members) / self.lifecycle.get_cell_count()
        if share <= SELECTIVE_SHARE:
            return 0
        count = math.ceil(len(members) * SELECTIVE_FRACTION)
        dividing = [c for c in members if c.state is LifecycleState.DIVIDING]
        oldest = sorted(dividing, key=lambda c: c.age, reverse=True)[:count]
        affected = 0
        for cell in oldest:
            if bernoulli(self.rng, SELECTIVE_PROBABILITY) and self.lifecycle.force_senescence(
                cell, "selective_pressure", SELECTIVE_PROBABILITY, dominance=share
            ):
                affected += 1
        return affected

    # -------------------------------------------------------------------------
    # Metrics / parameters
    # -------------------------------------------------------------------------

    def _update_metrics(self) -> None:
        current = self.population_history[-1] if self.population_history else 0
        self.population_stability = max(0.0, 1.0 - abs(1.0 - current / self.target_population))
        self.clone_balance = count_balance({c: h[-1] if h else 0 for c, h in self.clone_population_history.items()})

    def get_homeostasis_metrics(self) -> dict:
        return {
            "population_stability": self.population_stability,
            "clone_balance": self.clone_balance,
            "boundary_effects": self.boundary_effects,
            "resource_competition": self.resource_competition,
            "replacement_balance": self.replacement_balance,
            "replacement_ratio": self.replacement_ratio,
            "division_rate": self.division_rate,
            "death_rate": self.current_death_rate,
            "last_adjustment": self.last_adjustment,
        }

    def set_target_population(self, target: int) -> None:
        self.target_population = max(10, int(target))

    def set_population_tolerance(self, tolerance: float) -> None:
        self.population_tolerance = max(0.01, min(0.5, float(tolerance)))

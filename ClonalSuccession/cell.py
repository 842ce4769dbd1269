"""Cell state container for clonal succession simulations.

A single record type covers both ordinary cells and stem cells. Stem cells
carry an extra ``StemExtension`` payload and are distinguished by the explicit
``kind`` discriminant; behaviour that differs between the two is dispatched on
``kind`` rather than through subclassing.

Lifecycle: DIVIDING -> NON_DIVIDING -> SENESCENT -> removed. All delays are
frame countdowns decremented once per ``update`` call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from ClonalSuccession.stochastic import draw_max_age

DIVISION_THRESHOLD = 0.4
SENESCENCE_THRESHOLD = 0.7
DIVISION_COOLDOWN_FRAMES = 60
DIVIDING_FLAG_FRAMES = 30
NEWBORN_FRAMES = 48
TRANSITION_EFFECT_FRAMES = 30

CELL_LIFESPAN_BASE = 1000.0
STEM_LIFESPAN_BASE = 2000.0
LIFESPAN_JITTER = 500.0


class InvariantViolation(RuntimeError):
    """Raised when simulation state breaks an invariant that must always hold."""


class Clone(str, Enum):
    RED = "red"
    GREEN = "green"
    YELLOW = "yellow"


CLONES: tuple[Clone, ...] = (Clone.RED, Clone.GREEN, Clone.YELLOW)


class LifecycleState(str, Enum):
    DIVIDING = "dividing"
    NON_DIVIDING = "non-dividing"
    SENESCENT = "senescent"


_STATE_RANK = {
    LifecycleState.DIVIDING: 0,
    LifecycleState.NON_DIVIDING: 1,
    LifecycleState.SENESCENT: 2,
}


class CellKind(str, Enum):
    REGULAR = "regular"
    STEM = "stem"


class StemState(str, Enum):
    DORMANT = "dormant"
    ACTIVATING = "activating"
    ACTIVE = "active"
    DEPLETED = "depleted"


Transition = Tuple[LifecycleState, LifecycleState]


def parse_state(value: LifecycleState | str) -> Optional[LifecycleState]:
    """Resolve a state name; ``None`` for anything unrecognised."""
    if isinstance(value, LifecycleState):
        return value
    try:
        return LifecycleState(str(value))
    except ValueError:
        return None


@dataclass
class StemExtension:
    """Stem-only state: activity, suppression and activation bookkeeping."""
    max_divisions: int
    activation_threshold: float = 0.3
    is_active: bool = False
    suppression_level: float = 1.0
    activation_progress: float = 0.0
    suppression_strength: float = 0.0
    state: StemState = StemState.DORMANT


@dataclass(eq=False)
class Cell:
    """Mutable cell state for the succession simulation."""
    cell_id: int
    clone: Clone
    population: int
    max_age: float
    divisions_left: int
    parent_id: Optional[int] = None
    generation: int = 0
    age: int = 0
    state: LifecycleState = LifecycleState.DIVIDING
    can_divide: bool = True
    division_cooldown: int = 0
    division_count: int = 0
    dividing_frames: int = 0
    newborn_frames: int = NEWBORN_FRAMES
    transition_frames: int = 0
    kind: CellKind = CellKind.REGULAR
    stem: Optional[StemExtension] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if (self.kind is CellKind.STEM) != (self.stem is not None):
            raise ValueError("stem payload must be present exactly when kind is STEM")
        if self.divisions_left < 0:
            raise InvariantViolation(f"cell {self.cell_id} created with negative divisions_left")

    @property
    def is_stem(self) -> bool:
        return self.kind is CellKind.STEM

    @property
    def is_newborn(self) -> bool:
        return self.newborn_frames > 0

    @property
    def is_dividing(self) -> bool:
        """True for a short window after a division (division animation marker)."""
        return self.dividing_frames > 0

    @property
    def in_transition(self) -> bool:
        """True while the state-transition effect armed by the last transition is live."""
        return self.transition_frames > 0

    @property
    def age_fraction(self) -> float:
        return float(min(1.0, max(0.0, self.age / self.max_age)))

    def _set_state(self, new_state: LifecycleState) -> Transition:
        old = self.state
        self.state = new_state
        if new_state is not LifecycleState.DIVIDING:
            self.can_divide = False
        self.transition_frames = TRANSITION_EFFECT_FRAMES
        return old, new_state

    def _division_capacity_exhausted(self) -> bool:
        if self.kind is CellKind.STEM:
            return self.divisions_left <= 0
        return self.division_count >= self.divisions_left

    def update(self, senescent_extra_aging: int = 3) -> Optional[Transition]:
        """Advance one frame: age, countdowns and at most one state transition."""
        self.age += 1

        if self.division_cooldown > 0:
            self.division_cooldown -= 1
            if self.division_cooldown == 0 and self.state is LifecycleState.DIVIDING:
                self.can_divide = True
        if self.dividing_frames > 0:
            self.dividing_frames -= 1
        if self.newborn_frames > 0:
            self.newborn_frames -= 1
        if self.transition_frames > 0:
            self.transition_frames -= 1

        transition: Optional[Transition] = None
        if self.state is LifecycleState.DIVIDING:
            if self.age > self.max_age * DIVISION_THRESHOLD or (
                self.kind is CellKind.REGULAR and self._division_capacity_exhausted()
            ):
                transition = self._set_state(LifecycleState.NON_DIVIDING)
        elif self.state is LifecycleState.NON_DIVIDING:
            if self.age > self.max_age * SENESCENCE_THRESHOLD:
                transition = self._set_state(LifecycleState.SENESCENT)

        if self.state is LifecycleState.SENESCENT:
            self.age += senescent_extra_aging
        return transition

    def transition_state(self, target: LifecycleState | str) -> Optional[Transition]:
        """Move forward to ``target``; ``None`` when the request is not a valid forward move."""
        new_state = parse_state(target)
        if new_state is None:
            return None
        if _STATE_RANK[new_state] <= _STATE_RANK[self.state]:
            return None
        return self._set_state(new_state)

    def force_senescence(self) -> Optional[Transition]:
        return self.transition_state(LifecycleState.SENESCENT)

    def can_attempt_division(self) -> bool:
        if self.state is not LifecycleState.DIVIDING:
            return False
        if not self.can_divide or self.division_cooldown > 0:
            return False
        if self.kind is CellKind.STEM:
            return self.stem.is_active and self.divisions_left > 0
        return self.division_count < self.divisions_left

    def divide(self, child_id: int, rng: np.random.Generator) -> Optional["Cell"]:
        """Produce one ordinary daughter cell, or ``None`` if division is not allowed now."""
        if not self.can_attempt_division():
            return None
        self.division_count += 1
        self.division_cooldown = DIVISION_COOLDOWN_FRAMES
        self.can_divide = False
        self.dividing_frames = DIVIDING_FLAG_FRAMES
        return Cell(
            cell_id=child_id,
            clone=self.clone,
            population=self.population,
            max_age=draw_max_age(rng, CELL_LIFESPAN_BASE, LIFESPAN_JITTER),
            divisions_left=max(0, self.divisions_left - 1),
            parent_id=self.cell_id,
            generation=self.generation + 1,
        )

    def snapshot(self) -> dict:
        """Return lightweight snapshot dictionary for serialization."""
        row = {
            "cell_id": self.cell_id,
            "parent_id": self.parent_id,
            "clone": self.clone.value,
            "population": self.population,
            "generation": self.generation,
            "kind": self.kind.value,
            "state": self.state.value,
            "age": self.age,
            "max_age": round(self.max_age, 3),
            "divisions_left": self.divisions_left,
            "division_count": self.division_count,
            "stem_state": "",
            "is_active": "",
            "suppression_level": "",
            "activation_progress": "",
        }
        if self.stem is not None:
            row["stem_state"] = self.stem.state.value
            row["is_active"] = self.stem.is_active
            row["suppression_level"] = round(self.stem.suppression_level, 6)
            row["activation_progress"] = round(self.stem.activation_progress, 6)
        return row


def new_cell(
    cell_id: int,
    clone: Clone,
    rng: np.random.Generator,
    divisions_left: int,
    population: int = 1,
) -> Cell:
    """Create a seed (parentless) ordinary cell with a jittered lifespan."""
    return Cell(
        cell_id=cell_id,
        clone=clone,
        population=population,
        max_age=draw_max_age(rng, CELL_LIFESPAN_BASE, LIFESPAN_JITTER),
        divisions_left=divisions_left,
    )


def new_stem_cell(
    cell_id: int,
    clone: Clone,
    rng: np.random.Generator,
    max_divisions: int,
    activation_threshold: float,
    population: int = 1,
) -> Cell:
    """Create a dormant stem cell with a full division budget."""
    return Cell(
        cell_id=cell_id,
        clone=clone,
        population=population,
        max_age=draw_max_age(rng, STEM_LIFESPAN_BASE, LIFESPAN_JITTER),
        divisions_left=max_divisions,
        kind=CellKind.STEM,
        stem=StemExtension(
            max_divisions=max_divisions,
            activation_threshold=activation_threshold,
        ),
    )

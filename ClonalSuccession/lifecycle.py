"""Cell lifecycle manager.

Owns every live cell. Each tick it ages cells (emitting state changes and
deaths), attempts divisions under the capacity gate, retires division links
and samples the population counts into bounded ring buffers used for trend
detection and export.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np

from ClonalSuccession import stem
from ClonalSuccession.cell import CLONES, Cell, Clone, LifecycleState, Transition
from ClonalSuccession.events import (
    CellCreated,
    CellDied,
    CellDivided,
    CellStateChanged,
    EventQueue,
    SenescenceApplied,
)
from ClonalSuccession.spatial import SpatialQuery
from ClonalSuccession.stochastic import bernoulli, clamp_probability

logger = logging.getLogger(__name__)

DIVISION_PROBABILITY_BASE = 0.008
DIVISION_PROBABILITY_HIGH_GROWTH = 0.02
DIVISION_MIN_AGE = 25
DIVISION_LINK_LIFETIME = 60
HISTORY_LENGTH = 100

HISTORY_FIELDS = ["tick", "total"] + [s.value for s in LifecycleState] + [c.value for c in CLONES]


@dataclass
class DivisionLink:
    """Short-lived parent/child connection kept alive for a fixed number of frames."""
    parent_id: int
    child_id: int
    frames_left: int = DIVISION_LINK_LIFETIME


class CellLifecycleManager:
    """Creation, ageing, division and death of all cells."""

    def __init__(
        self,
        rng: np.random.Generator,
        events: EventQueue,
        spatial: Optional[SpatialQuery] = None,
        max_cells: int = 100,
        senescent_extra_aging: int = 3,
        history_length: int = HISTORY_LENGTH,
    ) -> None:
        self.rng = rng
        self.events = events
        self.spatial = spatial
        self.max_cells = max(10, int(max_cells))
        self.senescent_extra_aging = int(senescent_extra_aging)
        self.history_length = int(history_length)

        self.division_probability_base = DIVISION_PROBABILITY_BASE
        self.division_probability_high_growth = DIVISION_PROBABILITY_HIGH_GROWTH
        self.division_min_age = DIVISION_MIN_AGE

        self.cells: list[Cell] = []
        self._by_id: dict[int, Cell] = {}
        self.links: list[DivisionLink] = []
        self.next_cell_id = 0
        self._init_tracking()

    def _init_tracking(self) -> None:
        n = self.history_length
        self.tick_history: deque[int] = deque(maxlen=n)
        self.cell_count_history: deque[int] = deque(maxlen=n)
        self.state_count_history = {s: deque(maxlen=n) for s in LifecycleState}
        self.clone_count_history = {c: deque(maxlen=n) for c in CLONES}
        self.death_count = 0
        self.division_total = 0
        self.deaths_by_state = {s: 0 for s in LifecycleState}
        self.deaths_by_clone = {c: 0 for c in CLONES}

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def allocate_id(self) -> int:
        cid = self.next_cell_id
        self.next_cell_id += 1
        return cid

    def add_cell(self, cell: Cell, near: Optional[Cell] = None) -> Cell:
        if cell.cell_id in self._by_id:
            raise ValueError(f"cell id {cell.cell_id} already present")
        self.next_cell_id = max(self.next_cell_id, cell.cell_id + 1)
        self.cells.append(cell)
        self._by_id[cell.cell_id] = cell
        if self.spatial is not None:
            self.spatial.place(cell, near)
        self.events.emit(
            CellCreated,
            cell_id=cell.cell_id,
            clone=cell.clone,
            is_stem=cell.is_stem,
            parent_id=cell.parent_id,
        )
        return cell

    def remove_cell(self, cell: Cell) -> bool:
        if self._by_id.pop(cell.cell_id, None) is None:
            return False
        self.cells.remove(cell)
        self.links = [
            link for link in self.links
            if link.parent_id != cell.cell_id and link.child_id != cell.cell_id
        ]
        if self.spatial is not None:
            self.spatial.remove(cell)
        self.events.emit(
            CellDied,
            cell_id=cell.cell_id,
            clone=cell.clone,
            state=cell.state,
            age=cell.age,
            is_stem=cell.is_stem,
        )
        return True

    def get(self, cell_id: int) -> Optional[Cell]:
        return self._by_id.get(cell_id)

    def _emit_transition(self, cell: Cell, transition: Optional[Transition]) -> None:
        if transition is not None:
            old, new = transition
            self.events.emit(CellStateChanged, cell_id=cell.cell_id, clone=cell.clone, old_state=old, new_state=new)

    # -------------------------------------------------------------------------
    # Per-tick stages
    # -------------------------------------------------------------------------

    def update_cells(self) -> list[Cell]:
        """Age every cell by one frame. Returns the cells that died this frame."""
        dead: list[Cell] = []
        for cell in list(self.cells):
            self._emit_transition(cell, cell.update(self.senescent_extra_aging))
            if cell.is_stem:
                stem.step(cell)
            if cell.age > cell.max_age:
                self._handle_death(cell)
                dead.append(cell)
        self._update_links()
        self._record_tracking()
        return dead

    def process_divisions(self) -> list[tuple[Cell, Cell]]:
        """Attempt one division per eligible cell; stops at the capacity gate."""
        if len(self.cells) >= self.max_cells:
            return []
        births: list[tuple[Cell, Cell]] = []
        for cell in list(self.cells):
            if len(self.cells) + len(births) >= self.max_cells:
                break
            if cell.age <= self.division_min_age or not cell.can_attempt_division():
                continue
            if not bernoulli(self.rng, self.division_probability(cell)):
                continue
            child = cell.divide(self.allocate_id(), self.rng)
            if child is None:
                continue
            if cell.is_stem:
                self._emit_transition(cell, stem.record_division(cell))
            births.append((cell, child))

        for parent, child in births:
            self.add_cell(child, near=parent)
            self.links.append(DivisionLink(parent.cell_id, child.cell_id))
            self.events.emit(CellDivided, parent_id=parent.cell_id, child_id=child.cell_id, clone=child.clone)
        self.division_total += len(births)
        return births

    def division_probability(self, cell: Cell) -> float:
        """Per-frame division probability for ``cell`` given the current population."""
        if cell.state is not LifecycleState.DIVIDING:
            return 0.0
        n = len(self.cells)
        probability = self.division_probability_base
        if n < 10:
            probability = self.division_probability_high_growth
        elif n > self.max_cells * 0.8:
            ratio = (self.max_cells - n) / (self.max_cells * 0.2)
            probability *= max(0.1, ratio)
        if cell.age < self.division_min_age * 2:
            probability *= 0.5
        if cell.is_stem:
            probability *= 0.5
        return clamp_probability(probability)

    def force_senescence(self, cell: Cell, cause: str, probability: float, **details: Any) -> bool:
        """Push ``cell`` straight to SENESCENT on behalf of a homeostasis mechanism."""
        transition = cell.force_senescence()
        if transition is None:
            return False
        self._emit_transition(cell, transition)
        self.events.emit(
            SenescenceApplied,
            cell_id=cell.cell_id,
            clone=cell.clone,
            cause=cause,
            probability=float(probability),
            details=MappingProxyType(dict(details)),
        )
        return True

    def retire_cell(self, cell: Cell) -> bool:
        """Remove a live cell as a death, outside the ageing pass."""
        if cell.cell_id not in self._by_id:
            return False
        self._handle_death(cell)
        return True

    def _handle_death(self, cell: Cell) -> None:
        self.death_count += 1
        self.deaths_by_state[cell.state] += 1
        self.deaths_by_clone[cell.clone] += 1
        self.remove_cell(cell)

    def _update_links(self) -> None:
        for link in self.links:
            link.frames_left -= 1
        self.links = [link for link in self.links if link.frames_left > 0]

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def get_cell_count(self) -> int:
        return len(self.cells)

    def get_cells_by_state(self, state: LifecycleState) -> list[Cell]:
        return [c for c in self.cells if c.state is state]

    def get_cells_by_clone(self, clone: Clone) -> list[Cell]:
        return [c for c in self.cells if c.clone is clone]

    def get_stem_cells(self) -> list[Cell]:
        return [c for c in self.cells if c.is_stem]

    def clone_counts(self) -> dict[Clone, int]:
        return count_by_clone(self.cells)

    def state_counts(self) -> dict[LifecycleState, int]:
        counts = {s: 0 for s in LifecycleState}
        for cell in self.cells:
            counts[cell.state] += 1
        return counts

    def clone_state_counts(self) -> dict[Clone, dict[LifecycleState, int]]:
        return count_by_clone_and_state(self.cells)

    def get_death_statistics(self) -> dict:
        return {
            "total": self.death_count,
            "by_state": {s.value: n for s, n in self.deaths_by_state.items()},
            "by_clone": {c.value: n for c, n in self.deaths_by_clone.items()},
        }

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _record_tracking(self) -> None:
        tick = self.events.tick
        self.tick_history.append(tick)
        self.cell_count_history.append(len(self.cells))
        for state, n in self.state_counts().items():
            self.state_count_history[state].append(n)
        for clone, n in self.clone_counts().items():
            self.clone_count_history[clone].append(n)

    def history_rows(self) -> list[dict[str, int]]:
        """Ring-buffer contents as one row per sampled tick."""
        rows = []
        for i, tick in enumerate(self.tick_history):
            row = {"tick": tick, "total": self.cell_count_history[i]}
            for state in LifecycleState:
                row[state.value] = self.state_count_history[state][i]
            for clone in CLONES:
                row[clone.value] = self.clone_count_history[clone][i]
            rows.append(row)
        return rows

    def seed_history(self, rows: Iterable[Mapping[str, Any]]) -> None:
        """Replace the ring buffers with previously exported rows."""
        n = self.history_length
        self.tick_history = deque(maxlen=n)
        self.cell_count_history = deque(maxlen=n)
        self.state_count_history = {s: deque(maxlen=n) for s in LifecycleState}
        self.clone_count_history = {c: deque(maxlen=n) for c in CLONES}
        for row in rows:
            missing = set(HISTORY_FIELDS) - set(row.keys())
            if missing:
                raise ValueError(f"History row missing fields: {sorted(missing)}")
            self.tick_history.append(int(row["tick"]))
            self.cell_count_history.append(int(row["total"]))
            for state in LifecycleState:
                self.state_count_history[state].append(int(row[state.value]))
            for clone in CLONES:
                self.clone_count_history[clone].append(int(row[clone.value]))

    # -------------------------------------------------------------------------
    # Reset / parameters
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        self.cells = []
        self._by_id = {}
        self.links = []
        self.next_cell_id = 0
        self.division_probability_base = DIVISION_PROBABILITY_BASE
        if self.spatial is not None:
            self.spatial.clear()
        self._init_tracking()

    def set_max_cells(self, max_cells: int) -> None:
        self.max_cells = max(10, int(max_cells))


def count_by_clone(cells: Sequence[Cell]) -> dict[Clone, int]:
    counts = {c: 0 for c in CLONES}
    for cell in cells:
        counts[cell.clone] += 1
    return counts


def count_by_clone_and_state(cells: Sequence[Cell]) -> dict[Clone, dict[LifecycleState, int]]:
    counts = {c: {s: 0 for s in LifecycleState} for c in CLONES}
    for cell in cells:
        counts[cell.clone][cell.state] += 1
    return counts

"""Spatial collaborator for the succession core.

The core never moves cells itself. It asks a ``SpatialQuery`` to place new
cells near a parent or near the niche centre, to report neighbours within a
radius and to report how close a cell sits to the boundary. ``DiskSpace`` is
the default implementation: a circular cage whose radius follows the
population, with a light pairwise relaxation standing in for a physics engine.
"""

from __future__ import annotations

from typing import Optional, Protocol

import numpy as np
from scipy.spatial import cKDTree

from ClonalSuccession.cell import Cell
from ClonalSuccession.stochastic import random_offset


class SpatialQuery(Protocol):
    def place(self, cell: Cell, near: Optional[Cell] = None) -> None: ...

    def remove(self, cell: Cell) -> None: ...

    def neighbors(self, cell: Cell, radius: float) -> list[int]: ...

    def distance_to_boundary(self, cell: Cell) -> float: ...

    def update_boundary(self, population: int, capacity: int) -> None: ...

    def clear(self) -> None: ...


class DiskSpace:
    """Circular cage with cached KD-tree neighbour queries."""

    def __init__(
        self,
        rng: np.random.Generator,
        min_radius: float = 14.0,
        max_radius: float = 100.0,
        expansion_speed: float = 0.05,
        division_offset: float = 5.0,
        seed_jitter: float = 10.0,
        cell_spacing: float = 16.0,
    ) -> None:
        if not 0 < min_radius <= max_radius:
            raise ValueError("radii must satisfy 0 < min_radius <= max_radius")
        self.rng = rng
        self.min_radius = float(min_radius)
        self.max_radius = float(max_radius)
        self.expansion_speed = float(expansion_speed)
        self.division_offset = float(division_offset)
        self.seed_jitter = float(seed_jitter)
        self.cell_spacing = float(cell_spacing)
        self.radius = self.min_radius
        self._positions: dict[int, np.ndarray] = {}
        self._tree: Optional[cKDTree] = None
        self._tree_ids: list[int] = []

    # -------------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------------

    def place(self, cell: Cell, near: Optional[Cell] = None) -> None:
        if near is not None and near.cell_id in self._positions:
            pos = self._positions[near.cell_id] + random_offset(self.rng, self.division_offset)
        else:
            pos = (self.rng.random(2) - 0.5) * 2 * self.seed_jitter
        self._positions[cell.cell_id] = self._clamp(pos)
        self._tree = None

    def remove(self, cell: Cell) -> None:
        if self._positions.pop(cell.cell_id, None) is not None:
            self._tree = None

    def clear(self) -> None:
        self._positions.clear()
        self._tree = None
        self._tree_ids = []
        self.radius = self.min_radius

    def position(self, cell: Cell) -> Optional[np.ndarray]:
        pos = self._positions.get(cell.cell_id)
        return None if pos is None else pos.copy()

    def _clamp(self, pos: np.ndarray) -> np.ndarray:
        r = float(np.hypot(pos[0], pos[1]))
        limit = self.radius * 0.98
        if r > limit and r > 0:
            pos = pos * (limit / r)
        return pos

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _ensure_tree(self) -> None:
        if self._tree is None and self._positions:
            self._tree_ids = list(self._positions.keys())
            self._tree = cKDTree(np.vstack([self._positions[i] for i in self._tree_ids]))

    def neighbors(self, cell: Cell, radius: float) -> list[int]:
        pos = self._positions.get(cell.cell_id)
        if pos is None:
            return []
        self._ensure_tree()
        if self._tree is None:
            return []
        hits = self._tree.query_ball_point(pos, r=radius)
        return [self._tree_ids[i] for i in hits if self._tree_ids[i] != cell.cell_id]

    def distance_to_boundary(self, cell: Cell) -> float:
        """Distance to the cage wall as a fraction of the radius (1 at the centre)."""
        pos = self._positions.get(cell.cell_id)
        if pos is None:
            return 1.0
        return float((self.radius - np.hypot(pos[0], pos[1])) / self.radius)

    # -------------------------------------------------------------------------
    # Per-tick update
    # -------------------------------------------------------------------------

    def update_boundary(self, population: int, capacity: int) -> None:
        """Ease the cage radius toward its population-dependent target and relax overlaps."""
        ratio = min(1.0, population / capacity) if capacity > 0 else 0.0
        target = self.min_radius + (self.max_radius - self.min_radius) * np.sqrt(ratio)
        diff = target - self.radius
        if abs(diff) > 0.1:
            self.radius = float(np.clip(self.radius + diff * self.expansion_speed, self.min_radius, self.max_radius))
        self._relax()

    def _relax(self) -> None:
        if len(self._positions) < 2:
            return
        self._ensure_tree()
        pairs = self._tree.query_pairs(r=self.cell_spacing, output_type="ndarray")
        coords = np.vstack([self._positions[i] for i in self._tree_ids])
        if len(pairs):
            delta = coords[pairs[:, 1]] - coords[pairs[:, 0]]
            dist = np.hypot(delta[:, 0], delta[:, 1])
            # coincident cells get a random push direction
            zero = dist < 1e-9
            if np.any(zero):
                angles = self.rng.random(int(zero.sum())) * 2 * np.pi
                delta[zero] = np.column_stack([np.cos(angles), np.sin(angles)])
                dist[zero] = 1.0
            push = (0.25 * (self.cell_spacing - np.minimum(dist, self.cell_spacing)) / dist)[:, None] * delta
            shift = np.zeros_like(coords)
            np.add.at(shift, pairs[:, 0], -push)
            np.add.at(shift, pairs[:, 1], push)
            coords = coords + shift
        for idx, cid in enumerate(self._tree_ids):
            self._positions[cid] = self._clamp(coords[idx])
        self._tree = None

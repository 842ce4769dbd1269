"""
Tests for the default disk-shaped spatial collaborator.
"""

import numpy as np
import pytest

from ClonalSuccession.cell import Clone, new_cell
from ClonalSuccession.spatial import DiskSpace, SpatialQuery


def _cells(rng, n):
    return [new_cell(i, Clone.RED, rng, divisions_left=3) for i in range(n)]


class TestPlacement:
    """Placement, removal and neighbour queries."""

    def test_satisfies_protocol(self, rng):
        """DiskSpace implements every SpatialQuery method."""
        space = DiskSpace(rng)
        for name in ("place", "remove", "neighbors", "distance_to_boundary", "update_boundary", "clear"):
            assert callable(getattr(space, name)), f"missing {name}"
        assert hasattr(SpatialQuery, "place")

    def test_daughter_placed_near_parent(self, rng):
        """A daughter lands at the division offset from its parent."""
        space = DiskSpace(rng, min_radius=100.0, max_radius=100.0)
        parent, child = _cells(rng, 2)
        space.place(parent)
        space.place(child, near=parent)
        gap = np.linalg.norm(space.position(child) - space.position(parent))
        assert gap == pytest.approx(5.0), f"gap {gap}"

    def test_neighbors_exclude_self(self, rng):
        """Neighbour queries return other cells within the radius."""
        space = DiskSpace(rng, min_radius=100.0, max_radius=100.0)
        parent, child = _cells(rng, 2)
        space.place(parent)
        space.place(child, near=parent)
        assert space.neighbors(parent, 10.0) == [child.cell_id]
        assert space.neighbors(parent, 1.0) == []

    def test_removed_cells_have_no_position(self, rng):
        """Removed cells vanish from queries."""
        space = DiskSpace(rng)
        (cell,) = _cells(rng, 1)
        space.place(cell)
        space.remove(cell)
        assert space.position(cell) is None
        assert space.neighbors(cell, 50.0) == []
        assert space.distance_to_boundary(cell) == 1.0

    def test_positions_stay_inside_cage(self, rng):
        """Placed cells are clamped inside the wall."""
        space = DiskSpace(rng, min_radius=14.0, max_radius=14.0)
        for cell in _cells(rng, 20):
            space.place(cell)
            assert 0.0 < space.distance_to_boundary(cell) <= 1.0

    def test_invalid_radii(self, rng):
        """The minimum radius must be positive and not above the maximum."""
        with pytest.raises(ValueError):
            DiskSpace(rng, min_radius=50.0, max_radius=10.0)


class TestBoundary:
    """Cage growth and overlap relaxation."""

    def test_radius_eases_toward_target(self, rng):
        """The radius moves 5% of the way toward its population-dependent target."""
        space = DiskSpace(rng, min_radius=14.0, max_radius=280.0)
        space.update_boundary(100, 100)
        assert space.radius == pytest.approx(14.0 + 266.0 * 0.05)

    def test_relaxation_separates_close_cells(self, rng):
        """Cells closer than the spacing are pushed apart."""
        space = DiskSpace(rng, min_radius=100.0, max_radius=100.0)
        parent, child = _cells(rng, 2)
        space.place(parent)
        space.place(child, near=parent)
        space.update_boundary(2, 100)
        gap = np.linalg.norm(space.position(child) - space.position(parent))
        assert gap == pytest.approx(10.5), f"gap {gap}"

    def test_clear_restores_minimum_radius(self, rng):
        """clear drops all positions and shrinks the cage."""
        space = DiskSpace(rng, min_radius=14.0, max_radius=280.0)
        (cell,) = _cells(rng, 1)
        space.place(cell)
        space.update_boundary(100, 100)
        space.clear()
        assert space.radius == 14.0
        assert space.position(cell) is None

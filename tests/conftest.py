"""Shared fixtures: seeded RNG, event queue, a scripted spatial collaborator
and small cell factories."""

import itertools

import numpy as np
import pytest

from ClonalSuccession.cell import Clone, new_cell, new_stem_cell
from ClonalSuccession.events import EventQueue


class StubSpace:
    """Spatial collaborator with scripted neighbours and boundary distances."""

    def __init__(self):
        self.positions = set()
        self.adjacency = {}
        self.distances = {}
        self.boundary_updates = []

    def place(self, cell, near=None):
        self.positions.add(cell.cell_id)

    def remove(self, cell):
        self.positions.discard(cell.cell_id)

    def neighbors(self, cell, radius):
        return list(self.adjacency.get(cell.cell_id, []))

    def distance_to_boundary(self, cell):
        return self.distances.get(cell.cell_id, 1.0)

    def update_boundary(self, population, capacity):
        self.boundary_updates.append((population, capacity))

    def clear(self):
        self.positions.clear()


class StemFactory:
    """Stem-cell creation callback that records what it created."""

    def __init__(self, rng, start_id=1000):
        self.rng = rng
        self.ids = itertools.count(start_id)
        self.created = []

    def __call__(self, clone):
        cell = new_stem_cell(next(self.ids), clone, self.rng, max_divisions=25, activation_threshold=0.3)
        self.created.append(cell)
        return cell


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def events():
    return EventQueue()


@pytest.fixture
def stub_space():
    return StubSpace()


@pytest.fixture
def stem_factory(rng):
    return StemFactory(rng)


@pytest.fixture
def make_cells(rng):
    """Build ``count`` ordinary DIVIDING cells of one clone with a fixed age."""
    ids = itertools.count(100)

    def _make(clone, count, age=30, divisions_left=5):
        cells = []
        for _ in range(count):
            cell = new_cell(next(ids), clone, rng, divisions_left=divisions_left)
            cell.age = age
            cells.append(cell)
        return cells

    return _make


@pytest.fixture
def make_stem(rng):
    def _make(cell_id, clone=Clone.RED, max_divisions=25, threshold=0.3):
        return new_stem_cell(cell_id, clone, rng, max_divisions=max_divisions, activation_threshold=threshold)

    return _make

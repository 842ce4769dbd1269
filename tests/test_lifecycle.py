"""
Tests for the lifecycle manager: membership, the capacity gate on divisions,
deaths, division links and the population history buffers.
"""

import pytest

from ClonalSuccession import stem
from ClonalSuccession.cell import Clone, LifecycleState, StemState
from ClonalSuccession.events import CellCreated, CellDied, CellDivided, CellStateChanged, SenescenceApplied
from ClonalSuccession.lifecycle import DIVISION_LINK_LIFETIME, CellLifecycleManager


@pytest.fixture
def manager(rng, events, stub_space):
    return CellLifecycleManager(rng, events, spatial=stub_space, max_cells=10)


def _always_divide(manager):
    manager.division_probability = lambda cell: 1.0


class TestMembership:
    """Adding and removing cells."""

    def test_add_cell_emits_creation(self, manager, events, make_cells, stub_space):
        """New cells are tracked, placed and announced."""
        (cell,) = make_cells(Clone.RED, 1)
        manager.add_cell(cell)
        assert manager.get(cell.cell_id) is cell
        assert cell.cell_id in stub_space.positions
        created = [e for e in events.pending() if isinstance(e, CellCreated)]
        assert len(created) == 1 and created[0].cell_id == cell.cell_id

    def test_duplicate_id_rejected(self, manager, make_cells):
        """Ids are unique within the manager."""
        (cell,) = make_cells(Clone.RED, 1)
        manager.add_cell(cell)
        with pytest.raises(ValueError):
            manager.add_cell(cell)

    def test_allocated_ids_skip_added_ones(self, manager, make_cells):
        """allocate_id never returns an id already in use."""
        for cell in make_cells(Clone.RED, 3):
            manager.add_cell(cell)
        new_id = manager.allocate_id()
        assert all(new_id != c.cell_id for c in manager.cells), f"id {new_id} reused"


class TestDivisions:
    """Division attempts under the capacity gate."""

    def test_capacity_gate_blocks_at_max(self, manager, make_cells):
        """No division is attempted when the population equals capacity."""
        for cell in make_cells(Clone.RED, 10):
            manager.add_cell(cell)
        _always_divide(manager)
        assert manager.process_divisions() == []
        assert manager.get_cell_count() == 10

    def test_births_stop_at_capacity(self, manager, make_cells, events):
        """Births fill the remaining room and no more."""
        for cell in make_cells(Clone.RED, 8):
            manager.add_cell(cell)
        _always_divide(manager)
        births = manager.process_divisions()
        assert len(births) == 2, f"expected 2 births, got {len(births)}"
        assert manager.get_cell_count() == 10
        assert manager.division_total == 2
        divided = [e for e in events.pending() if isinstance(e, CellDivided)]
        assert len(divided) == 2
        assert len(manager.links) == 2

    def test_young_cells_do_not_divide(self, manager, make_cells):
        """Cells at or below the minimum division age wait."""
        for cell in make_cells(Clone.RED, 3, age=25):
            manager.add_cell(cell)
        _always_divide(manager)
        assert manager.process_divisions() == []

    def test_stem_last_division_depletes(self, manager, make_stem, events):
        """An active stem cell dividing on its last budget unit becomes DEPLETED and NON_DIVIDING."""
        cell = make_stem(0)
        stem.activate(cell)
        cell.age = 30
        cell.divisions_left = 1
        manager.add_cell(cell)
        _always_divide(manager)
        births = manager.process_divisions()
        assert len(births) == 1
        assert cell.stem.state is StemState.DEPLETED
        assert cell.state is LifecycleState.NON_DIVIDING
        changes = [e for e in events.pending() if isinstance(e, CellStateChanged) and e.cell_id == cell.cell_id]
        assert len(changes) == 1
        _, child = births[0]
        assert not child.is_stem
        assert child.divisions_left == 0

    def test_dormant_stem_cells_do_not_divide(self, manager, make_stem):
        """Only active stem cells divide."""
        cell = make_stem(0)
        cell.age = 30
        manager.add_cell(cell)
        _always_divide(manager)
        assert manager.process_divisions() == []


class TestDivisionProbability:
    """Population-dependent per-frame probability."""

    def test_small_population_uses_high_growth_rate(self, manager, make_cells):
        """Below ten cells the high-growth rate applies, halved for young cells."""
        cells = make_cells(Clone.RED, 3, age=60)
        cells[1].age = 30
        for cell in cells:
            manager.add_cell(cell)
        assert manager.division_probability(cells[0]) == pytest.approx(0.02)
        assert manager.division_probability(cells[1]) == pytest.approx(0.01)

    def test_damped_near_capacity(self, rng, events, make_cells):
        """Above 80% of capacity the base rate shrinks with the remaining room."""
        manager = CellLifecycleManager(rng, events, max_cells=100)
        for cell in make_cells(Clone.RED, 90, age=60):
            manager.add_cell(cell)
        assert manager.division_probability(manager.cells[0]) == pytest.approx(0.004)

    def test_stem_cells_divide_at_half_rate(self, manager, make_stem):
        """Stem cells use half the ordinary probability."""
        cell = make_stem(0)
        cell.age = 60
        manager.add_cell(cell)
        assert manager.division_probability(cell) == pytest.approx(0.01)

    def test_non_dividing_cells_zero(self, manager, make_cells):
        """Only DIVIDING cells have a division probability."""
        (cell,) = make_cells(Clone.RED, 1)
        cell.state = LifecycleState.NON_DIVIDING
        manager.add_cell(cell)
        assert manager.division_probability(cell) == 0.0


class TestAgeingAndDeath:
    """update_cells ageing, deaths and link expiry."""

    def test_cell_past_max_age_dies(self, manager, make_cells, events, stub_space):
        """A cell whose age passes max_age is removed and reported."""
        old, young = make_cells(Clone.GREEN, 2)
        old.age = int(old.max_age)
        old.state = LifecycleState.SENESCENT
        for cell in (old, young):
            manager.add_cell(cell)
        dead = manager.update_cells()
        assert dead == [old]
        assert manager.get(old.cell_id) is None
        assert old.cell_id not in stub_space.positions
        died = [e for e in events.pending() if isinstance(e, CellDied)]
        assert len(died) == 1 and died[0].state is LifecycleState.SENESCENT
        stats = manager.get_death_statistics()
        assert stats["total"] == 1
        assert stats["by_state"]["senescent"] == 1
        assert stats["by_clone"]["green"] == 1

    def test_retired_stem_counts_as_death(self, manager, make_stem, events):
        """Retiring a live stem cell removes it and records the death."""
        cell = make_stem(1, Clone.YELLOW)
        cell.state = LifecycleState.NON_DIVIDING
        manager.add_cell(cell)
        assert manager.retire_cell(cell)
        assert not manager.retire_cell(cell)
        assert manager.get_cell_count() == 0
        died = [e for e in events.pending() if isinstance(e, CellDied)]
        assert len(died) == 1 and died[0].is_stem
        stats = manager.get_death_statistics()
        assert stats["by_state"]["non-dividing"] == 1
        assert stats["by_clone"]["yellow"] == 1

    def test_division_links_expire(self, manager, make_cells):
        """Parent/child links last a fixed number of frames."""
        for cell in make_cells(Clone.RED, 2):
            manager.add_cell(cell)
        _always_divide(manager)
        manager.process_divisions()
        assert len(manager.links) == 2
        for _ in range(DIVISION_LINK_LIFETIME - 1):
            manager.update_cells()
        assert len(manager.links) == 2
        manager.update_cells()
        assert manager.links == []

    def test_force_senescence_reports_cause(self, manager, make_cells, events):
        """Forced senescence records the mechanism and refuses repeats."""
        (cell,) = make_cells(Clone.RED, 1)
        manager.add_cell(cell)
        assert manager.force_senescence(cell, "boundary", 0.5, distance_from_boundary=0.1)
        assert not manager.force_senescence(cell, "boundary", 0.5)
        applied = [e for e in events.pending() if isinstance(e, SenescenceApplied)]
        assert len(applied) == 1
        assert applied[0].cause == "boundary"
        assert applied[0].details["distance_from_boundary"] == 0.1


class TestHistory:
    """Ring-buffer history export and re-import."""

    def test_rows_follow_counts(self, manager, make_cells, events):
        """Each update appends one row with totals per state and clone."""
        for cell in make_cells(Clone.RED, 3) + make_cells(Clone.YELLOW, 2):
            manager.add_cell(cell)
        events.tick = 7
        manager.update_cells()
        (row,) = manager.history_rows()
        assert row["tick"] == 7
        assert row["total"] == 5
        assert row["red"] == 3 and row["yellow"] == 2 and row["green"] == 0
        assert row["dividing"] == 5

    def test_seed_history_round_trip(self, manager, make_cells, rng, events):
        """Rows exported from one manager reload identically into another."""
        for cell in make_cells(Clone.RED, 4):
            manager.add_cell(cell)
        for tick in range(5):
            events.tick = tick
            manager.update_cells()
        rows = manager.history_rows()
        other = CellLifecycleManager(rng, events)
        other.seed_history(rows)
        assert other.history_rows() == rows

    def test_seed_history_missing_field(self, manager):
        """Rows without every history field are rejected."""
        with pytest.raises(ValueError):
            manager.seed_history([{"tick": 0, "total": 1}])

    def test_clear_resets_everything(self, manager, make_cells):
        """clear drops cells, links, ids and history."""
        for cell in make_cells(Clone.RED, 3):
            manager.add_cell(cell)
        manager.update_cells()
        manager.clear()
        assert manager.get_cell_count() == 0
        assert manager.history_rows() == []
        assert manager.allocate_id() == 0

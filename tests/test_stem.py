"""
Tests for stem-cell behaviour: suppression smoothing, activation progress,
activation/deactivation and the division budget.
"""

import pytest

from ClonalSuccession import stem
from ClonalSuccession.cell import Clone, InvariantViolation, LifecycleState, StemState, new_cell


class TestSuppression:
    """Smoothed incoming suppression signal."""

    def test_smoothing_blends_toward_signal(self, make_stem):
        """Each call moves 10% of the way toward the incoming strength."""
        cell = make_stem(1, Clone.GREEN)
        level = stem.suppress(cell, 0.0)
        assert level == pytest.approx(0.9), f"level {level}"

    def test_level_stays_in_unit_interval(self, make_stem):
        """Out-of-range signals never push the level outside [0, 1]."""
        cell = make_stem(1, Clone.GREEN)
        for strength in (5.0, -3.0, 0.5, 2.0):
            for _ in range(20):
                level = stem.suppress(cell, strength)
                assert 0.0 <= level <= 1.0, f"level {level} after strength {strength}"

    def test_output_scales_with_budget_and_state(self, make_stem):
        """Active output = remaining budget fraction times the state multiplier."""
        cell = make_stem(1, Clone.RED, max_divisions=20)
        stem.activate(cell)
        cell.divisions_left = 10
        cell.state = LifecycleState.NON_DIVIDING
        assert stem.suppression_output(cell) == pytest.approx(0.35)

    def test_dormant_cells_emit_nothing(self, make_stem):
        """Only active stem cells produce suppression."""
        assert stem.suppression_output(make_stem(1)) == 0.0


class TestActivationProgress:
    """Dormant <-> activating hysteresis driven by the smoothed level."""

    def test_progress_grows_below_threshold(self, make_stem):
        """Below the threshold progress rises and crosses into ACTIVATING."""
        cell = make_stem(1, Clone.GREEN)
        cell.stem.suppression_level = 0.0
        cell.stem.activation_progress = 0.295
        stem.step(cell)
        assert cell.stem.activation_progress == pytest.approx(0.305)
        assert cell.stem.state is StemState.ACTIVATING

    def test_threshold_is_strict(self, make_stem):
        """A level exactly at the threshold counts as suppressed."""
        cell = make_stem(1, Clone.GREEN, threshold=0.3)
        cell.stem.suppression_level = 0.3
        cell.stem.activation_progress = 0.1
        stem.step(cell)
        assert cell.stem.activation_progress == pytest.approx(0.095)

    def test_progress_decays_back_to_dormant(self, make_stem):
        """Falling under 0.2 while suppressed returns the cell to DORMANT."""
        cell = make_stem(1, Clone.GREEN)
        cell.stem.state = StemState.ACTIVATING
        cell.stem.suppression_level = 1.0
        cell.stem.activation_progress = 0.2
        stem.step(cell)
        assert cell.stem.state is StemState.DORMANT

    def test_full_progress_resets_without_activating(self, make_stem):
        """Progress reaching 1.0 resets to zero; only the manager activates."""
        cell = make_stem(1, Clone.GREEN)
        cell.stem.suppression_level = 0.0
        cell.stem.activation_progress = 0.995
        stem.step(cell)
        assert cell.stem.activation_progress == 0.0
        assert not cell.stem.is_active

    def test_can_activate(self, make_stem):
        """Activation needs low suppression, budget left and an inactive cell."""
        cell = make_stem(1, Clone.GREEN, threshold=0.3)
        assert stem.can_activate(cell, 0.2)
        assert not stem.can_activate(cell, 0.3)
        cell.divisions_left = 0
        assert not stem.can_activate(cell, 0.2)


class TestActivation:
    """Manager-driven activation and deactivation."""

    def test_activate_once(self, make_stem):
        """Activation sets ACTIVE with full output; a second call is a no-op."""
        cell = make_stem(1)
        assert stem.activate(cell)
        assert cell.stem.is_active
        assert cell.stem.state is StemState.ACTIVE
        assert cell.stem.suppression_strength == pytest.approx(1.0)
        assert not stem.activate(cell)

    def test_deactivate(self, make_stem):
        """Deactivation returns the cell to DORMANT with zero output."""
        cell = make_stem(1)
        stem.activate(cell)
        assert stem.deactivate(cell)
        assert cell.stem.state is StemState.DORMANT
        assert cell.stem.suppression_strength == 0.0
        assert not stem.deactivate(cell)

    def test_non_stem_cell_rejected(self, rng):
        """Stem operations refuse ordinary cells."""
        with pytest.raises(TypeError):
            stem.step(new_cell(1, Clone.RED, rng, divisions_left=3))


class TestDivisionBudget:
    """Depletion on the last division."""

    def test_last_division_depletes(self, make_stem):
        """With one division left, a division depletes the cell and stops it dividing."""
        cell = make_stem(1)
        stem.activate(cell)
        cell.divisions_left = 1
        transition = stem.record_division(cell)
        assert transition == (LifecycleState.DIVIDING, LifecycleState.NON_DIVIDING), f"got {transition}"
        assert cell.divisions_left == 0
        assert cell.stem.state is StemState.DEPLETED
        assert not cell.can_attempt_division()

    def test_division_at_zero_is_invariant_violation(self, make_stem):
        """Recording a division with an empty budget raises."""
        cell = make_stem(1)
        cell.divisions_left = 0
        with pytest.raises(InvariantViolation):
            stem.record_division(cell)

    def test_step_marks_empty_budget_depleted(self, make_stem):
        """A cell found with no divisions left is DEPLETED after its next step."""
        cell = make_stem(1)
        cell.divisions_left = 0
        stem.step(cell)
        assert cell.stem.state is StemState.DEPLETED

    def test_health(self, make_stem):
        """Health is the remaining budget fraction."""
        cell = make_stem(1, max_divisions=20)
        cell.divisions_left = 5
        assert stem.health(cell) == pytest.approx(0.25)

    def test_health_zero_after_dividing_phase(self, make_stem):
        """A stem cell past DIVIDING keeps its budget but has no health left."""
        cell = make_stem(1, max_divisions=25)
        cell.state = LifecycleState.NON_DIVIDING
        assert cell.divisions_left == 25
        assert not stem.can_produce(cell)
        assert stem.health(cell) == 0.0

"""Stem-cell suppression and activation behaviour.

Functions here operate on a ``Cell`` whose ``kind`` is ``CellKind.STEM``.

Stem states: DORMANT -> ACTIVATING -> ACTIVE -> DEPLETED. DORMANT and
ACTIVATING swap back and forth with the activation progress; ACTIVE is only
entered through ``activate`` (called by the stem-cell manager); DEPLETED is
reached from any state once the division budget is exhausted.
"""

from __future__ import annotations

from typing import Optional

from ClonalSuccession.cell import (
    Cell,
    CellKind,
    InvariantViolation,
    LifecycleState,
    StemExtension,
    StemState,
    Transition,
)

ACTIVATION_RATE = 0.01
ACTIVATION_DECAY = 0.005
ACTIVATING_ENTER = 0.3
ACTIVATING_EXIT = 0.2
SUPPRESSION_INERTIA = 0.9

STATE_SUPPRESSION_MULTIPLIER = {
    LifecycleState.DIVIDING: 1.0,
    LifecycleState.NON_DIVIDING: 0.7,
    LifecycleState.SENESCENT: 0.3,
}
DEPLETED_SUPPRESSION_MULTIPLIER = 0.2


def _stem(cell: Cell) -> StemExtension:
    if cell.kind is not CellKind.STEM or cell.stem is None:
        raise TypeError(f"cell {cell.cell_id} is not a stem cell")
    return cell.stem


def _mark_depleted(cell: Cell, ext: StemExtension) -> None:
    if cell.divisions_left <= 0:
        ext.state = StemState.DEPLETED


def suppression_output(cell: Cell) -> float:
    """Suppression signal strength produced by an active stem cell."""
    ext = _stem(cell)
    if not ext.is_active or ext.max_divisions <= 0:
        return 0.0
    strength = (cell.divisions_left / ext.max_divisions) * STATE_SUPPRESSION_MULTIPLIER[cell.state]
    if ext.state is StemState.DEPLETED:
        strength *= DEPLETED_SUPPRESSION_MULTIPLIER
    return float(min(1.0, max(0.0, strength)))


def step(cell: Cell) -> None:
    """Per-frame stem update.

    Active cells refresh their suppression output. Dormant cells accumulate
    activation progress while their smoothed suppression is strictly below
    their activation threshold, and lose it otherwise. A full progress bar
    resets to zero; only the manager decides which clone activates.
    """
    ext = _stem(cell)
    _mark_depleted(cell, ext)

    if ext.is_active:
        ext.suppression_strength = suppression_output(cell)
        return
    if ext.state is StemState.DEPLETED:
        return

    if ext.suppression_level < ext.activation_threshold:
        ext.activation_progress += (1.0 - ext.suppression_level) * ACTIVATION_RATE
        if ext.activation_progress >= 1.0:
            ext.activation_progress = 0.0
    else:
        ext.activation_progress = max(0.0, ext.activation_progress - ACTIVATION_DECAY)

    if ext.state is StemState.DORMANT and ext.activation_progress > ACTIVATING_ENTER:
        ext.state = StemState.ACTIVATING
    elif ext.state is StemState.ACTIVATING and ext.activation_progress < ACTIVATING_EXIT:
        ext.state = StemState.DORMANT


def suppress(cell: Cell, strength: float) -> float:
    """Blend an incoming suppression signal into the cell's smoothed level."""
    ext = _stem(cell)
    level = ext.suppression_level * SUPPRESSION_INERTIA + strength * (1.0 - SUPPRESSION_INERTIA)
    ext.suppression_level = float(min(1.0, max(0.0, level)))
    return ext.suppression_level


def can_activate(cell: Cell, suppression_level: float) -> bool:
    ext = _stem(cell)
    return (
        suppression_level < ext.activation_threshold
        and cell.divisions_left > 0
        and not ext.is_active
    )


def activate(cell: Cell) -> bool:
    """Make this stem cell a producer. Returns ``False`` if it already was one."""
    ext = _stem(cell)
    if ext.is_active:
        return False
    ext.is_active = True
    ext.suppression_level = 0.0
    ext.activation_progress = 0.0
    ext.state = StemState.ACTIVE
    _mark_depleted(cell, ext)
    ext.suppression_strength = suppression_output(cell)
    return True


def deactivate(cell: Cell) -> bool:
    ext = _stem(cell)
    if not ext.is_active:
        return False
    ext.is_active = False
    ext.suppression_strength = 0.0
    ext.state = StemState.DORMANT
    _mark_depleted(cell, ext)
    return True


def record_division(cell: Cell) -> Optional[Transition]:
    """Consume one division from the stem budget.

    At zero the cell stops dividing and becomes DEPLETED in the same call.
    Returns the lifecycle transition when one happened.
    """
    ext = _stem(cell)
    if cell.divisions_left <= 0:
        raise InvariantViolation(
            f"stem cell {cell.cell_id} recorded a division with divisions_left={cell.divisions_left}"
        )
    cell.divisions_left -= 1
    if cell.divisions_left > 0:
        return None
    ext.state = StemState.DEPLETED
    cell.can_divide = False
    return cell.transition_state(LifecycleState.NON_DIVIDING)


def can_produce(cell: Cell) -> bool:
    """True while the stem cell is still in DIVIDING with budget left."""
    _stem(cell)
    return cell.state is LifecycleState.DIVIDING and cell.divisions_left > 0


def health(cell: Cell) -> float:
    """Remaining division fraction in [0, 1]; 0 once the cell can no longer divide."""
    ext = _stem(cell)
    if ext.max_divisions <= 0 or not can_produce(cell):
        return 0.0
    return float(min(1.0, max(0.0, cell.divisions_left / ext.max_divisions)))

"""Outbound events produced by the simulation core.

Components append typed, immutable events to a shared ``EventQueue`` while a
tick runs; the simulator drains the queue at the end of the tick and hands
the sequence to whoever consumes it (statistics, export, rendering).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Type, TypeVar

from ClonalSuccession.cell import Clone, LifecycleState


@dataclass(frozen=True)
class Event:
    tick: int


@dataclass(frozen=True)
class CellCreated(Event):
    cell_id: int
    clone: Clone
    is_stem: bool
    parent_id: Optional[int] = None


@dataclass(frozen=True)
class CellDivided(Event):
    parent_id: int
    child_id: int
    clone: Clone


@dataclass(frozen=True)
class CellStateChanged(Event):
    cell_id: int
    clone: Clone
    old_state: LifecycleState
    new_state: LifecycleState


@dataclass(frozen=True)
class CellDied(Event):
    cell_id: int
    clone: Clone
    state: LifecycleState
    age: int
    is_stem: bool


@dataclass(frozen=True)
class StemCellActivated(Event):
    cell_id: int
    clone: Clone


@dataclass(frozen=True)
class StemCellDeactivated(Event):
    cell_id: int
    clone: Clone


@dataclass(frozen=True)
class SuppressionLevelChanged(Event):
    level: float
    previous: float


@dataclass(frozen=True)
class ActivationThresholdChanged(Event):
    """Global threshold change when ``clone`` is None, otherwise per clone."""
    threshold: float
    clone: Optional[Clone] = None
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class DyingCellSignalRecorded(Event):
    count: int
    threshold: int


@dataclass(frozen=True)
class DivisionRateAdjusted(Event):
    rate: float
    population_ratio: float
    boosted: bool = False


@dataclass(frozen=True)
class DeathRateAdjusted(Event):
    rate: float
    population_ratio: float


@dataclass(frozen=True)
class SenescenceApplied(Event):
    """A cell forced senescent by homeostasis; ``cause`` names the mechanism."""
    cell_id: int
    clone: Clone
    cause: str
    probability: float
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class PopulationCorrection(Event):
    """Tolerance-band correction: ``kind`` is boost_division or increase_senescence."""
    kind: str
    population: int
    target: int


@dataclass(frozen=True)
class DominantCloneChanged(Event):
    previous: Clone
    current: Clone


@dataclass(frozen=True)
class SuccessionRecord:
    """Immutable account of one succession (clone swap)."""
    tick: int
    old_clone: Clone
    new_clone: Clone
    population_before: int
    population_ratio: float
    clone_counts_before: Mapping[Clone, int]
    state_counts_before: Mapping[Clone, Mapping[LifecycleState, int]]
    trigger: str
    urgency: int
    suppression_level: float
    activation_threshold: float
    dying_cell_signals: int
    selection_strategy: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick": self.tick,
            "old_clone": self.old_clone.value,
            "new_clone": self.new_clone.value,
            "population_before": self.population_before,
            "population_ratio": self.population_ratio,
            "clone_counts_before": {c.value: n for c, n in self.clone_counts_before.items()},
            "state_counts_before": {
                c.value: {s.value: n for s, n in counts.items()}
                for c, counts in self.state_counts_before.items()
            },
            "trigger": self.trigger,
            "urgency": self.urgency,
            "suppression_level": self.suppression_level,
            "activation_threshold": self.activation_threshold,
            "dying_cell_signals": self.dying_cell_signals,
            "selection_strategy": self.selection_strategy,
        }


@dataclass(frozen=True)
class SuccessionOccurred(Event):
    record: SuccessionRecord


E = TypeVar("E", bound=Event)


class EventQueue:
    """Per-tick buffer of outbound events."""

    def __init__(self) -> None:
        self.tick = 0
        self._events: list[Event] = []

    def emit(self, event_type: Type[E], **fields: Any) -> E:
        event = event_type(tick=self.tick, **fields)
        self._events.append(event)
        return event

    def drain(self) -> tuple[Event, ...]:
        events = tuple(self._events)
        self._events.clear()
        return events

    def pending(self) -> tuple[Event, ...]:
        return tuple(self._events)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

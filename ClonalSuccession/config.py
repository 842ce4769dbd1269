"""Simulation configuration for clonal succession dynamics.

Defines the population capacity, stem-cell activation threshold, division
limit, suppression strength and senescence rate used by the simulator.
Numeric values outside their documented range are clamped to the nearest
bound rather than rejected; the simulation is notional, not a validated model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# name -> (min, max)
PARAMETER_RANGES: dict[str, tuple[float, float]] = {
    "max_cells": (10, 200),
    "activation_threshold": (0.1, 0.9),
    "division_limit": (5, 50),
    "suppression_strength": (0.1, 2.0),
    "senescence_rate": (0.5, 2.0),
    "target_population": (10, 200),
    "population_tolerance": (0.01, 0.5),
    "dying_signal_threshold": (1, 100),
}

_INT_FIELDS = {"max_cells", "division_limit", "target_population", "dying_signal_threshold", "random_seed"}

# Names used by the browser parameter panel.
_ALIASES = {
    "maxCells": "max_cells",
    "activationThreshold": "activation_threshold",
    "divisionLimit": "division_limit",
    "suppressionStrength": "suppression_strength",
    "senescenceRate": "senescence_rate",
    "targetPopulation": "target_population",
    "populationTolerance": "population_tolerance",
    "dyingSignalThreshold": "dying_signal_threshold",
    "randomSeed": "random_seed",
}


def resolve_parameter_name(name: str) -> str:
    """Map a parameter-panel name to its config field name."""
    return _ALIASES.get(name, name)


def clamp_parameter(name: str, value: float) -> float:
    """Clamp a numeric parameter to its documented range, warning when it moves."""
    lo, hi = PARAMETER_RANGES[name]
    clamped = min(max(value, lo), hi)
    if clamped != value:
        logger.warning("%s=%s outside [%s, %s]; clamped to %s", name, value, lo, hi, clamped)
    return clamped


@dataclass(frozen=True)
class SuccessionConfig:
    """Configuration parameters for the clonal succession simulation."""
    max_cells: int = 100
    activation_threshold: float = 0.3
    division_limit: int = 25
    suppression_strength: float = 1.0
    senescence_rate: float = 1.0
    target_population: int | None = field(default=None)
    population_tolerance: float = 0.1
    dying_signal_threshold: int = 10
    random_seed: int = 0
    check_invariants: bool = True

    def __post_init__(self) -> None:
        if self.target_population is None:
            object.__setattr__(self, "target_population", self.max_cells)
        for name in PARAMETER_RANGES:
            raw = getattr(self, name)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise ValueError(f"{name} must be numeric; got {raw!r}")
            value = clamp_parameter(name, raw)
            if name in _INT_FIELDS:
                value = int(round(value))
            else:
                value = float(value)
            object.__setattr__(self, name, value)
        if isinstance(self.random_seed, bool) or not isinstance(self.random_seed, int):
            raise ValueError("random_seed must be an integer")
        if self.random_seed < 0:
            raise ValueError("random_seed must be non-negative")
        if not isinstance(self.check_invariants, bool):
            raise ValueError("check_invariants must be boolean")

    @property
    def senescent_extra_aging(self) -> int:
        """Extra frames a senescent cell ages per tick (3 at the default rate)."""
        return max(1, int(round(3 * self.senescence_rate)))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "SuccessionConfig":
        """Build a config from a flat key -> value mapping.

        Accepts both snake_case field names and the camelCase names used by
        the parameter panel. Unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in raw.items():
            name = resolve_parameter_name(key)
            if name not in known:
                raise ValueError(f"Unknown config field: {key}")
            if name in kwargs:
                raise ValueError(f"Duplicate config field: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

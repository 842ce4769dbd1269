"""Stochastic simulation utilities.

Seeded Bernoulli trials, jittered lifespans and weighted selection. Every
random draw in the simulator goes through a single ``np.random.Generator`` so
a run is reproducible from its seed and tick count.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

import numpy as np

T = TypeVar("T")


# -----------------------------------------------------------------------------
# Probabilities
# -----------------------------------------------------------------------------

def clamp_probability(p: float) -> float:
    """Bound a probability to [0, 1]; NaN is treated as 0."""
    if not np.isfinite(p):
        return 0.0 if np.isnan(p) else (1.0 if p > 0 else 0.0)
    return float(min(1.0, max(0.0, p)))


def bernoulli(rng: np.random.Generator, p: float) -> bool:
    """Single Bernoulli trial with an explicitly clamped success probability."""
    p = clamp_probability(p)
    if p <= 0.0:
        return False
    if p >= 1.0:
        return True
    return bool(rng.random() < p)


# -----------------------------------------------------------------------------
# Draws
# -----------------------------------------------------------------------------

def draw_max_age(rng: np.random.Generator, base: float, jitter: float) -> float:
    """Draw a per-cell lifespan uniformly from [base, base + jitter)."""
    if base <= 0:
        raise ValueError("base lifespan must be positive")
    if jitter < 0:
        raise ValueError("jitter must be non-negative")
    return float(base + rng.random() * jitter)


def random_offset(rng: np.random.Generator, distance: float) -> np.ndarray:
    """Offset of fixed length in a uniformly random direction."""
    angle = rng.random() * 2 * np.pi
    return np.array([np.cos(angle), np.sin(angle)], dtype=np.float64) * distance


def weighted_choice(rng: np.random.Generator, items: Sequence[T], weights: Sequence[float]) -> T:
    """Pick one item with probability proportional to its non-negative weight."""
    if len(items) == 0:
        raise ValueError("items must be non-empty")
    w = np.asarray(weights, dtype=np.float64)
    if w.shape != (len(items),):
        raise ValueError("weights must match items")
    w = np.where(np.isfinite(w) & (w > 0), w, 0.0)
    total = float(w.sum())
    if total <= 0:
        raise ValueError("at least one weight must be positive")
    idx = int(rng.choice(len(items), p=w / total))
    return items[idx]


def random_subset(rng: np.random.Generator, items: Sequence[T], count: int) -> list[T]:
    """Sample ``count`` distinct items without replacement (order is random)."""
    count = max(0, min(int(count), len(items)))
    if count == 0:
        return []
    idx = rng.choice(len(items), size=count, replace=False)
    return [items[int(i)] for i in idx]

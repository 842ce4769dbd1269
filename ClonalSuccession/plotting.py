"""Static figures for a finished run."""

from __future__ import annotations

import pathlib
from typing import Mapping, Optional, Sequence

import numpy as np

from ClonalSuccession.cell import CLONES, LifecycleState
from ClonalSuccession.events import SuccessionRecord

CLONE_COLORS = {"red": "#d62728", "green": "#2ca02c", "yellow": "#e6b800"}
STATE_STYLES = {
    LifecycleState.DIVIDING.value: "-",
    LifecycleState.NON_DIVIDING.value: "--",
    LifecycleState.SENESCENT.value: ":",
}


def plot_population_history(
    rows: Sequence[Mapping[str, int]],
    records: Sequence[SuccessionRecord] = (),
    output_path: Optional[str | pathlib.Path] = None,
    capacity: Optional[int] = None,
    title: str = "Clonal succession",
):
    """Plot clone and lifecycle-state counts over time with succession markers.

    Args:
        rows: History rows as produced by ``SuccessionSimulator.history_rows``.
        records: Succession records to mark as vertical lines.
        output_path: Optional path to save the figure
        capacity: Optional population capacity drawn as a horizontal line.
        title: Plot title
    """
    import matplotlib.pyplot as plt

    if not rows:
        raise ValueError("No history rows to plot")
    ticks = np.array([r["tick"] for r in rows])

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 7), sharex=True)

    ax1.plot(ticks, [r["total"] for r in rows], color="black", linewidth=1.5, label="total")
    for clone in CLONES:
        ax1.plot(ticks, [r[clone.value] for r in rows], color=CLONE_COLORS[clone.value], label=clone.value)
    if capacity is not None:
        ax1.axhline(capacity, color="grey", linestyle="--", linewidth=0.8, label="capacity")
    ax1.set_ylabel("Cells")
    ax1.legend(fontsize=8, loc="upper left")

    for state, style in STATE_STYLES.items():
        ax2.plot(ticks, [r[state] for r in rows], color="black", linestyle=style, label=state)
    ax2.set_xlabel("Tick")
    ax2.set_ylabel("Cells")
    ax2.legend(fontsize=8, loc="upper left")

    lo, hi = ticks.min(), ticks.max()
    for record in records:
        if lo <= record.tick <= hi:
            for ax in (ax1, ax2):
                ax.axvline(record.tick, color=CLONE_COLORS[record.new_clone.value], alpha=0.6, linewidth=1)
            ax1.annotate(
                record.trigger,
                xy=(record.tick, ax1.get_ylim()[1]),
                fontsize=6,
                rotation=90,
                va="top",
                ha="right",
            )

    fig.suptitle(title)
    plt.tight_layout()

    if output_path:
        plt.savefig(output_path, dpi=150)
        plt.close()
    else:
        plt.show()

    return fig

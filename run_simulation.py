from __future__ import annotations

import argparse
import dataclasses
import logging
import pathlib
from typing import Sequence

from ClonalSuccession.config import SuccessionConfig
from ClonalSuccession.events import SuccessionOccurred
from ClonalSuccession.io import (
    load_simulation_config,
    save_population_history_csv,
    save_snapshot_csv,
    save_succession_records_json,
    save_summary_json,
)
from ClonalSuccession.simulator import SuccessionSimulator


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a clonal succession simulation.")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to simulation YAML config (default: built-in defaults)",
    )
    parser.add_argument("--ticks", type=int, default=2000, help="Number of ticks to run (default: 2000)")
    parser.add_argument("--out-dir", default="output", help="Directory for output files (default: output)")
    parser.add_argument("--seed", type=int, default=None, help="Override random_seed from the config")
    parser.add_argument("--plot", action="store_true", help="Save a population history figure")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SuccessionConfig:
    config = load_simulation_config(args.config) if args.config else SuccessionConfig()
    if args.seed is not None:
        config = dataclasses.replace(config, random_seed=args.seed)
    return config


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.ticks < 0:
        raise ValueError("--ticks must be non-negative")

    config = build_config(args)
    simulator = SuccessionSimulator(config)

    history: list[dict[str, int]] = []
    records = []
    for _ in range(args.ticks):
        for event in simulator.tick():
            if isinstance(event, SuccessionOccurred):
                records.append(event.record)
        history.append(simulator.history_rows()[-1])

    out_dir = pathlib.Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    history_path = out_dir / "population_history.csv"
    records_path = out_dir / "succession_events.json"
    snapshot_path = out_dir / "cells_final.csv"
    summary_path = out_dir / "summary.json"

    if history:
        save_population_history_csv(history, history_path)
        print(f"Wrote population history to {history_path}")
    save_succession_records_json(records, records_path)
    print(f"Wrote {len(records)} succession events to {records_path}")
    snapshots = simulator.cell_snapshots()
    if snapshots:
        save_snapshot_csv(snapshots, snapshot_path)
        print(f"Wrote {len(snapshots)} cell snapshots to {snapshot_path}")
    save_summary_json(simulator.summary(), summary_path)
    print(f"Wrote summary to {summary_path}")

    if args.plot and history:
        from ClonalSuccession.plotting import plot_population_history

        plot_path = out_dir / "population_history.png"
        plot_population_history(history, records, output_path=plot_path, capacity=config.max_cells)
        print(f"Wrote figure to {plot_path}")


if __name__ == "__main__":
    main()

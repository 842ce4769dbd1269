"""I/O utilities for simulation input/output.

Handles loading the YAML configuration, exporting and re-importing the
population history, and saving succession records, run summaries and
per-cell snapshots.
"""

from __future__ import annotations

import csv
import json
import os
import pathlib
from typing import Any, Iterable, Mapping, Sequence

import yaml

from ClonalSuccession.config import SuccessionConfig
from ClonalSuccession.events import SuccessionRecord
from ClonalSuccession.lifecycle import HISTORY_FIELDS

_SNAPSHOT_FIELDS = [
    "cell_id",
    "parent_id",
    "clone",
    "population",
    "generation",
    "kind",
    "state",
    "age",
    "max_age",
    "divisions_left",
    "division_count",
    "stem_state",
    "is_active",
    "suppression_level",
    "activation_progress",
]


# -----------------------------------------------------------------------------
# Configuration loading
# -----------------------------------------------------------------------------

def _check_readable(path: pathlib.Path, label: str) -> None:
    if not path.exists():
        raise ValueError(f"{label} not found: {path}")
    if not path.is_file():
        raise ValueError(f"{label} is not a file: {path}")
    if not os.access(path, os.R_OK):
        raise ValueError(f"{label} is not readable: {path}")


def load_simulation_config(path: str | pathlib.Path) -> SuccessionConfig:
    """Load simulation configuration from a flat YAML mapping.

    Keys may use config field names or the parameter-panel camelCase names.
    An empty file yields the defaults.
    """
    path = pathlib.Path(path)
    _check_readable(path, "config")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    try:
        return SuccessionConfig.from_mapping(raw)
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc


def save_simulation_config(config: SuccessionConfig, path: str | pathlib.Path) -> None:
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)


# -----------------------------------------------------------------------------
# Population history
# -----------------------------------------------------------------------------

def save_population_history_csv(rows: Sequence[Mapping[str, Any]], path: str | pathlib.Path) -> None:
    """Save per-tick population counts (tick, total, per state, per clone)."""
    if not rows:
        raise ValueError("No history rows to write")
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=HISTORY_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def load_population_history_csv(path: str | pathlib.Path) -> list[dict[str, int]]:
    """Load a population history written by ``save_population_history_csv``."""
    with open(path, "r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = set(HISTORY_FIELDS) - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"History CSV {path} missing columns: {sorted(missing)}")
        rows = []
        for line_no, row in enumerate(reader, start=2):
            try:
                rows.append({key: int(row[key]) for key in HISTORY_FIELDS})
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid integer in {path} line {line_no}") from exc
    if not rows:
        raise ValueError(f"No history rows found in {path}")
    return rows


# -----------------------------------------------------------------------------
# Succession records / summaries
# -----------------------------------------------------------------------------

def save_succession_records_json(records: Iterable[SuccessionRecord], path: str | pathlib.Path) -> None:
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    payload = [record.to_dict() for record in records]
    with open(path_obj, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)


def load_succession_records_json(path: str | pathlib.Path) -> list[dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, list):
        raise ValueError(f"Succession record file must contain a JSON list: {path}")
    return payload


def save_summary_json(summary: Mapping[str, Any], path: str | pathlib.Path) -> None:
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2, default=str)


# -----------------------------------------------------------------------------
# Cell snapshots
# -----------------------------------------------------------------------------

def save_snapshot_csv(rows: Sequence[Mapping[str, object]], path: str | pathlib.Path) -> None:
    """Save per-cell snapshot rows to CSV."""
    if not rows:
        raise ValueError("No snapshot rows to write")
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=_SNAPSHOT_FIELDS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def load_snapshot_csv(path: str | pathlib.Path) -> list[dict[str, object]]:
    with open(path, "r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        rows = [dict(row) for row in reader]
    if not rows:
        raise ValueError(f"No snapshot rows found in {path}")
    return rows

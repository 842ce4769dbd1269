"""
Tests for configuration parsing and the export/import helpers.
"""

import json
import logging

import pytest

from ClonalSuccession.config import SuccessionConfig, clamp_parameter, resolve_parameter_name
from ClonalSuccession.io import (
    load_population_history_csv,
    load_simulation_config,
    load_snapshot_csv,
    load_succession_records_json,
    save_population_history_csv,
    save_simulation_config,
    save_snapshot_csv,
    save_succession_records_json,
    save_summary_json,
)
from ClonalSuccession.simulator import SuccessionSimulator


class TestConfig:
    """Validation and clamping of SuccessionConfig."""

    def test_defaults(self):
        """Defaults match the documented parameter table."""
        cfg = SuccessionConfig()
        assert cfg.max_cells == 100
        assert cfg.activation_threshold == 0.3
        assert cfg.division_limit == 25
        assert cfg.target_population == 100
        assert cfg.senescent_extra_aging == 3

    def test_out_of_range_values_clamped(self, caplog):
        """Values outside their range are clamped with a warning."""
        with caplog.at_level(logging.WARNING, logger="ClonalSuccession.config"):
            cfg = SuccessionConfig(max_cells=500, division_limit=1, activation_threshold=-1.0)
        assert cfg.max_cells == 200
        assert cfg.division_limit == 5
        assert cfg.activation_threshold == 0.1
        assert "clamped" in caplog.text

    def test_target_defaults_to_capacity(self):
        """An unset target follows max_cells."""
        assert SuccessionConfig(max_cells=60).target_population == 60

    def test_integer_fields_rounded(self):
        """Integer parameters are stored as ints."""
        cfg = SuccessionConfig(max_cells=55.6)
        assert cfg.max_cells == 56 and isinstance(cfg.max_cells, int)

    def test_non_numeric_rejected(self):
        """Non-numeric values are errors, not clamps."""
        with pytest.raises(ValueError):
            SuccessionConfig(max_cells="many")
        with pytest.raises(ValueError):
            SuccessionConfig(suppression_strength=True)

    def test_negative_seed_rejected(self):
        """Seeds must be non-negative integers."""
        with pytest.raises(ValueError):
            SuccessionConfig(random_seed=-1)

    def test_senescence_rate_scales_extra_aging(self):
        """Doubling the senescence rate doubles the extra ageing."""
        assert SuccessionConfig(senescence_rate=2.0).senescent_extra_aging == 6

    def test_from_mapping_accepts_panel_names(self):
        """camelCase parameter-panel names map onto config fields."""
        cfg = SuccessionConfig.from_mapping({"maxCells": 80, "suppression_strength": 1.5})
        assert cfg.max_cells == 80
        assert cfg.suppression_strength == 1.5

    def test_from_mapping_rejects_unknown_and_duplicates(self):
        """Unknown keys and a field given under two names are errors."""
        with pytest.raises(ValueError):
            SuccessionConfig.from_mapping({"gravity": 1})
        with pytest.raises(ValueError):
            SuccessionConfig.from_mapping({"maxCells": 80, "max_cells": 90})

    def test_helpers(self):
        """Alias resolution and clamping helpers."""
        assert resolve_parameter_name("dyingSignalThreshold") == "dying_signal_threshold"
        assert resolve_parameter_name("max_cells") == "max_cells"
        assert clamp_parameter("population_tolerance", 0.3) == 0.3
        assert clamp_parameter("population_tolerance", 0.9) == 0.5


class TestConfigFiles:
    """YAML loading and saving."""

    def test_load_yaml(self, tmp_path):
        """A flat YAML mapping becomes a config."""
        path = tmp_path / "config.yaml"
        path.write_text("max_cells: 120\nactivationThreshold: 0.4\nrandom_seed: 9\n", encoding="utf-8")
        cfg = load_simulation_config(path)
        assert (cfg.max_cells, cfg.activation_threshold, cfg.random_seed) == (120, 0.4, 9)

    def test_empty_file_gives_defaults(self, tmp_path):
        """An empty YAML file yields the default config."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_simulation_config(path) == SuccessionConfig()

    def test_non_mapping_rejected(self, tmp_path):
        """YAML lists are not configs."""
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_simulation_config(path)

    def test_missing_file(self, tmp_path):
        """Missing files raise ValueError naming the path."""
        with pytest.raises(ValueError, match="not found"):
            load_simulation_config(tmp_path / "absent.yaml")

    def test_unknown_key_names_file(self, tmp_path):
        """Field errors are prefixed with the file path."""
        path = tmp_path / "bad.yaml"
        path.write_text("gravity: 1\n", encoding="utf-8")
        with pytest.raises(ValueError, match="bad.yaml"):
            load_simulation_config(path)

    def test_save_then_load(self, tmp_path):
        """A saved config loads back equal."""
        cfg = SuccessionConfig(max_cells=70, target_population=65, random_seed=4)
        path = tmp_path / "out" / "config.yaml"
        save_simulation_config(cfg, path)
        assert load_simulation_config(path) == cfg


class TestExports:
    """History, record, summary and snapshot files."""

    @pytest.fixture(scope="class")
    def finished(self):
        sim = SuccessionSimulator()
        records = sim.run(150)
        return sim, records

    def test_history_csv_reseeds_simulator(self, finished, tmp_path):
        """An exported history reloads into a new simulator unchanged."""
        sim, _ = finished
        path = tmp_path / "history.csv"
        save_population_history_csv(sim.history_rows(), path)
        rows = load_population_history_csv(path)
        assert rows == sim.history_rows()
        other = SuccessionSimulator()
        other.seed_history(rows)
        assert other.history_rows() == rows

    def test_history_csv_missing_column(self, tmp_path):
        """A history file without every column is rejected."""
        path = tmp_path / "history.csv"
        path.write_text("tick,total\n0,1\n", encoding="utf-8")
        with pytest.raises(ValueError, match="missing columns"):
            load_population_history_csv(path)

    def test_history_csv_bad_integer(self, tmp_path):
        """Non-integer counts are reported with their line."""
        path = tmp_path / "history.csv"
        path.write_text(
            "tick,total,dividing,non-dividing,senescent,red,green,yellow\n0,x,1,0,0,1,0,0\n",
            encoding="utf-8",
        )
        with pytest.raises(ValueError, match="line 2"):
            load_population_history_csv(path)

    def test_succession_records_json(self, finished, tmp_path):
        """Succession records serialise to plain JSON."""
        _, records = finished
        assert records, "expected the early crash trigger to produce a succession"
        path = tmp_path / "records.json"
        save_succession_records_json(records, path)
        payload = load_succession_records_json(path)
        assert payload[0]["trigger"] == records[0].trigger
        assert payload[0]["old_clone"] == "red"

    def test_summary_json(self, finished, tmp_path):
        """The summary is valid JSON with config and metrics."""
        sim, _ = finished
        path = tmp_path / "summary.json"
        save_summary_json(sim.summary(), path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["config"]["max_cells"] == 100
        assert "homeostasis" in data and "activation_metrics" in data

    def test_snapshot_csv(self, finished, tmp_path):
        """Per-cell snapshots write one row per live cell."""
        sim, _ = finished
        path = tmp_path / "cells.csv"
        save_snapshot_csv(sim.cell_snapshots(), path)
        rows = load_snapshot_csv(path)
        assert len(rows) == sim.lifecycle.get_cell_count()
        assert {r["kind"] for r in rows} <= {"regular", "stem"}

"""Tests for dataset generation, output writing, and the CLI."""
import hashlib
import json
import runpy
import sys
from pathlib import Path

import pandas as pd
import pytest

from synthhealth_gen.config import GeneratorConfig
from synthhealth_gen.io import FRAME_NAMES, create_batches
from synthhealth_gen.pipeline import generate_dataset
from synthhealth_gen.sanity import run_sanity_checks

ROOT = Path(__file__).resolve().parents[1]


def _small_cfg(**overrides):
    cfg = GeneratorConfig(n_users=3, n_days=5, reference_date="2024-03-15", out_format="csv")
    for k, v in overrides.items():
        setattr(cfg, k, v)
    return cfg


class TestGenerateDataset:
    """End-to-end generation to disk"""

    def test_outputs_and_metadata(self, tmp_path):
        res = generate_dataset(_small_cfg(), str(tmp_path))
        meta = json.loads(Path(res["metadata_path"]).read_text(encoding="utf-8"))
        assert meta["counts"]["n_users"] == 3
        assert meta["counts"]["n_steps_rows"] == 15
        assert meta["reference"]["today"] == "2024-03-15"
        for name in ["users"] + FRAME_NAMES:
            assert f"{name}_csv" in res["outputs"]
        for entry in meta["files"].values():
            digest = hashlib.sha256(Path(entry["path"]).read_bytes()).hexdigest()
            assert digest == entry["sha256"]

    def test_sanity_report_ok(self, tmp_path):
        res = generate_dataset(_small_cfg(), str(tmp_path))
        report = json.loads(Path(res["sanity_report_path"]).read_text(encoding="utf-8"))
        assert report["summary"]["ok"], [c for c in report["checks"] if not c["ok"]]

    def test_steps_table(self, tmp_path):
        generate_dataset(_small_cfg(), str(tmp_path), run_checks=False)
        steps = pd.read_csv(tmp_path / "steps_daily.csv")
        assert steps["date"].max() == "2024-03-14"
        assert steps["total_steps"].between(800, 25000).all()
        assert steps.groupby("user_id").size().eq(5).all()

    def test_today_boundary_marks_partial(self, tmp_path):
        generate_dataset(_small_cfg(end_boundary="today"), str(tmp_path), run_checks=False)
        steps = pd.read_csv(tmp_path / "steps_daily.csv")
        last = steps[steps["date"] == "2024-03-15"]
        assert len(last) == 3
        assert last["is_partial"].all()

    def test_same_seed_same_files(self, tmp_path):
        a = generate_dataset(_small_cfg(), str(tmp_path / "a"), run_checks=False)
        b = generate_dataset(_small_cfg(), str(tmp_path / "b"), run_checks=False)
        for name in FRAME_NAMES:
            assert Path(a["outputs"][f"{name}_csv"]).read_bytes() == Path(b["outputs"][f"{name}_csv"]).read_bytes()

    def test_invalid_config_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            generate_dataset(_small_cfg(n_days=0), str(tmp_path))


class TestConfig:
    """Config validation and JSON persistence"""

    def test_json_round_trip(self, tmp_path):
        cfg = _small_cfg(mode="wearable", steps_ceiling=20000)
        path = tmp_path / "cfg.json"
        cfg.to_json(str(path))
        assert GeneratorConfig.from_json(str(path)) == cfg

    @pytest.mark.parametrize("field,value", [
        ("major_share", 0.9),
        ("steps_floor", 30000),
        ("mode", "fitbit"),
        ("end_boundary", "tomorrow"),
        ("min_sleep_hours", 13),
    ])
    def test_validate_rejects(self, field, value):
        cfg = GeneratorConfig()
        setattr(cfg, field, value)
        with pytest.raises(ValueError):
            cfg.validate()


class TestSanityChecks:
    """Dataset-level report"""

    def _frames(self, n_stages):
        sleep = pd.DataFrame([{"user_id": "u00001", "date": "2024-03-14", "total_sleep_hours": 7.5,
                               "n_stages": n_stages}])
        empty = pd.DataFrame(columns=["user_id", "date", "total_steps", "is_partial"])
        return {"sleep": sleep, "steps_daily": empty, "step_increments": pd.DataFrame()}

    def _stage_check(self, cfg, n_stages):
        report = run_sanity_checks(pd.DataFrame([{"id": "u00001"}]), self._frames(n_stages), cfg)
        return next(c for c in report["checks"] if c["name"] == "Sleep stage count")

    def test_stage_limit_follows_mode(self):
        simple = GeneratorConfig(mode="simple")
        wearable = GeneratorConfig(mode="wearable")
        assert not self._stage_check(simple, 12)["ok"]
        assert self._stage_check(simple, 12)["details"]["limit"] == simple.max_sleep_stages
        assert self._stage_check(wearable, 12)["ok"]
        assert self._stage_check(simple, 7)["ok"]


class TestBatches:
    """Bounded write chunks"""

    def test_batches(self):
        batches = create_batches(range(250), 100)
        assert [len(b) for b in batches] == [100, 100, 50]
        assert batches[2][-1] == 249

    def test_empty(self):
        assert create_batches([], 10) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            create_batches([1, 2], 0)


class TestCli:
    """scripts/synthhealth_generate.py"""

    def test_cli_run(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", [
            "synthhealth_generate.py", "--out", str(tmp_path), "--n-users", "2", "--n-days", "3",
            "--reference-date", "2024-03-15", "--mode", "wearable",
        ])
        runpy.run_path(str(ROOT / "scripts" / "synthhealth_generate.py"), run_name="__main__")
        out = capsys.readouterr().out
        assert "Done." in out
        meta = json.loads((tmp_path / "metadata.json").read_text(encoding="utf-8"))
        assert meta["config"]["mode"] == "wearable"
        assert meta["counts"]["n_users"] == 2

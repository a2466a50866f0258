"""
Tests for stage orchestration, run-directory persistence and the CLI.

Sampling uses ScriptedBackend; the CLI is only driven through stages that
do not sample.
"""

import json

import numpy as np
import polars as pl
import pytest

from ar_workflow import workflow
from ar_workflow.cli import EXIT_FATAL, EXIT_OK, EXIT_STAGE, main
from ar_workflow.config import GateConfig, SamplerConfig, WorkflowConfig
from ar_workflow.inference import ScriptedBackend


@pytest.fixture
def config() -> WorkflowConfig:
    return WorkflowConfig(lag_order=2, random_seed=3, sampler=SamplerConfig(draws=50, chains=3))


@pytest.fixture
def run_dir(tmp_path, config, series, scripted_results):
    """Run directory holding a series and a scripted fit."""
    fit = workflow.fit_stage(config, series, backend=ScriptedBackend(scripted_results))
    workflow.save_series(series, tmp_path)
    workflow.save_fit(fit, tmp_path)
    return tmp_path


def _write_config(path, max_divergences: int) -> str:
    path.write_text(
        "lag_order: 2\n"
        "gate:\n"
        "  rhat_max: 10.0\n"
        "  min_ess: 0\n"
        f"  max_divergences: {max_divergences}\n"
    )
    return str(path)


class TestStages:
    """Tests for the stage functions."""

    def test_simulate_stage(self, config) -> None:
        series, truth = workflow.simulate_stage(
            config, {"alpha": 0.0, "beta": [0.5, 0.1], "sigma": 1.0}, n_obs=40, missing_fraction=0.1
        )
        assert series.n_obs == 40
        assert series.n_missing == 4
        assert truth["beta[1]"] == 0.1

    def test_fit_stage_uses_sampler_config(self, config, series, scripted_results) -> None:
        backend = ScriptedBackend(scripted_results)
        fit = workflow.fit_stage(config, series, backend=backend)
        assert fit.n_chains == 3
        assert sorted(backend.calls) == [0, 1, 2]
        assert fit.model_spec.lag_order == 2

    def test_diagnose_stage_gate(self, config, series, scripted_results) -> None:
        fit = workflow.fit_stage(config, series, backend=ScriptedBackend(scripted_results))
        _, passed = workflow.diagnose_stage(config, fit)
        assert not passed  # one divergence, none allowed

        lenient = WorkflowConfig(lag_order=2, gate=GateConfig(rhat_max=10.0, min_ess=0, max_divergences=1))
        _, passed = workflow.diagnose_stage(lenient, fit)
        assert passed


class TestPersistence:
    """Tests for run-directory artefacts."""

    def test_series_round_trip(self, tmp_path, series) -> None:
        workflow.save_series(series, tmp_path)
        assert workflow.load_series(tmp_path) == series

    def test_truth_round_trip(self, tmp_path) -> None:
        workflow.save_truth({"alpha": 0.1, "beta[0]": 0.3}, tmp_path)
        assert workflow.load_truth(tmp_path) == {"alpha": 0.1, "beta[0]": 0.3}

    def test_fit_round_trip(self, run_dir, config, series, scripted_results) -> None:
        original = workflow.fit_stage(config, series, backend=ScriptedBackend(scripted_results))
        restored = workflow.load_fit(run_dir)

        assert restored.complete
        assert restored.n_divergent == original.n_divergent
        assert restored.model_spec.to_dict() == original.model_spec.to_dict()
        np.testing.assert_array_equal(restored.values("y[7]"), original.values("y[7]"))

    def test_diagnostics_round_trip(self, run_dir, config) -> None:
        report, passed = workflow.diagnose_stage(config, workflow.load_fit(run_dir))
        workflow.save_diagnostics(report, passed, run_dir)
        restored, restored_passed = workflow.load_diagnostics(run_dir)

        assert restored_passed == passed
        assert restored.n_divergent == report.n_divergent
        assert restored.parameters["alpha"] == report.parameters["alpha"]

    def test_csv_absence_markers(self, tmp_path) -> None:
        path = tmp_path / "data.csv"
        path.write_text("timestamp,value\n2024-01-03,1.2\n2024-01-01,0.5\n2024-01-02,NA\n")
        series, time_index = workflow.read_series_csv(path)

        assert series.n_obs == 3
        np.testing.assert_array_equal(series.mask, [False, True, False])
        np.testing.assert_array_equal(series.observed_values(), [0.5, 1.2])
        assert [d.day for d in time_index] == [1, 2, 3]

    def test_series_keeps_timestamps(self, tmp_path) -> None:
        path = tmp_path / "data.csv"
        path.write_text("timestamp,value\n2024-01-02,\n2024-01-01,0.5\n2024-01-03,1.2\n")
        series, time_index = workflow.read_series_csv(path)
        workflow.save_series(series, tmp_path, time_index)

        stored = pl.read_parquet(tmp_path / workflow.SERIES_FILE)
        assert stored["timestamp"].to_list() == time_index
        assert workflow.load_series(tmp_path) == series

    def test_missing_stage_input(self, tmp_path) -> None:
        with pytest.raises(workflow.StageInputMissing, match="fit"):
            workflow.load_fit(tmp_path)


class TestCLI:
    """Tests for the command-line entry point."""

    def test_simulate(self, tmp_path) -> None:
        code = main(["--run-dir", str(tmp_path), "simulate", "--n-obs", "60", "--missing-fraction", "0.1"])
        assert code == EXIT_OK
        assert (tmp_path / workflow.SERIES_FILE).exists()
        truth = json.loads((tmp_path / workflow.TRUTH_FILE).read_text())
        assert truth["beta[5]"] == 0.6
        assert workflow.load_series(tmp_path).n_missing == 6

    def test_beta_length_mismatch(self, tmp_path) -> None:
        code = main(["--run-dir", str(tmp_path), "simulate", "--beta", "0.3"])
        assert code == EXIT_FATAL

    def test_diagnose_without_fit(self, tmp_path) -> None:
        assert main(["--run-dir", str(tmp_path), "diagnose"]) == EXIT_STAGE

    def test_forecast_without_diagnostics(self, run_dir) -> None:
        assert main(["--run-dir", str(run_dir), "forecast"]) == EXIT_STAGE

    def test_diagnose_and_forecast(self, run_dir, tmp_path) -> None:
        cfg = _write_config(tmp_path / "workflow.yaml", max_divergences=1)
        assert main(["--config", cfg, "--run-dir", str(run_dir), "diagnose"]) == EXIT_OK
        assert (run_dir / workflow.DIAGNOSTICS_FILE).exists()

        code = main(["--config", cfg, "--run-dir", str(run_dir), "forecast", "--horizon", "3"])
        assert code == EXIT_OK
        frame = pl.read_parquet(run_dir / workflow.FORECAST_FILE)
        assert frame.filter(pl.col("kind") == "in_sample").height == 20
        assert frame.filter(pl.col("kind") == "ahead")["time_index"].to_list() == [20, 21, 22]

    def test_forecast_blocked_by_gate(self, run_dir, tmp_path) -> None:
        cfg = _write_config(tmp_path / "workflow.yaml", max_divergences=0)
        assert main(["--config", cfg, "--run-dir", str(run_dir), "diagnose"]) == EXIT_STAGE
        assert main(["--config", cfg, "--run-dir", str(run_dir), "forecast"]) == EXIT_STAGE
        assert (
            main(["--config", cfg, "--run-dir", str(run_dir), "forecast", "--allow-unreliable"])
            == EXIT_OK
        )

    def test_fit_rejects_non_numeric_csv(self, tmp_path) -> None:
        path = tmp_path / "data.csv"
        path.write_text("timestamp,value\n1,0.5\n2,missing\n3,1.2\n")
        code = main(["--run-dir", str(tmp_path / "run"), "fit", "--series", str(path)])
        assert code == EXIT_FATAL

    def test_fit_nonexistent_csv(self, tmp_path) -> None:
        code = main(["--run-dir", str(tmp_path), "fit", "--series", str(tmp_path / "nope.csv")])
        assert code == EXIT_FATAL

    def test_recover_reports_reliability(self, run_dir, tmp_path, capsys) -> None:
        workflow.save_truth({"alpha": 0.0, "beta[0]": 0.1}, run_dir)
        cfg = _write_config(tmp_path / "workflow.yaml", max_divergences=0)
        assert main(["--config", cfg, "--run-dir", str(run_dir), "diagnose"]) == EXIT_STAGE
        capsys.readouterr()

        code = main(["--config", cfg, "--run-dir", str(run_dir), "recover", "--allow-unreliable"])
        assert code == EXIT_OK
        out = json.loads(capsys.readouterr().out)
        assert out["reliable"] is False
        assert out["interval_width"] == 0.5
        assert set(out["coverage"]) == {"alpha", "beta[0]"}

"""
Stage orchestration: simulate -> fit -> diagnose -> forecast / recover.

Each stage takes the validated output of the previous one. Artefacts are
kept in a run directory so stages can be re-run without re-sampling:

    run_dir/
        series.parquet       timestamp, value (null = missing)
        truth.json           true parameters (simulated runs only)
        fit/draws.parquet    chain, draw, parameter, value, divergent
        fit/meta.json        model spec, incomplete chain ids
        diagnostics.json     per-parameter rhat / ess, divergences, gate result
        forecast.parquet     in-sample and out-of-sample quantiles
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import polars as pl

from ar_workflow.config import WorkflowConfig
from ar_workflow.inference.adapter import PosteriorSampler
from ar_workflow.inference.backends import PyMCBackend, SamplingBackend
from ar_workflow.inference.diagnostics import ConvergenceDiagnostics, DiagnosticsReport, ParameterDiagnostics
from ar_workflow.inference.fit import Fit
from ar_workflow.model.spec import ModelSpec
from ar_workflow.predictive.posterior import ForecastSummary, PosteriorPredictive
from ar_workflow.series.encoder import TimeSeriesEncoder
from ar_workflow.series.timeseries import TimeSeries
from ar_workflow.simulation.simulator import DataSimulator

logger = logging.getLogger(__name__)

SERIES_FILE = "series.parquet"
TRUTH_FILE = "truth.json"
FIT_DIR = "fit"
DIAGNOSTICS_FILE = "diagnostics.json"
FORECAST_FILE = "forecast.parquet"

DEFAULT_NULL_VALUES = ("NA", "")


class StageInputMissing(FileNotFoundError):
    """A stage was invoked before the stage it depends on produced its output."""


def _require(path: Path, stage: str) -> Path:
    if not path.exists():
        raise StageInputMissing(f"{path} not found; run `{stage}` first")
    return path


# =========================================================================
# Stages
# =========================================================================


def model_for(config: WorkflowConfig, series: TimeSeries) -> ModelSpec:
    return ModelSpec(config.lag_order, series.n_obs, config.priors)


def simulate_stage(
    config: WorkflowConfig,
    fixed_params: Mapping,
    n_obs: int,
    missing_fraction: float = 0.0,
) -> Tuple[TimeSeries, Dict[str, float]]:
    spec = ModelSpec(config.lag_order, n_obs, config.priors)
    return DataSimulator(spec).simulate(
        fixed_params,
        n_obs=n_obs,
        missing_fraction=missing_fraction,
        random_seed=config.random_seed,
    )


def fit_stage(
    config: WorkflowConfig,
    series: TimeSeries,
    backend: Optional[SamplingBackend] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Fit:
    sampler = PosteriorSampler(backend or PyMCBackend(config.sampler), n_workers=config.n_workers)
    return sampler.fit(
        model_for(config, series),
        series,
        num_chains=config.sampler.chains,
        draws_per_chain=config.sampler.draws,
        random_seed=config.random_seed,
        cancel_event=cancel_event,
    )


def diagnose_stage(config: WorkflowConfig, fit: Fit) -> Tuple[DiagnosticsReport, bool]:
    """Diagnose a fit and evaluate the configured gate."""
    report = ConvergenceDiagnostics().diagnose(fit)
    gate = config.gate
    passed = report.meets(gate.rhat_max, gate.min_ess, gate.max_divergences)
    if not passed:
        failing = report.failing(gate.rhat_max, gate.min_ess)
        logger.warning(
            f"Diagnostics gate not met: {len(failing)} parameters failing, "
            f"{report.n_divergent} divergences (allowed {gate.max_divergences})"
        )
    return report, passed


def forecast_stage(
    config: WorkflowConfig,
    fit: Fit,
    report: DiagnosticsReport,
    horizon: int = 0,
) -> Tuple[ForecastSummary, Optional[ForecastSummary]]:
    in_sample = PosteriorPredictive.forecast_summary(
        fit, fit.series, config.quantiles, report=report, gate=config.gate
    )
    ahead = None
    if horizon > 0:
        ahead = PosteriorPredictive.forecast_ahead(
            fit,
            fit.series,
            horizon,
            config.quantiles,
            random_seed=config.random_seed,
            report=report,
            gate=config.gate,
        )
    return in_sample, ahead


# =========================================================================
# Persistence
# =========================================================================


def read_series_csv(
    path: Union[str, Path],
    time_col: str = "timestamp",
    value_col: str = "value",
    null_values: Sequence[str] = DEFAULT_NULL_VALUES,
) -> Tuple[TimeSeries, list]:
    """
    Read a (timestamp, value) CSV.

    Cells equal to any of `null_values` become missing observations.

    Returns
    -------
    series : TimeSeries
    time_index : list
        The time column in series order.
    """
    frame = pl.read_csv(path, try_parse_dates=True, null_values=list(null_values))
    series = TimeSeriesEncoder.from_frame(frame, time_col, value_col)
    time_index = frame.sort(time_col)[time_col].to_list()
    return series, time_index


def save_series(
    series: TimeSeries,
    run_dir: Union[str, Path],
    time_index: Optional[Sequence] = None,
) -> Path:
    path = Path(run_dir) / SERIES_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    TimeSeriesEncoder.to_frame(series, time_index).write_parquet(path)
    return path


def load_series(run_dir: Union[str, Path]) -> TimeSeries:
    path = _require(Path(run_dir) / SERIES_FILE, "simulate")
    return TimeSeriesEncoder.from_frame(pl.read_parquet(path))


def save_truth(truth: Mapping[str, float], run_dir: Union[str, Path]) -> Path:
    path = Path(run_dir) / TRUTH_FILE
    path.write_text(json.dumps(dict(truth), indent=2))
    return path


def load_truth(run_dir: Union[str, Path]) -> Dict[str, float]:
    path = _require(Path(run_dir) / TRUTH_FILE, "simulate")
    return json.loads(path.read_text())


def save_fit(fit: Fit, run_dir: Union[str, Path]) -> Path:
    fit_dir = Path(run_dir) / FIT_DIR
    fit_dir.mkdir(parents=True, exist_ok=True)
    fit.to_frame().write_parquet(fit_dir / "draws.parquet")
    meta = {
        "model": fit.model_spec.to_dict(),
        "incomplete_chains": [c.chain_id for c in fit.chains if not c.complete],
    }
    (fit_dir / "meta.json").write_text(json.dumps(meta, indent=2))
    return fit_dir


def load_fit(run_dir: Union[str, Path]) -> Fit:
    fit_dir = Path(run_dir) / FIT_DIR
    meta = json.loads(_require(fit_dir / "meta.json", "fit").read_text())
    frame = pl.read_parquet(_require(fit_dir / "draws.parquet", "fit"))
    return Fit.from_frame(
        frame,
        ModelSpec.from_dict(meta["model"]),
        load_series(run_dir),
        incomplete_chains=meta.get("incomplete_chains", []),
    )


def save_diagnostics(report: DiagnosticsReport, passed: bool, run_dir: Union[str, Path]) -> Path:
    path = Path(run_dir) / DIAGNOSTICS_FILE
    payload = {
        "passed": passed,
        "n_divergent": report.n_divergent,
        "total_draws": report.total_draws,
        "n_chains": report.n_chains,
        "parameters": {
            name: {"rhat": d.rhat, "ess": d.ess} for name, d in report.parameters.items()
        },
    }
    path.write_text(json.dumps(payload, indent=2))
    return path


def load_diagnostics(run_dir: Union[str, Path]) -> Tuple[DiagnosticsReport, bool]:
    path = _require(Path(run_dir) / DIAGNOSTICS_FILE, "diagnose")
    raw = json.loads(path.read_text())
    report = DiagnosticsReport(
        parameters={n: ParameterDiagnostics(**d) for n, d in raw["parameters"].items()},
        n_divergent=raw["n_divergent"],
        total_draws=raw["total_draws"],
        n_chains=raw["n_chains"],
    )
    return report, bool(raw["passed"])


def save_forecast(
    in_sample: ForecastSummary,
    ahead: Optional[ForecastSummary],
    run_dir: Union[str, Path],
) -> Path:
    frames = [pl.DataFrame(in_sample.to_dict()).with_columns(pl.lit("in_sample").alias("kind"))]
    if ahead is not None:
        frames.append(pl.DataFrame(ahead.to_dict()).with_columns(pl.lit("ahead").alias("kind")))
    path = Path(run_dir) / FORECAST_FILE
    pl.concat(frames).write_parquet(path)
    return path

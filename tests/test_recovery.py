"""
End-to-end tests against the real PyMC sampler.

These compile and sample PyMC models and take minutes; deselect with
``pytest -m "not slow"``.
"""

import threading

import numpy as np
import pytest

from ar_workflow.config import SamplerConfig
from ar_workflow.inference import ConvergenceDiagnostics, PosteriorSampler, PyMCBackend
from ar_workflow.model import ModelSpec
from ar_workflow.predictive import PosteriorPredictive
from ar_workflow.simulation import DataSimulator

pytestmark = pytest.mark.slow

TRUE_PARAMS = {"alpha": 0.0, "beta": [0.3, 0.0, 0.0, 0.0, 0.0, 0.6], "sigma": 1.0}


class _CountdownEvent(threading.Event):
    """Reads as set once it has been polled more than `n` times."""

    def __init__(self, n: int) -> None:
        super().__init__()
        self._remaining = n

    def is_set(self) -> bool:
        self._remaining -= 1
        return self._remaining < 0 or super().is_set()


@pytest.fixture(scope="module")
def simulated():
    spec = ModelSpec(lag_order=6, n_obs=500)
    series, truth = DataSimulator(spec).simulate(TRUE_PARAMS, missing_fraction=0.02, random_seed=11)
    return spec, series, truth


@pytest.fixture(scope="module")
def recovered_fit(simulated):
    spec, series, _ = simulated
    backend = PyMCBackend(SamplerConfig(draws=500, tune=500, chains=2))
    return PosteriorSampler(backend, n_workers=2).fit(
        spec, series, num_chains=2, draws_per_chain=500, random_seed=5
    )


@pytest.fixture(scope="module")
def replications():
    """50% recovery on five independent simulations."""
    names = ("alpha", "beta[0]", "beta[5]", "sigma")
    spec = ModelSpec(lag_order=6, n_obs=300)
    backend = PyMCBackend(SamplerConfig(draws=400, tune=400, chains=2))
    results = []
    for seed in range(21, 26):
        series, truth = DataSimulator(spec).simulate(TRUE_PARAMS, random_seed=seed)
        fit = PosteriorSampler(backend, n_workers=2).fit(
            spec, series, num_chains=2, draws_per_chain=400, random_seed=seed
        )
        results.append(
            PosteriorPredictive.recovery_check(fit, {n: truth[n] for n in names}, interval_width=0.5)
        )
    return results

class TestRecovery:
    """Tests for recovering simulation parameters."""

    def test_fit_complete(self, recovered_fit, simulated) -> None:
        _, series, _ = simulated
        assert recovered_fit.complete
        assert recovered_fit.total_draws == 1000
        assert all(f"y[{t}]" in recovered_fit.parameter_names for t in series.missing_positions)

    def test_converged(self, recovered_fit) -> None:
        report = ConvergenceDiagnostics().diagnose(recovered_fit)
        assert report.parameters["beta[0]"].rhat < 1.1
        assert report.parameters["beta[5]"].rhat < 1.1
        assert report.parameters["sigma"].ess > 50

    def test_nonzero_lags_covered(self, recovered_fit, simulated) -> None:
        _, _, truth = simulated
        result = PosteriorPredictive.recovery_check(
            recovered_fit,
            {name: truth[name] for name in ("beta[0]", "beta[5]", "sigma")},
            interval_width=0.99,
        )
        assert all(result.coverage.values()), result.coverage

    def test_zero_lags_shrunk(self, recovered_fit) -> None:
        for i in range(1, 5):
            assert abs(np.median(recovered_fit.pooled(f"beta[{i}]"))) < 0.15

    def test_imputations_summarised(self, recovered_fit, simulated) -> None:
        _, series, _ = simulated
        summary = PosteriorPredictive.forecast_summary(recovered_fit, series)
        miss = series.missing_positions
        assert np.all(summary.upper[miss] > summary.lower[miss])

    def test_central_interval_over_replications(self, replications) -> None:
        """Coverage of the default 50% interval on independent simulations."""
        assert all(r.interval_width == 0.5 for r in replications)
        covered = sum(r.n_covered for r in replications)
        # 20 Bernoulli(0.5) trials; [4, 16] holds with probability > 0.99
        assert 4 <= covered <= 16, [r.coverage for r in replications]


class TestPyMCCancellation:
    """Tests for stopping a real chain early."""

    def test_cancel_mid_chain(self) -> None:
        spec = ModelSpec(lag_order=2, n_obs=60)
        series, _ = DataSimulator(spec).simulate(
            {"alpha": 0.0, "beta": [0.5, 0.0], "sigma": 1.0}, missing_fraction=0.05, random_seed=2
        )
        backend = PyMCBackend(SamplerConfig(draws=50, tune=20, chains=1))
        fit = PosteriorSampler(backend).fit(
            spec, series, num_chains=1, draws_per_chain=50, random_seed=0,
            cancel_event=_CountdownEvent(40),
        )

        assert not fit.complete
        assert 0 < fit.total_draws < 50
        draw = fit.chains[0].draws[0]
        assert draw.values["sigma"] > 0
        assert set(spec.parameter_names(series)) <= set(draw.values)

"""Shared fixtures: small models, series and synthetic fits."""

from typing import Dict, List, Optional

import numpy as np
import pytest

from ar_workflow.inference.backends import ChainResult
from ar_workflow.inference.fit import Chain, Fit, ParameterDraw
from ar_workflow.model.spec import ModelSpec, indexed
from ar_workflow.series.encoder import TimeSeriesEncoder
from ar_workflow.series.timeseries import TimeSeries


def random_draws(
    spec: ModelSpec,
    series: TimeSeries,
    n_draws: int,
    rng: np.random.Generator,
) -> List[Dict[str, float]]:
    """Parameter mappings inside the model support."""
    draws = []
    for _ in range(n_draws):
        values = {
            "alpha": rng.normal(0.0, 0.1),
            "tau": rng.uniform(0.1, 1.0),
            "sigma": rng.uniform(0.5, 1.5),
        }
        for i in range(spec.lag_order):
            values[indexed("beta", i)] = rng.normal(0.0, 0.1)
            values[indexed("lambda", i)] = rng.uniform(0.1, 2.0)
        for t in series.missing_positions:
            values[indexed("y", int(t))] = rng.normal(0.0, 1.0)
        draws.append(values)
    return draws


def make_fit(
    spec: ModelSpec,
    series: TimeSeries,
    chain_draws: List[List[Dict[str, float]]],
    divergent: Optional[List[List[bool]]] = None,
    complete: bool = True,
) -> Fit:
    chains = []
    for c, draws in enumerate(chain_draws):
        flags = divergent[c] if divergent else [False] * len(draws)
        chains.append(
            Chain(
                chain_id=c,
                draws=tuple(
                    ParameterDraw(values=d, divergent=f, n_imputed=series.n_missing)
                    for d, f in zip(draws, flags)
                ),
                complete=complete,
            )
        )
    return Fit(model_spec=spec, series=series, chains=tuple(chains))


def scalar_fit(samples: np.ndarray, spec: ModelSpec, series: TimeSeries) -> Fit:
    """Fit with a single parameter ``x`` from a (chains, draws) array."""
    return make_fit(spec, series, [[{"x": v} for v in chain] for chain in samples])


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(12345)


@pytest.fixture
def spec() -> ModelSpec:
    return ModelSpec(lag_order=2, n_obs=20)


@pytest.fixture
def series(rng) -> TimeSeries:
    values = rng.normal(0.0, 1.0, size=20)
    return TimeSeriesEncoder.encode(values, missing_positions=[3, 7, 15])


@pytest.fixture
def scripted_results(spec, series, rng) -> Dict[int, ChainResult]:
    return {
        c: ChainResult(
            draws=random_draws(spec, series, 50, rng),
            divergent=[i == 10 and c == 1 for i in range(50)],
        )
        for c in range(3)
    }


@pytest.fixture
def fit(spec, series, rng) -> Fit:
    return make_fit(spec, series, [random_draws(spec, series, 200, rng) for _ in range(4)])

"""
Sampling backends: the external Markov-chain capability.

The adapter talks to a backend only through `ModelDescription` and
`ChainResult`. `PyMCBackend` runs PyMC's NUTS one chain at a time;
`ScriptedBackend` replays pre-recorded draws so diagnostics and predictive
code can be tested without running a sampler.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import numpy as np
import pymc as pm
from pymc.exceptions import SamplingError

from ar_workflow.config import SamplerConfig
from ar_workflow.errors import SamplerFailureError
from ar_workflow.model.spec import ModelSpec, flatten_parameters, indexed
from ar_workflow.series.timeseries import TimeSeries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelDescription:
    """Everything a backend needs to sample one model conditioned on one series."""

    model_spec: ModelSpec
    series: TimeSeries
    parameter_names: Sequence[str]
    supports: Mapping[str, str]
    log_prior: Callable[[Mapping[str, float]], float]
    log_likelihood: Callable[[Mapping[str, float], TimeSeries], float]
    initial_values: Mapping[str, float]

    @classmethod
    def from_spec(cls, model_spec: ModelSpec, series: TimeSeries) -> "ModelDescription":
        return cls(
            model_spec=model_spec,
            series=series,
            parameter_names=tuple(model_spec.parameter_names(series)),
            supports=model_spec.supports(series),
            log_prior=model_spec.log_prior,
            log_likelihood=model_spec.log_likelihood,
            initial_values=model_spec.initial_values(series),
        )


@dataclass(frozen=True)
class ChainResult:
    """Ordered draws of one chain plus a divergence flag per draw."""

    draws: List[Dict[str, float]]
    divergent: List[bool]
    complete: bool = True

    def __post_init__(self) -> None:
        if len(self.draws) != len(self.divergent):
            raise ValueError(
                f"Got {len(self.draws)} draws but {len(self.divergent)} divergence flags"
            )


class SamplingBackend(Protocol):
    """Capability interface for an external MCMC engine."""

    def sample_chain(
        self,
        description: ModelDescription,
        chain_id: int,
        draws: int,
        seed: int,
        cancel_event: threading.Event,
    ) -> ChainResult:
        ...


class SamplingCancelled(Exception):
    """Raised from the per-draw callback to stop a PyMC chain early."""


def _posterior_to_draws(posterior, model_spec: ModelSpec, series: TimeSeries) -> List[Dict[str, float]]:
    """Flatten a single-chain PyMC posterior into per-draw scalar mappings."""
    P = model_spec.lag_order
    missing = series.missing_positions
    n_draws = posterior.sizes["draw"]

    alpha = posterior["alpha"].values.reshape(n_draws)
    tau = posterior["tau"].values.reshape(n_draws)
    sigma = posterior["sigma"].values.reshape(n_draws)
    beta = posterior["beta"].values.reshape(n_draws, P)
    lam = posterior["lambda"].values.reshape(n_draws, P)
    y_missing = (
        posterior["y_missing"].values.reshape(n_draws, len(missing))
        if len(missing)
        else np.zeros((n_draws, 0))
    )

    draws = []
    for i in range(n_draws):
        values = flatten_parameters(
            {"alpha": alpha[i], "beta": beta[i], "tau": tau[i], "lambda": lam[i], "sigma": sigma[i]}
        )
        for t, v in zip(missing, y_missing[i]):
            values[indexed("y", int(t))] = float(v)
        draws.append(values)
    return draws


class PyMCBackend:
    """
    PyMC NUTS backend, one `pm.sample` call per chain.

    Each call builds its own model instance inside the worker thread, so
    chains share nothing but the read-only ModelSpec and TimeSeries.
    """

    def __init__(self, sampler_config: Optional[SamplerConfig] = None, progressbar: bool = False) -> None:
        self.config = sampler_config or SamplerConfig()
        self.progressbar = progressbar

    def sample_chain(
        self,
        description: ModelDescription,
        chain_id: int,
        draws: int,
        seed: int,
        cancel_event: threading.Event,
    ) -> ChainResult:
        model = description.model_spec.build_model(description.series)
        tune = self.config.tune
        kept: List[dict] = []

        def _callback(trace, draw) -> None:
            if not draw.tuning:
                kept.append(draw.point)
            if cancel_event.is_set():
                raise SamplingCancelled()

        try:
            with model:
                idata = pm.sample(
                    draws=draws,
                    tune=tune,
                    chains=1,
                    cores=1,
                    random_seed=seed,
                    nuts={
                        "target_accept": self.config.target_accept,
                        "max_treedepth": self.config.max_treedepth,
                    },
                    progressbar=self.progressbar,
                    compute_convergence_checks=False,
                    callback=_callback,
                    return_inferencedata=True,
                    discard_tuned_samples=True,
                )
        except SamplingCancelled:
            logger.warning(f"Chain {chain_id} cancelled after {len(kept)} post-tuning draws")
            return self._partial_result(model, description, kept)
        except (SamplingError, FloatingPointError) as e:
            raise SamplerFailureError(chain_id, f"{type(e).__name__}: {e}") from e

        posterior = idata.posterior
        divergent = idata.sample_stats["diverging"].values.reshape(-1).astype(bool).tolist()
        return ChainResult(
            draws=_posterior_to_draws(posterior, description.model_spec, description.series),
            divergent=divergent,
            complete=True,
        )

    def _partial_result(
        self,
        model: pm.Model,
        description: ModelDescription,
        points: List[dict],
    ) -> ChainResult:
        """Map raw sampler points (transformed space) to constrained draws."""
        spec, series = description.model_spec, description.series
        names = ["alpha", "beta", "tau", "lambda", "sigma"]
        if series.n_missing:
            names.append("y_missing")
        outs = model.replace_rvs_by_values([model[name] for name in names])
        fn = model.compile_fn(outs, inputs=model.value_vars, on_unused_input="ignore")

        draws = []
        for point in points:
            out = dict(zip(names, fn(point)))
            y_missing = out.pop("y_missing", np.zeros(0))
            values = flatten_parameters(out)
            for t, v in zip(series.missing_positions, np.atleast_1d(y_missing)):
                values[indexed("y", int(t))] = float(v)
            draws.append(values)

        # Divergence flags are not recoverable from raw points
        return ChainResult(draws=draws, divergent=[False] * len(draws), complete=False)

    def __repr__(self) -> str:
        return f"PyMCBackend(config={self.config})"


@dataclass
class ScriptedBackend:
    """
    Deterministic stub that replays recorded draws.

    Parameters
    ----------
    scripts : Mapping[int, ChainResult]
        Recorded result per chain id. Requests for more draws than were
        recorded return only the recorded ones.
    failures : Mapping[int, str]
        Chain ids that should report a non-recoverable failure.
    """

    scripts: Mapping[int, ChainResult]
    failures: Mapping[int, str] = field(default_factory=dict)
    calls: List[int] = field(default_factory=list)

    def sample_chain(
        self,
        description: ModelDescription,
        chain_id: int,
        draws: int,
        seed: int,
        cancel_event: threading.Event,
    ) -> ChainResult:
        self.calls.append(chain_id)
        if chain_id in self.failures:
            raise SamplerFailureError(chain_id, self.failures[chain_id])

        script = self.scripts[chain_id]
        kept_draws, kept_flags = [], []
        for values, flag in zip(script.draws[:draws], script.divergent[:draws]):
            if cancel_event.is_set():
                return ChainResult(kept_draws, kept_flags, complete=False)
            kept_draws.append(dict(values))
            kept_flags.append(flag)
        return ChainResult(kept_draws, kept_flags, complete=script.complete)

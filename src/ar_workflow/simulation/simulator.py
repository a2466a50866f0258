"""
Synthetic data generation for parameter-recovery studies.

Generates a realization of the AR(P) process from fixed, known parameters
and optionally masks a random subset of it. The returned true parameters
are what a subsequent fit is expected to recover.
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from ar_workflow.errors import InsufficientDataError
from ar_workflow.model.spec import ModelSpec, flatten_parameters
from ar_workflow.series.encoder import TimeSeriesEncoder
from ar_workflow.series.timeseries import TimeSeries

logger = logging.getLogger(__name__)


class DataSimulator:
    """
    Simulator for AR(P) series with known parameters.

    Attributes
    ----------
    model_spec : ModelSpec
        Model whose conditional distribution generates the data
    """

    def __init__(self, model_spec: ModelSpec) -> None:
        self.model_spec = model_spec

    def _validate_params(self, fixed_params: Mapping) -> Tuple[float, NDArray[np.float64], float]:
        missing = {"alpha", "beta", "sigma"} - set(fixed_params)
        if missing:
            raise ValueError(f"fixed_params is missing {sorted(missing)}")

        beta = np.asarray(fixed_params["beta"], dtype=np.float64)
        if beta.shape != (self.model_spec.lag_order,):
            raise ValueError(
                f"beta must have shape ({self.model_spec.lag_order},). Got {beta.shape}"
            )
        sigma = float(fixed_params["sigma"])
        if not sigma > 0:
            raise ValueError(f"sigma must be positive. Got {sigma}")
        return float(fixed_params["alpha"]), beta, sigma

    def generate_path(
        self,
        fixed_params: Mapping,
        n_obs: int,
        rng: np.random.Generator,
    ) -> NDArray[np.float64]:
        """
        Draw one complete trajectory of length `n_obs`.

        The first P values come from the intercept-only location; every
        later value uses the P already generated values as lag inputs.
        """
        alpha, beta, sigma = self._validate_params(fixed_params)
        P = self.model_spec.lag_order

        y = np.zeros(n_obs)
        for t in range(n_obs):
            loc = alpha + self.model_spec.design_row(y, t) @ beta if t >= P else alpha
            y[t] = rng.normal(loc, sigma)
        return y

    def simulate(
        self,
        fixed_params: Mapping,
        n_obs: Optional[int] = None,
        missing_fraction: float = 0.0,
        random_seed: Optional[int] = None,
    ) -> Tuple[TimeSeries, Dict[str, float]]:
        """
        Simulate a series and mark a random subset of it missing.

        Parameters
        ----------
        fixed_params : Mapping
            ``alpha`` (float), ``beta`` (length P) and ``sigma`` (> 0).
        n_obs : int, optional
            Series length T. Defaults to ``model_spec.n_obs``.
        missing_fraction : float
            Fraction of positions, chosen uniformly without replacement,
            to mark missing. ``round(missing_fraction * T)`` positions.
        random_seed : int, optional
            Random seed for reproducibility.

        Returns
        -------
        series : TimeSeries
            Simulated series with missing positions marked
        true_params : Dict[str, float]
            Parameters used, flattened (``alpha``, ``beta[i]``, ``sigma``)
        """
        if n_obs is None:
            n_obs = self.model_spec.n_obs
        if n_obs < self.model_spec.lag_order + 1:
            raise InsufficientDataError(
                f"Need at least {self.model_spec.lag_order + 1} observations. "
                f"Got n_obs={n_obs}"
            )
        if not (0.0 <= missing_fraction < 1.0):
            raise ValueError(f"missing_fraction must be in [0, 1). Got {missing_fraction}")

        rng = np.random.default_rng(random_seed)
        y = self.generate_path(fixed_params, n_obs, rng)

        n_missing = int(round(missing_fraction * n_obs))
        missing = rng.choice(n_obs, size=n_missing, replace=False) if n_missing else []
        series = TimeSeriesEncoder.encode(y, missing)

        alpha, beta, sigma = self._validate_params(fixed_params)
        true_params = flatten_parameters({"alpha": alpha, "beta": beta, "sigma": sigma})

        logger.info(
            f"Simulated AR({self.model_spec.lag_order}) series: n_obs={n_obs}, "
            f"n_missing={n_missing}"
        )
        return series, true_params

    def __repr__(self) -> str:
        return f"DataSimulator(model_spec={self.model_spec})"


def simulate(
    model_spec: ModelSpec,
    fixed_params: Mapping,
    n_obs: Optional[int] = None,
    missing_fraction: float = 0.0,
    random_seed: Optional[int] = None,
) -> Tuple[TimeSeries, Dict[str, float]]:
    """Functional shortcut for ``DataSimulator(model_spec).simulate(...)``."""
    return DataSimulator(model_spec).simulate(
        fixed_params,
        n_obs=n_obs,
        missing_fraction=missing_fraction,
        random_seed=random_seed,
    )

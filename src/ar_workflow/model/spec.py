"""
AR(P) model specification with horseshoe shrinkage and latent imputation.

Mathematical model:
    y_t ~ Normal(α + x_t β, σ)                  # Conditional likelihood
    x_t = (y_{t-1}, …, y_{t-P})  for t ≥ P      # Lagged design row
    x_t = 0                      for t < P      # No full lag history yet
    α ~ Normal(μ_α, s_α)                        # Intercept
    β_i ~ Normal(0, τ λ_i)                      # Horseshoe
    τ ~ HalfCauchy(s_τ)                         # Global shrinkage
    λ_i ~ HalfCauchy(s_λ)                       # Local shrinkage
    σ ~ HalfCauchy(s_σ)                         # Innovation scale
    y_t, t missing ~ Flat                       # Latent imputations

The same model is exposed twice: as pure numpy/scipy log-density
evaluators (the sampler contract, also used to validate returned draws)
and as a PyMC graph for the NUTS backend. The PyMC graph uses the
non-centred form β = z λ τ with z ~ Normal(0, 1), which has the same
distribution over β.
"""

from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pymc as pm
import pytensor.tensor as pt
from numpy.typing import NDArray
from scipy.stats import halfcauchy, norm

from ar_workflow.errors import InsufficientDataError, InvalidLengthError
from ar_workflow.series.timeseries import TimeSeries

REAL = "real"
POSITIVE = "positive"


def indexed(name: str, i: int) -> str:
    """Scalar parameter name for element `i` of vector parameter `name`."""
    return f"{name}[{i}]"


def flatten_parameters(params: Mapping) -> Dict[str, float]:
    """
    Flatten vector-valued entries into scalar names.

    ``{"beta": [0.3, 0.6]}`` becomes ``{"beta[0]": 0.3, "beta[1]": 0.6}``;
    scalar entries are kept as they are.
    """
    flat: Dict[str, float] = {}
    for name, value in params.items():
        arr = np.asarray(value, dtype=np.float64)
        if arr.ndim == 0:
            flat[name] = float(arr)
        else:
            for i, v in enumerate(arr.ravel()):
                flat[indexed(name, i)] = float(v)
    return flat


class PriorSpec:
    """Hyperparameters of the priors."""

    def __init__(
        self,
        intercept_loc: float = 0.0,
        intercept_scale: float = 1.0,
        global_scale: float = 1.0,
        local_scale: float = 1.0,
        scale_scale: float = 1.0,
    ) -> None:
        """
        Initialize prior specification.

        Parameters
        ----------
        intercept_loc : float
            Prior mean of the intercept α. Default 0.0.
        intercept_scale : float
            Prior std of the intercept α. Default 1.0.
        global_scale : float
            HalfCauchy scale of the global shrinkage τ. Default 1.0.
        local_scale : float
            HalfCauchy scale of each local shrinkage λ_i. Default 1.0.
        scale_scale : float
            HalfCauchy scale of the innovation scale σ. Default 1.0.
        """
        for name, value in (
            ("intercept_scale", intercept_scale),
            ("global_scale", global_scale),
            ("local_scale", local_scale),
            ("scale_scale", scale_scale),
        ):
            if not value > 0:
                raise ValueError(f"{name} must be positive. Got {value}")

        self.intercept_loc = float(intercept_loc)
        self.intercept_scale = float(intercept_scale)
        self.global_scale = float(global_scale)
        self.local_scale = float(local_scale)
        self.scale_scale = float(scale_scale)

    def to_dict(self) -> Dict[str, float]:
        return {
            "intercept_loc": self.intercept_loc,
            "intercept_scale": self.intercept_scale,
            "global_scale": self.global_scale,
            "local_scale": self.local_scale,
            "scale_scale": self.scale_scale,
        }

    def __eq__(self, other) -> bool:
        if not isinstance(other, PriorSpec):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"PriorSpec(α~N({self.intercept_loc}, {self.intercept_scale}), "
            f"τ~C+({self.global_scale}), λ~C+({self.local_scale}), "
            f"σ~C+({self.scale_scale}))"
        )


class ModelSpec:
    """
    Generative AR(P) model with horseshoe prior over lag coefficients.

    Attributes
    ----------
    lag_order : int
        Number of lags (P)
    n_obs : int
        Number of observations (T), at least P + 1
    prior_spec : PriorSpec
        Prior hyperparameters
    """

    def __init__(
        self,
        lag_order: int,
        n_obs: int,
        prior_spec: Optional[PriorSpec] = None,
    ) -> None:
        """
        Initialize model specification.

        Raises
        ------
        ValueError
            If lag_order < 1.
        InsufficientDataError
            If n_obs < lag_order + 1.
        """
        if int(lag_order) != lag_order or lag_order < 1:
            raise ValueError(f"lag_order must be a positive integer. Got {lag_order}")
        if n_obs < lag_order + 1:
            raise InsufficientDataError(
                f"Need at least lag_order + 1 = {lag_order + 1} observations "
                f"to form a lagged row. Got n_obs={n_obs}"
            )

        self.lag_order = int(lag_order)
        self.n_obs = int(n_obs)
        self.prior_spec = prior_spec or PriorSpec()

    # ------------------------------------------------------------------
    # Parameter set
    # ------------------------------------------------------------------

    def coefficient_names(self) -> List[str]:
        """Names of the non-imputation parameters."""
        P = self.lag_order
        return (
            ["alpha"]
            + [indexed("beta", i) for i in range(P)]
            + ["tau"]
            + [indexed("lambda", i) for i in range(P)]
            + ["sigma"]
        )

    def parameter_names(self, series: TimeSeries) -> List[str]:
        """All scalar parameters, including one `y[t]` per missing position."""
        return self.coefficient_names() + [indexed("y", int(t)) for t in series.missing_positions]

    def supports(self, series: TimeSeries) -> Dict[str, str]:
        """Support constraint per parameter name ('real' or 'positive')."""
        positive = {"tau", "sigma"} | {indexed("lambda", i) for i in range(self.lag_order)}
        return {
            name: POSITIVE if name in positive else REAL
            for name in self.parameter_names(series)
        }

    def initial_values(self, series: TimeSeries) -> Dict[str, float]:
        """A point inside the support, used as the default starting state."""
        observed = series.observed_values()
        centre = float(np.mean(observed)) if observed.size else 0.0
        spread = float(np.std(observed)) if observed.size > 1 else 1.0
        init = {"alpha": centre, "tau": 1.0, "sigma": spread if spread > 0 else 1.0}
        for i in range(self.lag_order):
            init[indexed("beta", i)] = 0.0
            init[indexed("lambda", i)] = 1.0
        for t in series.missing_positions:
            init[indexed("y", int(t))] = centre
        return init

    def _check_series(self, series: TimeSeries) -> None:
        if series.n_obs != self.n_obs:
            raise InvalidLengthError(
                f"Series has {series.n_obs} observations, model expects {self.n_obs}"
            )

    # ------------------------------------------------------------------
    # Design
    # ------------------------------------------------------------------

    def design_row(self, y: Sequence[float], t: int) -> NDArray[np.float64]:
        """
        Lagged inputs for observation t.

        Parameters
        ----------
        y : Sequence[float]
            Fully reconstructed series (missing values already replaced
            by their current imputed estimate).
        t : int
            Time index.

        Returns
        -------
        NDArray[np.float64]
            Zeros of length P for t < P, otherwise (y[t-1], …, y[t-P]).
        """
        P = self.lag_order
        if t < 0 or t >= len(y):
            raise InvalidLengthError(f"t must be in [0, {len(y) - 1}]. Got {t}")
        if t < P:
            return np.zeros(P)

        window = y[t - P:t][::-1]
        if np.ma.is_masked(window):
            raise ValueError(
                f"Design row for t={t} needs imputed values for every lag"
            )
        return np.asarray(np.ma.getdata(window), dtype=np.float64).copy()

    def lag_matrix(self, y: Sequence[float]) -> NDArray[np.float64]:
        """Stacked design rows, shape (T, P)."""
        y = np.asarray(y, dtype=np.float64)
        T, P = y.shape[0], self.lag_order
        X = np.zeros((T, P))
        for k in range(P):
            X[P:, k] = y[P - k - 1:T - k - 1]
        return X

    # ------------------------------------------------------------------
    # Log densities (sampler contract)
    # ------------------------------------------------------------------

    def _vector(self, params: Mapping[str, float], name: str) -> NDArray[np.float64]:
        return np.array([params[indexed(name, i)] for i in range(self.lag_order)], dtype=np.float64)

    def reconstruct(self, params: Mapping[str, float], series: TimeSeries) -> NDArray[np.float64]:
        """Series with missing positions filled from the `y[t]` entries of `params`."""
        imputed = [params[indexed("y", int(t))] for t in series.missing_positions]
        return series.fill(imputed)

    def log_prior(self, params: Mapping[str, float]) -> float:
        """
        Joint log prior density of the coefficient parameters.

        Imputed values carry a flat prior and contribute nothing. Returns
        -inf for any scale outside (0, ∞).
        """
        ps = self.prior_spec
        tau = float(params["tau"])
        sigma = float(params["sigma"])
        lam = self._vector(params, "lambda")
        beta = self._vector(params, "beta")

        if tau <= 0 or sigma <= 0 or np.any(lam <= 0):
            return -np.inf

        lp = norm.logpdf(float(params["alpha"]), loc=ps.intercept_loc, scale=ps.intercept_scale)
        lp += halfcauchy.logpdf(tau, scale=ps.global_scale)
        lp += halfcauchy.logpdf(lam, scale=ps.local_scale).sum()
        lp += norm.logpdf(beta, loc=0.0, scale=tau * lam).sum()
        lp += halfcauchy.logpdf(sigma, scale=ps.scale_scale)
        return float(lp)

    def log_likelihood(self, params: Mapping[str, float], series: TimeSeries) -> float:
        """Log likelihood of the reconstructed series given the parameters."""
        self._check_series(series)
        sigma = float(params["sigma"])
        if sigma <= 0:
            return -np.inf

        y = self.reconstruct(params, series)
        mu = float(params["alpha"]) + self.lag_matrix(y) @ self._vector(params, "beta")
        return float(norm.logpdf(y, loc=mu, scale=sigma).sum())

    def log_density(self, params: Mapping[str, float], series: TimeSeries) -> float:
        """Unnormalised log posterior density."""
        lp = self.log_prior(params)
        if not np.isfinite(lp):
            return lp
        return lp + self.log_likelihood(params, series)

    # ------------------------------------------------------------------
    # PyMC graph
    # ------------------------------------------------------------------

    def build_model(self, series: TimeSeries) -> pm.Model:
        """
        Build the PyMC model conditioned on `series`.

        Missing positions become the free vector ``y_missing`` spliced into
        the series before the likelihood is evaluated.
        """
        self._check_series(series)
        ps = self.prior_spec
        P, T = self.lag_order, self.n_obs
        missing = series.missing_positions
        init = self.initial_values(series)

        coords = {"lag": np.arange(1, P + 1), "missing": missing}
        with pm.Model(coords=coords) as model:
            alpha = pm.Normal("alpha", mu=ps.intercept_loc, sigma=ps.intercept_scale)
            tau = pm.HalfCauchy("tau", beta=ps.global_scale)
            lam = pm.HalfCauchy("lambda", beta=ps.local_scale, dims="lag")
            z = pm.Normal("beta_raw", mu=0.0, sigma=1.0, dims="lag")
            beta = pm.Deterministic("beta", z * lam * tau, dims="lag")
            sigma = pm.HalfCauchy("sigma", beta=ps.scale_scale)

            # Missing slots are overwritten by the latent vector below
            y = pt.as_tensor_variable(series.fill(np.zeros(len(missing))))
            if len(missing):
                y_missing = pm.Flat(
                    "y_missing",
                    dims="missing",
                    initval=np.full(len(missing), init["alpha"]),
                )
                y = pt.set_subtensor(y[missing], y_missing)

            X = pt.stack(
                [pt.concatenate([pt.zeros(P), y[P - k - 1:T - k - 1]]) for k in range(P)],
                axis=1,
            )
            mu = alpha + pt.dot(X, beta)
            pm.Potential("y_loglike", pm.logp(pm.Normal.dist(mu=mu, sigma=sigma), y).sum())

        return model

    def to_dict(self) -> Dict:
        return {
            "lag_order": self.lag_order,
            "n_obs": self.n_obs,
            "priors": self.prior_spec.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping) -> "ModelSpec":
        return cls(raw["lag_order"], raw["n_obs"], PriorSpec(**raw.get("priors", {})))

    def __repr__(self) -> str:
        return (
            f"ModelSpec(lag_order={self.lag_order}, n_obs={self.n_obs}, "
            f"prior_spec={self.prior_spec})"
        )

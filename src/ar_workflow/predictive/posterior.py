"""
Posterior predictive summaries.

Reconstructs the full (imputed-where-missing) series for every posterior
draw, summarises it per time index, forecasts past the end of the series
and checks whether known simulation parameters are recovered.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ar_workflow.config import GateConfig
from ar_workflow.errors import IncompleteFitError, InvalidLengthError
from ar_workflow.inference.diagnostics import DiagnosticsReport
from ar_workflow.inference.fit import Fit
from ar_workflow.model.spec import flatten_parameters, indexed
from ar_workflow.series.timeseries import TimeSeries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastSummary:
    """
    Per-time-index quantiles of the reconstructed series.

    Attributes
    ----------
    time_index : NDArray[np.int64]
        Time indices covered, shape (n,)
    lower, median, upper : NDArray[np.float64]
        Quantiles at each index, shape (n,)
    quantiles : Tuple[float, float, float]
        Probabilities of lower, median and upper
    reliable : bool or None
        False when the fit failed the supplied diagnostics gate, None when
        no gate was evaluated
    """

    time_index: NDArray[np.int64]
    lower: NDArray[np.float64]
    median: NDArray[np.float64]
    upper: NDArray[np.float64]
    quantiles: Tuple[float, float, float]
    reliable: Optional[bool] = None

    def __len__(self) -> int:
        return len(self.time_index)

    def to_dict(self) -> Dict[str, list]:
        return {
            "time_index": self.time_index.tolist(),
            "lower": self.lower.tolist(),
            "median": self.median.tolist(),
            "upper": self.upper.tolist(),
        }


@dataclass(frozen=True)
class RecoveryResult:
    """
    Coverage of known parameters by their central posterior intervals.

    Attributes
    ----------
    coverage : Dict[str, bool]
        Whether each true value lies inside its interval
    interval_width : float
        Mass of the central interval
    reliable : bool or None
        False when the fit failed the supplied diagnostics gate, None when
        no gate was evaluated
    """

    coverage: Dict[str, bool]
    interval_width: float
    reliable: Optional[bool] = None

    @property
    def n_covered(self) -> int:
        return sum(self.coverage.values())

    def to_dict(self) -> Dict:
        return {
            "interval_width": self.interval_width,
            "reliable": self.reliable,
            "coverage": dict(self.coverage),
        }


def _check_quantiles(quantiles: Sequence[float]) -> Tuple[float, float, float]:
    q = tuple(float(x) for x in quantiles)
    if len(q) != 3:
        raise ValueError(f"Expected (lower, median, upper) quantiles. Got {q}")
    if not (0.0 < q[0] < q[1] < q[2] < 1.0):
        raise ValueError(f"Quantiles must be increasing and inside (0, 1). Got {q}")
    return q


def _check_fit(fit: Fit) -> None:
    if not fit.complete:
        raise IncompleteFitError("Posterior summaries need a complete fit")


def _assess(report: Optional[DiagnosticsReport], gate: Optional[GateConfig]) -> Optional[bool]:
    if report is None:
        return None
    gate = gate or GateConfig()
    reliable = report.meets(gate.rhat_max, gate.min_ess, gate.max_divergences)
    if not reliable:
        logger.warning(f"Diagnostics gate not met ({report}); summary flagged unreliable")
    return reliable


class PosteriorPredictive:
    """Read-only summaries over a completed Fit."""

    @staticmethod
    def reconstruct(fit: Fit, series: TimeSeries) -> NDArray[np.float64]:
        """
        Complete series per draw.

        Returns
        -------
        NDArray[np.float64]
            Shape (n_draws_total, T). Present observations are copied
            unchanged; missing positions take each draw's imputed value.
        """
        _check_fit(fit)
        if series.n_obs != fit.series.n_obs:
            raise InvalidLengthError(
                f"Series has {series.n_obs} observations, fit has {fit.series.n_obs}"
            )
        names = [indexed("y", int(t)) for t in series.missing_positions]
        return np.array([series.fill([d[n] for n in names]) for d in fit.draws()])

    @staticmethod
    def forecast_summary(
        fit: Fit,
        series: TimeSeries,
        quantiles: Sequence[float] = (0.25, 0.5, 0.75),
        report: Optional[DiagnosticsReport] = None,
        gate: Optional[GateConfig] = None,
    ) -> ForecastSummary:
        """
        Quantiles of the reconstructed series, independently per index.

        No smoothing across indices is applied.
        """
        q = _check_quantiles(quantiles)
        recon = PosteriorPredictive.reconstruct(fit, series)
        lower, median, upper = np.quantile(recon, q, axis=0)
        return ForecastSummary(
            time_index=np.arange(series.n_obs),
            lower=lower,
            median=median,
            upper=upper,
            quantiles=q,
            reliable=_assess(report, gate),
        )

    @staticmethod
    def forecast_ahead(
        fit: Fit,
        series: TimeSeries,
        horizon: int,
        quantiles: Sequence[float] = (0.25, 0.5, 0.75),
        random_seed: Optional[int] = None,
        report: Optional[DiagnosticsReport] = None,
        gate: Optional[GateConfig] = None,
    ) -> ForecastSummary:
        """
        Out-of-sample forecast for indices T..T+horizon-1.

        Each draw extends its reconstructed series with the AR recursion
        and a fresh Normal(0, σ) innovation per step.
        """
        if horizon < 1:
            raise ValueError(f"horizon must be >= 1. Got {horizon}")
        q = _check_quantiles(quantiles)
        spec = fit.model_spec
        P, T = spec.lag_order, series.n_obs

        recon = PosteriorPredictive.reconstruct(fit, series)
        draws = list(fit.draws())
        alpha = np.array([d["alpha"] for d in draws])
        sigma = np.array([d["sigma"] for d in draws])
        beta = np.array([[d[indexed("beta", i)] for i in range(P)] for d in draws])

        rng = np.random.default_rng(random_seed)
        paths = np.concatenate([recon, np.zeros((len(draws), horizon))], axis=1)
        for h in range(horizon):
            t = T + h
            lags = paths[:, t - P:t][:, ::-1]
            loc = alpha + np.sum(lags * beta, axis=1)
            paths[:, t] = rng.normal(loc, sigma)

        lower, median, upper = np.quantile(paths[:, T:], q, axis=0)
        return ForecastSummary(
            time_index=np.arange(T, T + horizon),
            lower=lower,
            median=median,
            upper=upper,
            quantiles=q,
            reliable=_assess(report, gate),
        )

    @staticmethod
    def recovery_check(
        fit: Fit,
        true_params: Mapping,
        interval_width: float = 0.5,
        report: Optional[DiagnosticsReport] = None,
        gate: Optional[GateConfig] = None,
    ) -> RecoveryResult:
        """
        Whether each true parameter lies in its central posterior interval.

        Parameters
        ----------
        fit : Fit
            Fit to simulated data.
        true_params : Mapping
            Parameters used in simulation; vectors are flattened to
            ``name[i]``.
        interval_width : float
            Mass of the central interval, e.g. 0.5 for the 25%-75% interval.
        report : DiagnosticsReport, optional
            Diagnostics of `fit`; when given, the result is flagged
            unreliable if it fails `gate`.
        gate : GateConfig, optional
            Thresholds applied to `report`. Default `GateConfig()`.

        Returns
        -------
        result : RecoveryResult
        """
        _check_fit(fit)
        if not (0.0 < interval_width < 1.0):
            raise ValueError(f"interval_width must be in (0, 1). Got {interval_width}")

        tail = (1.0 - interval_width) / 2.0
        available = set(fit.parameter_names)
        coverage = {}
        for name, truth in flatten_parameters(true_params).items():
            if name not in available:
                raise KeyError(f"Parameter {name!r} not found in fit")
            lo, hi = np.quantile(fit.pooled(name), [tail, 1.0 - tail])
            coverage[name] = bool(lo <= truth <= hi)

        result = RecoveryResult(coverage, interval_width, reliable=_assess(report, gate))
        logger.info(
            f"Recovery at {interval_width:.0%}: "
            f"{result.n_covered}/{len(coverage)} parameters covered"
        )
        return result


reconstruct = PosteriorPredictive.reconstruct
forecast_summary = PosteriorPredictive.forecast_summary
forecast_ahead = PosteriorPredictive.forecast_ahead
recovery_check = PosteriorPredictive.recovery_check

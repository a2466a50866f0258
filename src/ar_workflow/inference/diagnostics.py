"""
Convergence diagnostics from multiple chains.

Key diagnostics:
- Rhat (potential scale reduction): compares between- and within-chain
  variance; values near 1 indicate the chains agree
- ESS (effective sample size): total draws discounted by the integrated
  autocorrelation; never exceeds the total draw count
- Divergences: count of transitions flagged by the sampler

Threshold policy is the caller's: `DiagnosticsReport.meets` evaluates
whatever gate it is given.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import arviz as az
import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ar_workflow.errors import IncompleteFitError, InsufficientChainsError
from ar_workflow.inference.fit import Fit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParameterDiagnostics:
    """Mixing and autocorrelation summary of one scalar parameter."""

    rhat: float
    ess: float


@dataclass(frozen=True)
class DiagnosticsReport:
    """
    Diagnostics for every parameter of a Fit.

    Attributes
    ----------
    parameters : Dict[str, ParameterDiagnostics]
        Per-parameter Rhat and ESS
    n_divergent : int
        Divergent transitions across all chains
    total_draws : int
        Draws summed across chains
    n_chains : int
        Number of chains
    """

    parameters: Dict[str, ParameterDiagnostics]
    n_divergent: int
    total_draws: int
    n_chains: int

    @property
    def max_rhat(self) -> float:
        return max((p.rhat for p in self.parameters.values()), default=1.0)

    @property
    def min_ess(self) -> float:
        return min((p.ess for p in self.parameters.values()), default=float(self.total_draws))

    def failing(
        self,
        rhat_max: float,
        min_ess: float = 0.0,
    ) -> Dict[str, ParameterDiagnostics]:
        """Parameters whose Rhat or ESS violate the given thresholds."""
        return {
            name: diag
            for name, diag in self.parameters.items()
            if not (diag.rhat < rhat_max and diag.ess >= min_ess)
        }

    def meets(
        self,
        rhat_max: float,
        min_ess: float = 0.0,
        max_divergences: int = 0,
    ) -> bool:
        """True when every parameter passes and divergences are within bound."""
        return not self.failing(rhat_max, min_ess) and self.n_divergent <= max_divergences

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "rhat": {n: d.rhat for n, d in self.parameters.items()},
                "ess": {n: d.ess for n, d in self.parameters.items()},
            }
        )

    def __repr__(self) -> str:
        return (
            f"DiagnosticsReport(params={len(self.parameters)}, max_rhat={self.max_rhat:.3f}, "
            f"min_ess={self.min_ess:.0f}/{self.total_draws}, divergent={self.n_divergent})"
        )


class ConvergenceDiagnostics:
    """
    Compute convergence diagnostics from posterior samples.

    Parameters
    ----------
    autocorr_cutoff : float
        Autocorrelation below which the ESS sum is truncated. Default 0.05.
    max_lag : int, optional
        Largest lag considered by the ESS sum. Default: half the chain
        length.
    """

    def __init__(self, autocorr_cutoff: float = 0.05, max_lag: Optional[int] = None) -> None:
        if not (0.0 <= autocorr_cutoff < 1.0):
            raise ValueError(f"autocorr_cutoff must be in [0, 1). Got {autocorr_cutoff}")
        self.autocorr_cutoff = autocorr_cutoff
        self.max_lag = max_lag

    @staticmethod
    def _check_shape(samples: NDArray[np.float64]) -> NDArray[np.float64]:
        samples = np.asarray(samples, dtype=np.float64)
        if samples.ndim != 2:
            raise ValueError(f"samples must have shape (chains, draws). Got {samples.shape}")
        if samples.shape[0] < 2:
            raise InsufficientChainsError(
                f"Need at least 2 chains for a between/within comparison. Got {samples.shape[0]}"
            )
        if samples.shape[1] < 2:
            raise ValueError(f"Need at least 2 draws per chain. Got {samples.shape[1]}")
        return samples

    @staticmethod
    def rhat(samples: NDArray[np.float64]) -> float:
        """
        Potential scale reduction factor.

        Parameters
        ----------
        samples : NDArray[np.float64]
            Shape (chains, draws).

        Returns
        -------
        rhat : float
            sqrt(var_hat / W); 1.0 when the within-chain variance is zero.
        """
        samples = ConvergenceDiagnostics._check_shape(samples)
        n_draws = samples.shape[1]

        chain_means = np.mean(samples, axis=1)
        B = n_draws * np.var(chain_means, ddof=1)
        W = np.mean(np.var(samples, axis=1, ddof=1))

        if W <= 0:
            return 1.0 if B <= 0 else float("inf")

        var_hat = ((n_draws - 1) / n_draws) * W + B / n_draws
        return float(np.sqrt(var_hat / W))

    def ess(self, samples: NDArray[np.float64]) -> float:
        """
        Multi-chain effective sample size.

        Lag-k autocorrelation combines the within-chain autocovariances
        with the pooled variance estimate:

            ρ_k = 1 - (W - mean_c γ_{c,k}) / var_hat

        and the integrated autocorrelation τ = 1 + 2 Σ ρ_k is summed until
        ρ_k drops below `autocorr_cutoff`. Uncorrelated draws usually stop at
        lag 1 and report the full draw count, but sampling noise in ρ_1 can
        exceed the cutoff on short chains.

        Chains that are each constant report the full draw count when they
        agree and 1 when they sit at different values.

        Returns
        -------
        ess : float
            total_draws / τ, clipped to [1, total_draws].
        """
        samples = self._check_shape(samples)
        n_chains, n_draws = samples.shape
        total = n_chains * n_draws

        centred = samples - samples.mean(axis=1, keepdims=True)
        chain_vars = np.var(samples, axis=1, ddof=1)
        W = np.mean(chain_vars)
        B = n_draws * np.var(samples.mean(axis=1), ddof=1)
        if W < 1e-12:
            return float(total) if B < 1e-12 else 1.0

        var_hat = ((n_draws - 1) / n_draws) * W + B / n_draws

        max_lag = self.max_lag or n_draws // 2
        tau = 1.0
        for lag in range(1, min(max_lag, n_draws - 1) + 1):
            acov = np.mean(np.sum(centred[:, :-lag] * centred[:, lag:], axis=1) / n_draws)
            rho = 1.0 - (W - acov) / var_hat
            if rho < self.autocorr_cutoff:
                break
            tau += 2.0 * rho

        return float(np.clip(total / tau, 1.0, total))

    def diagnose(self, fit: Fit) -> DiagnosticsReport:
        """
        Diagnostics for every scalar parameter of `fit`.

        Raises
        ------
        InsufficientChainsError
            If the fit has fewer than 2 chains.
        IncompleteFitError
            If the fit was cancelled.
        """
        if fit.n_chains < 2:
            raise InsufficientChainsError(
                f"Need at least 2 chains for a between/within comparison. Got {fit.n_chains}"
            )
        if not fit.complete:
            raise IncompleteFitError("Cannot diagnose an incomplete (cancelled) fit")

        parameters = {}
        for name in fit.parameter_names:
            samples = fit.values(name)
            parameters[name] = ParameterDiagnostics(rhat=self.rhat(samples), ess=self.ess(samples))

        report = DiagnosticsReport(
            parameters=parameters,
            n_divergent=fit.n_divergent,
            total_draws=fit.total_draws,
            n_chains=fit.n_chains,
        )
        logger.info(f"Diagnostics: {report}")
        return report

    def __repr__(self) -> str:
        return f"ConvergenceDiagnostics(autocorr_cutoff={self.autocorr_cutoff})"


def summary_frame(fit: Fit, var_names: Optional[list] = None, hdi_prob: float = 0.9) -> pd.DataFrame:
    """ArviZ posterior summary (mean, sd, HDI, ess_bulk, r_hat) for reporting."""
    return az.summary(fit.to_inference_data(), var_names=var_names, hdi_prob=hdi_prob)


def diagnose(fit: Fit) -> DiagnosticsReport:
    """Functional shortcut with default settings."""
    return ConvergenceDiagnostics().diagnose(fit)

"""
Posterior sampling adapter.

Translates a ModelSpec and a TimeSeries into the backend's input contract,
dispatches independent chains to a worker pool and collects the returned
draws into a Fit. The adapter never retries: a failed chain invalidates the
comparison across chains, and retrying with another seed is a caller
decision.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Dict, Optional

import numpy as np

from ar_workflow.errors import SamplerFailureError
from ar_workflow.inference.backends import ChainResult, ModelDescription, SamplingBackend
from ar_workflow.inference.fit import Chain, Fit, ParameterDraw
from ar_workflow.model.spec import POSITIVE, ModelSpec
from ar_workflow.series.timeseries import TimeSeries

logger = logging.getLogger(__name__)


class PosteriorSampler:
    """
    Dispatches chains to a sampling backend and assembles a Fit.

    Attributes
    ----------
    backend : SamplingBackend
        External Markov-chain capability
    n_workers : int
        Number of chains sampled concurrently
    """

    def __init__(self, backend: SamplingBackend, n_workers: int = 1) -> None:
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1. Got {n_workers}")
        self.backend = backend
        self.n_workers = n_workers

    def fit(
        self,
        model_spec: ModelSpec,
        series: TimeSeries,
        num_chains: int,
        draws_per_chain: int,
        random_seed: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Fit:
        """
        Sample `num_chains` independent chains.

        Parameters
        ----------
        model_spec : ModelSpec
            Model to sample.
        series : TimeSeries
            Observed data, possibly with missing positions.
        num_chains : int
            Number of independent chains, each with its own seed.
        draws_per_chain : int
            Post-warmup draws per chain.
        random_seed : int, optional
            Root seed; per-chain seeds are spawned from it.
        cancel_event : threading.Event, optional
            When set, in-flight chains stop early and the returned Fit is
            marked incomplete.

        Returns
        -------
        fit : Fit

        Raises
        ------
        SamplerFailureError
            If any chain fails or returns a draw outside the model support.
        """
        if num_chains < 1 or draws_per_chain < 1:
            raise ValueError(
                f"num_chains and draws_per_chain must be positive. Got "
                f"num_chains={num_chains}, draws_per_chain={draws_per_chain}"
            )
        if series.n_obs != model_spec.n_obs:
            raise ValueError(
                f"Series has {series.n_obs} observations, model expects {model_spec.n_obs}"
            )

        description = ModelDescription.from_spec(model_spec, series)
        init_lp = model_spec.log_density(description.initial_values, series)
        if not np.isfinite(init_lp):
            raise SamplerFailureError(None, f"Log density is {init_lp} at the initial point")

        seeds = [
            int(s.generate_state(1)[0])
            for s in np.random.SeedSequence(random_seed).spawn(num_chains)
        ]
        cancel_event = cancel_event or threading.Event()
        # Separate from cancel_event so a failure does not look like a user cancellation
        stop_event = _LinkedEvent(cancel_event)

        logger.info(
            f"Sampling {num_chains} chains x {draws_per_chain} draws "
            f"({series.n_missing} missing positions) on {self.n_workers} workers"
        )
        start_time = time.time()

        results: Dict[int, ChainResult] = {}
        with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
            futures = {
                pool.submit(
                    self.backend.sample_chain,
                    description,
                    chain_id,
                    draws_per_chain,
                    seeds[chain_id],
                    stop_event,
                ): chain_id
                for chain_id in range(num_chains)
            }
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            failed = [f for f in done if f.exception() is not None]
            if failed:
                stop_event.set()
                wait(futures)
                first = min(failed, key=lambda f: futures[f])
                chain_id = futures[first]
                exc = first.exception()
                if isinstance(exc, SamplerFailureError):
                    raise exc
                raise SamplerFailureError(chain_id, f"{type(exc).__name__}: {exc}") from exc

            for future, chain_id in futures.items():
                results[chain_id] = future.result()

        chains = tuple(
            self._collect(chain_id, results[chain_id], description)
            for chain_id in range(num_chains)
        )
        fit = Fit(model_spec=model_spec, series=series, chains=chains)

        elapsed = time.time() - start_time
        if fit.complete:
            logger.info(f"Sampling finished in {elapsed:.1f}s: {fit}")
        else:
            logger.warning(f"Sampling cancelled after {elapsed:.1f}s: {fit}")
        if fit.n_divergent:
            logger.warning(f"{fit.n_divergent} divergent transitions")
        return fit

    @staticmethod
    def _collect(chain_id: int, result: ChainResult, description: ModelDescription) -> Chain:
        """Validate draws against the model support and wrap them in a Chain."""
        n_imputed = description.series.n_missing
        names = description.parameter_names
        positive = [n for n, s in description.supports.items() if s == POSITIVE]

        draws = []
        for i, (values, divergent) in enumerate(zip(result.draws, result.divergent)):
            absent = [n for n in names if n not in values]
            if absent:
                raise SamplerFailureError(chain_id, f"draw {i} lacks parameters {absent[:5]}")
            if any(values[n] <= 0 for n in positive):
                raise SamplerFailureError(chain_id, f"draw {i} has a scale outside (0, inf)")
            lp = description.log_prior(values) + description.log_likelihood(values, description.series)
            if not np.isfinite(lp):
                raise SamplerFailureError(chain_id, f"draw {i} has non-finite log density {lp}")
            draws.append(ParameterDraw(values=values, divergent=bool(divergent), n_imputed=n_imputed))

        logger.info(
            f"Chain {chain_id}: {len(draws)} draws, "
            f"{sum(d.divergent for d in draws)} divergent"
            + ("" if result.complete else " (incomplete)")
        )
        return Chain(chain_id=chain_id, draws=tuple(draws), complete=result.complete)

    def __repr__(self) -> str:
        return f"PosteriorSampler(backend={self.backend!r}, n_workers={self.n_workers})"


class _LinkedEvent(threading.Event):
    """Event that also reads as set when its parent is set."""

    def __init__(self, parent: threading.Event) -> None:
        super().__init__()
        self._parent = parent

    def is_set(self) -> bool:
        return super().is_set() or self._parent.is_set()

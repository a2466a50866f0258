"""
Posterior draws, chains and fits.

One Fit owns many Chains, one Chain owns many ParameterDraws. All three are
immutable once the sampling adapter has produced them; diagnostics and
posterior predictive summaries only read from them.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Sequence, Tuple

import arviz as az
import numpy as np
import polars as pl
from numpy.typing import NDArray

from ar_workflow.model.spec import ModelSpec
from ar_workflow.series.timeseries import TimeSeries

_INDEXED = re.compile(r"^(?P<base>[^\[]+)\[(?P<index>\d+)\]$")

FIT_SCHEMA = {
    "chain": pl.Int64,
    "draw": pl.Int64,
    "parameter": pl.Utf8,
    "value": pl.Float64,
    "divergent": pl.Boolean,
}


@dataclass(frozen=True)
class ParameterDraw:
    """One posterior sample: parameter name -> value."""

    values: Mapping[str, float]
    divergent: bool = False
    n_imputed: int = 0

    def __post_init__(self) -> None:
        frozen = MappingProxyType({k: float(v) for k, v in self.values.items()})
        object.__setattr__(self, "values", frozen)

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values


@dataclass(frozen=True)
class Chain:
    """Ordered draws from one independent sampler run."""

    chain_id: int
    draws: Tuple[ParameterDraw, ...]
    complete: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "draws", tuple(self.draws))

    def __len__(self) -> int:
        return len(self.draws)

    def __iter__(self) -> Iterator[ParameterDraw]:
        return iter(self.draws)

    @property
    def n_divergent(self) -> int:
        return sum(d.divergent for d in self.draws)


@dataclass(frozen=True)
class Fit:
    """
    Chains sampled for one ModelSpec and one TimeSeries.

    Attributes
    ----------
    model_spec : ModelSpec
        Model the chains were sampled from
    series : TimeSeries
        Data the model was conditioned on
    chains : Tuple[Chain, ...]
        At least one chain, unique chain ids
    """

    model_spec: ModelSpec
    series: TimeSeries
    chains: Tuple[Chain, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        chains = tuple(self.chains)
        if not chains:
            raise ValueError("A Fit needs at least one chain")
        ids = [c.chain_id for c in chains]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Chain ids must be unique. Got {ids}")
        object.__setattr__(self, "chains", chains)

    @property
    def complete(self) -> bool:
        """False when any chain was stopped early by cancellation."""
        return all(c.complete for c in self.chains)

    @property
    def n_chains(self) -> int:
        return len(self.chains)

    @property
    def total_draws(self) -> int:
        return sum(len(c) for c in self.chains)

    @property
    def n_divergent(self) -> int:
        return sum(c.n_divergent for c in self.chains)

    def draws(self) -> Iterator[ParameterDraw]:
        """All draws, chain by chain, in sampling order."""
        for chain in self.chains:
            yield from chain.draws

    @property
    def parameter_names(self) -> List[str]:
        """Names present in every draw, in first-seen order."""
        names: List[str] = []
        common = None
        for draw in self.draws():
            keys = set(draw.values)
            common = keys if common is None else common & keys
            for k in draw.values:
                if k not in names:
                    names.append(k)
        return [n for n in names if common and n in common]

    def values(self, name: str) -> NDArray[np.float64]:
        """
        Samples of one scalar parameter.

        Returns
        -------
        NDArray[np.float64]
            Shape (n_chains, n_draws).

        Raises
        ------
        ValueError
            If chains have different lengths.
        """
        lengths = {len(c) for c in self.chains}
        if len(lengths) != 1:
            raise ValueError(f"Chains have different lengths: {sorted(lengths)}")
        return np.array([[d[name] for d in c.draws] for c in self.chains], dtype=np.float64)

    def pooled(self, name: str) -> NDArray[np.float64]:
        """Samples of one parameter across all chains, flattened."""
        return np.array([d[name] for d in self.draws()], dtype=np.float64)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_frame(self) -> pl.DataFrame:
        """Long table: one row per (chain, draw, parameter)."""
        rows: Dict[str, list] = {k: [] for k in FIT_SCHEMA}
        for chain in self.chains:
            for i, draw in enumerate(chain.draws):
                for name, value in draw.values.items():
                    rows["chain"].append(chain.chain_id)
                    rows["draw"].append(i)
                    rows["parameter"].append(name)
                    rows["value"].append(value)
                    rows["divergent"].append(draw.divergent)
        return pl.DataFrame(rows, schema=FIT_SCHEMA)

    @classmethod
    def from_frame(
        cls,
        frame: pl.DataFrame,
        model_spec: ModelSpec,
        series: TimeSeries,
        incomplete_chains: Sequence[int] = (),
    ) -> "Fit":
        """Rebuild a Fit from the table written by `to_frame`."""
        missing_cols = set(FIT_SCHEMA) - set(frame.columns)
        if missing_cols:
            raise ValueError(f"Fit table is missing columns {sorted(missing_cols)}")

        n_imputed = series.n_missing
        chains = []
        for (chain_id,), chain_rows in frame.sort(["chain", "draw"]).group_by(
            ["chain"], maintain_order=True
        ):
            draws = []
            for (_,), draw_rows in chain_rows.group_by(["draw"], maintain_order=True):
                draws.append(
                    ParameterDraw(
                        values=dict(zip(draw_rows["parameter"], draw_rows["value"])),
                        divergent=bool(draw_rows["divergent"].any()),
                        n_imputed=n_imputed,
                    )
                )
            chains.append(
                Chain(
                    chain_id=int(chain_id),
                    draws=tuple(draws),
                    complete=int(chain_id) not in set(incomplete_chains),
                )
            )
        return cls(model_spec=model_spec, series=series, chains=tuple(chains))

    def to_inference_data(self) -> az.InferenceData:
        """
        Export to ArviZ, regrouping ``name[i]`` scalars into vectors.

        Returns
        -------
        idata : arviz.InferenceData
            ``posterior`` and ``sample_stats.diverging`` groups.
        """
        grouped: Dict[str, Dict[int, str]] = defaultdict(dict)
        scalars = []
        for name in self.parameter_names:
            match = _INDEXED.match(name)
            if match:
                grouped[match["base"]][int(match["index"])] = name
            else:
                scalars.append(name)

        posterior = {name: self.values(name) for name in scalars}
        dims = {}
        coords = {}
        for base, members in grouped.items():
            order = sorted(members)
            posterior[base] = np.stack([self.values(members[i]) for i in order], axis=-1)
            dims[base] = [f"{base}_dim"]
            coords[f"{base}_dim"] = order

        diverging = np.array(
            [[d.divergent for d in c.draws] for c in self.chains], dtype=bool
        )
        return az.from_dict(
            posterior=posterior,
            sample_stats={"diverging": diverging},
            coords=coords,
            dims=dims,
        )

    def __repr__(self) -> str:
        status = "complete" if self.complete else "incomplete"
        return (
            f"Fit(chains={self.n_chains}, draws={self.total_draws}, "
            f"divergent={self.n_divergent}, {status})"
        )

"""
Time series with explicitly tagged missing observations.

An Observation is either a present finite scalar or an absent marker.
Missingness is never encoded as an in-band number, so no legitimate data
value can collide with a chosen sentinel.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ar_workflow.errors import InvalidLengthError


@dataclass(frozen=True)
class Observation:
    """A single time-indexed scalar, tagged present or missing."""

    value: Optional[float] = None

    @classmethod
    def present(cls, value: float) -> "Observation":
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"Present observations must be finite. Got {value}")
        return cls(value)

    @classmethod
    def missing(cls) -> "Observation":
        return cls(None)

    @property
    def is_missing(self) -> bool:
        return self.value is None

    def __repr__(self) -> str:
        return "Observation(missing)" if self.is_missing else f"Observation({self.value})"


class TimeSeries:
    """
    Ordered, immutable sequence of Observations indexed 0..T-1.

    The length T is fixed at construction. Derived views (mask, observed
    values, missing positions) are computed once and returned as read-only
    arrays.

    Attributes
    ----------
    n_obs : int
        Number of observations (T)
    mask : NDArray[np.bool_]
        True where the observation is missing, shape (T,)
    missing_positions : NDArray[np.int64]
        Sorted indices of missing observations
    observed_positions : NDArray[np.int64]
        Sorted indices of present observations
    """

    __slots__ = ("_observations", "_mask", "_values")

    def __init__(self, observations: Iterable[Observation]) -> None:
        observations = tuple(observations)
        for obs in observations:
            if not isinstance(obs, Observation):
                raise TypeError(f"Expected Observation, got {type(obs).__name__}")

        mask = np.array([obs.is_missing for obs in observations], dtype=bool)
        values = np.array(
            [0.0 if obs.is_missing else obs.value for obs in observations],
            dtype=np.float64,
        )
        mask.flags.writeable = False
        values.flags.writeable = False

        object.__setattr__(self, "_observations", observations)
        object.__setattr__(self, "_mask", mask)
        object.__setattr__(self, "_values", values)

    def __setattr__(self, name, value) -> None:
        raise AttributeError("TimeSeries is immutable")

    def __len__(self) -> int:
        return len(self._observations)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._observations)

    def __getitem__(self, t: int) -> Observation:
        return self._observations[t]

    def __eq__(self, other) -> bool:
        if not isinstance(other, TimeSeries):
            return NotImplemented
        return self._observations == other._observations

    def __hash__(self) -> int:
        return hash(self._observations)

    @property
    def n_obs(self) -> int:
        return len(self._observations)

    @property
    def mask(self) -> NDArray[np.bool_]:
        return self._mask

    @property
    def n_missing(self) -> int:
        return int(self._mask.sum())

    @property
    def missing_positions(self) -> NDArray[np.int64]:
        return np.flatnonzero(self._mask)

    @property
    def observed_positions(self) -> NDArray[np.int64]:
        return np.flatnonzero(~self._mask)

    def observed_values(self) -> NDArray[np.float64]:
        """Values at present positions, in time order."""
        return self._values[~self._mask].copy()

    def as_masked_array(self) -> np.ma.MaskedArray:
        """Values as a numpy masked array (masked where missing)."""
        return np.ma.MaskedArray(self._values.copy(), mask=self._mask.copy())

    def fill(self, imputed: Sequence[float]) -> NDArray[np.float64]:
        """
        Full series with missing positions taken from `imputed`.

        Parameters
        ----------
        imputed : Sequence[float]
            One value per missing position, in the order of
            `missing_positions`.

        Returns
        -------
        NDArray[np.float64]
            Complete series, shape (T,). Present values are copied exactly.
        """
        imputed = np.asarray(imputed, dtype=np.float64)
        if imputed.shape != (self.n_missing,):
            raise InvalidLengthError(
                f"Expected {self.n_missing} imputed values. Got shape {imputed.shape}"
            )
        full = self._values.copy()
        full[self._mask] = imputed
        return full

    def with_missing(self, positions: Iterable[int]) -> "TimeSeries":
        """
        Return a new series with `positions` additionally marked missing.

        Existing gaps are kept. Used to mask a contiguous block on top of
        whatever was already absent in the source data.
        """
        positions = _validate_positions(positions, self.n_obs)
        observations = list(self._observations)
        for t in positions:
            observations[t] = Observation.missing()
        return TimeSeries(observations)

    def __repr__(self) -> str:
        return f"TimeSeries(n_obs={self.n_obs}, n_missing={self.n_missing})"


def _validate_positions(positions: Iterable[int], n_obs: int) -> Tuple[int, ...]:
    """Check that every position addresses an index in 0..n_obs-1."""
    checked = []
    for t in positions:
        if isinstance(t, (bool, np.bool_)) or int(t) != t:
            raise InvalidLengthError(f"Missing positions must be integers. Got {t!r}")
        t = int(t)
        if t < 0 or t >= n_obs:
            raise InvalidLengthError(
                f"Missing position {t} out of range for series of length {n_obs}"
            )
        checked.append(t)
    return tuple(sorted(set(checked)))

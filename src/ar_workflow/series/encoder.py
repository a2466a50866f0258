"""
Encoder between raw value arrays / tabular sources and TimeSeries.

The encoder is the only boundary where an external representation of
absence (a null cell in a table, a mask) is translated into the explicit
missing marker. No numeric value is ever reinterpreted as "missing".
"""

import logging
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import polars as pl
from numpy.typing import NDArray

from ar_workflow.errors import InvalidLengthError
from ar_workflow.series.timeseries import Observation, TimeSeries, _validate_positions

logger = logging.getLogger(__name__)


class TimeSeriesEncoder:
    """Encode and decode TimeSeries from values plus missing positions."""

    @staticmethod
    def encode(
        values: Sequence[float],
        missing_positions: Iterable[int] = (),
    ) -> TimeSeries:
        """
        Build a TimeSeries from raw values and a set of missing positions.

        Parameters
        ----------
        values : Sequence[float]
            Raw values, length T. Entries at missing positions are ignored.
        missing_positions : Iterable[int]
            Indices to mark missing.

        Returns
        -------
        series : TimeSeries

        Raises
        ------
        InvalidLengthError
            If a missing position is negative or >= T.
        ValueError
            If a present value is not finite.
        """
        raw = np.ma.getdata(values)
        raw = np.asarray(raw, dtype=np.float64)
        if raw.ndim != 1:
            raise InvalidLengthError(f"values must be one-dimensional. Got shape {raw.shape}")

        missing = set(_validate_positions(missing_positions, raw.shape[0]))
        observations = [
            Observation.missing() if t in missing else Observation.present(v)
            for t, v in enumerate(raw)
        ]
        return TimeSeries(observations)

    @staticmethod
    def encode_mask(
        values: Sequence[float],
        mask: Sequence[bool],
    ) -> TimeSeries:
        """Same as `encode`, with missingness given as a boolean mask."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(values),):
            raise InvalidLengthError(
                f"mask must have shape ({len(values)},). Got {mask.shape}"
            )
        return TimeSeriesEncoder.encode(values, np.flatnonzero(mask))

    @staticmethod
    def decode(series: TimeSeries) -> Tuple[np.ma.MaskedArray, NDArray[np.bool_]]:
        """
        Inverse of `encode`.

        Returns
        -------
        values : np.ma.MaskedArray
            Observed values, masked at missing positions
        mask : NDArray[np.bool_]
            True where missing, shape (T,)
        """
        return series.as_masked_array(), series.mask.copy()

    @staticmethod
    def from_frame(
        frame: pl.DataFrame,
        time_col: str = "timestamp",
        value_col: str = "value",
    ) -> TimeSeries:
        """
        Encode a (timestamp, value) table; null or NaN values become missing.

        Rows are ordered by `time_col` before encoding.
        """
        for col in (time_col, value_col):
            if col not in frame.columns:
                raise ValueError(f"Column {col!r} not found. Available: {frame.columns}")

        ordered = frame.sort(time_col)
        try:
            ordered = ordered.with_columns(ordered[value_col].cast(pl.Float64))
        except (pl.exceptions.InvalidOperationError, pl.exceptions.ComputeError) as e:
            raise ValueError(
                f"Column {value_col!r} holds values that are neither numeric nor null: {e}"
            ) from e
        value = pl.col(value_col)
        ordered = ordered.with_columns(
            (value.is_null() | value.is_nan()).fill_null(True).alias("_missing"),
            value.fill_nan(None).alias(value_col),
        )

        missing = ordered["_missing"].to_numpy()
        values = ordered[value_col].fill_null(0.0).to_numpy()
        logger.info(
            f"Encoded {len(values)} rows from {value_col!r} ({int(missing.sum())} missing)"
        )
        return TimeSeriesEncoder.encode_mask(values, missing)

    @staticmethod
    def to_frame(
        series: TimeSeries,
        time_index: Optional[Sequence] = None,
        time_col: str = "timestamp",
        value_col: str = "value",
    ) -> pl.DataFrame:
        """Tabular form of a series; missing observations become nulls."""
        if time_index is None:
            time_index = list(range(series.n_obs))
        if len(time_index) != series.n_obs:
            raise InvalidLengthError(
                f"time_index must have length {series.n_obs}. Got {len(time_index)}"
            )
        return pl.DataFrame(
            {
                time_col: list(time_index),
                value_col: pl.Series([obs.value for obs in series], dtype=pl.Float64),
            }
        )

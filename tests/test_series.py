"""
Unit tests for TimeSeries and TimeSeriesEncoder.

Tests cover:
- Observation tagging
- Encode/decode round trip
- Out-of-range missing positions
- Tabular boundary (null and NaN become missing)
- Immutability and block masking
"""

import math

import numpy as np
import polars as pl
import pytest
from numpy.testing import assert_array_equal

from ar_workflow.errors import InvalidLengthError
from ar_workflow.series import Observation, TimeSeries, TimeSeriesEncoder


class TestObservation:
    """Tests for the tagged Observation record."""

    def test_present_and_missing(self) -> None:
        assert not Observation.present(1.5).is_missing
        assert Observation.present(1.5).value == 1.5
        assert Observation.missing().is_missing
        assert Observation.missing().value is None

    def test_present_rejects_non_finite(self) -> None:
        with pytest.raises(ValueError, match="finite"):
            Observation.present(float("nan"))
        with pytest.raises(ValueError, match="finite"):
            Observation.present(math.inf)

    def test_any_finite_value_is_present(self) -> None:
        """Values often used as sentinels stay ordinary observations."""
        for v in (-999.0, 0.0, -1.0, 9999.0):
            assert not Observation.present(v).is_missing


class TestEncoder:
    """Tests for encode/decode."""

    def test_round_trip(self) -> None:
        values = np.array([0.5, -999.0, 2.0, 0.0, 3.5])
        series = TimeSeriesEncoder.encode(values, [1, 3])
        decoded, mask = TimeSeriesEncoder.decode(series)

        assert_array_equal(mask, [False, True, False, True, False])
        assert_array_equal(decoded.compressed(), values[~mask])
        assert_array_equal(decoded.mask, mask)

    def test_round_trip_no_missing(self) -> None:
        values = np.arange(6, dtype=float)
        decoded, mask = TimeSeriesEncoder.decode(TimeSeriesEncoder.encode(values))
        assert not mask.any()
        assert_array_equal(decoded.filled(np.nan), values)

    def test_round_trip_via_mask(self) -> None:
        values = np.array([1.0, np.nan, 3.0])
        series = TimeSeriesEncoder.encode_mask(values, [False, True, False])
        decoded, mask = TimeSeriesEncoder.decode(series)
        assert_array_equal(mask, [False, True, False])
        assert_array_equal(decoded.compressed(), [1.0, 3.0])

    def test_value_at_missing_position_is_ignored(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, np.inf, 3.0], [1])
        assert series[1].is_missing

    def test_out_of_range_position_raises(self) -> None:
        with pytest.raises(InvalidLengthError, match="out of range"):
            TimeSeriesEncoder.encode([1.0, 2.0, 3.0], [3])

    def test_negative_position_raises(self) -> None:
        with pytest.raises(InvalidLengthError):
            TimeSeriesEncoder.encode([1.0, 2.0, 3.0], [-1])

    def test_mask_shape_mismatch_raises(self) -> None:
        with pytest.raises(InvalidLengthError):
            TimeSeriesEncoder.encode_mask([1.0, 2.0], [True])

    def test_nan_at_present_position_raises(self) -> None:
        with pytest.raises(ValueError, match="finite"):
            TimeSeriesEncoder.encode([1.0, np.nan, 3.0])


class TestTimeSeries:
    """Tests for TimeSeries behaviour."""

    def test_positions_and_values(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, 2.0, 3.0, 4.0], [0, 2])
        assert series.n_obs == 4
        assert series.n_missing == 2
        assert_array_equal(series.missing_positions, [0, 2])
        assert_array_equal(series.observed_positions, [1, 3])
        assert_array_equal(series.observed_values(), [2.0, 4.0])

    def test_immutable(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, 2.0, 3.0], [1])
        with pytest.raises(AttributeError):
            series.foo = 1
        with pytest.raises(ValueError):
            series.mask[0] = True

    def test_fill(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, 2.0, 3.0, 4.0], [1, 3])
        assert_array_equal(series.fill([-5.0, -6.0]), [1.0, -5.0, 3.0, -6.0])

    def test_fill_wrong_count_raises(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, 2.0, 3.0], [1])
        with pytest.raises(InvalidLengthError):
            series.fill([1.0, 2.0])

    def test_with_missing_block_keeps_existing_gaps(self) -> None:
        series = TimeSeriesEncoder.encode(np.arange(20, dtype=float), [2])
        blocked = series.with_missing(range(10, 15))

        assert_array_equal(blocked.missing_positions, [2, 10, 11, 12, 13, 14])
        assert series.n_missing == 1  # original untouched

    def test_equality(self) -> None:
        a = TimeSeriesEncoder.encode([1.0, 2.0], [1])
        b = TimeSeriesEncoder.encode([1.0, 7.0], [1])
        assert a == b
        assert isinstance(a, TimeSeries)


class TestFrameBoundary:
    """Tests for the tabular (timestamp, value) boundary."""

    def test_nulls_and_nans_become_missing(self) -> None:
        frame = pl.DataFrame(
            {
                "timestamp": [3, 1, 2, 4],
                "value": [3.0, 1.0, None, float("nan")],
            }
        )
        series = TimeSeriesEncoder.from_frame(frame)

        assert_array_equal(series.mask, [False, True, False, True])
        assert_array_equal(series.observed_values(), [1.0, 3.0])

    def test_missing_column_raises(self) -> None:
        frame = pl.DataFrame({"timestamp": [1, 2], "y": [1.0, 2.0]})
        with pytest.raises(ValueError, match="not found"):
            TimeSeriesEncoder.from_frame(frame)

    def test_to_frame_round_trip(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, 2.0, 3.0], [1])
        frame = TimeSeriesEncoder.to_frame(series)

        assert frame["value"].null_count() == 1
        assert TimeSeriesEncoder.from_frame(frame) == series

    def test_non_numeric_value_column_raises(self) -> None:
        frame = pl.DataFrame({"timestamp": [1, 2, 3], "value": ["0.5", "n/a", "1.2"]})
        with pytest.raises(ValueError, match="'value'"):
            TimeSeriesEncoder.from_frame(frame)

    def test_time_index_written(self) -> None:
        series = TimeSeriesEncoder.encode([1.0, 2.0], [0])
        frame = TimeSeriesEncoder.to_frame(series, time_index=[10, 20])
        assert frame["timestamp"].to_list() == [10, 20]
        with pytest.raises(InvalidLengthError):
            TimeSeriesEncoder.to_frame(series, time_index=[10])

"""
Test Suite for Feature Engineering Module
=========================================

Tests for the derived temporal, binned, payment and duration features.
"""

import warnings

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from taxitip.features import (
    DAY_LABELS,
    DERIVED_COLUMNS,
    engineer_features,
    bin_values,
    is_night,
    recode_payment_type,
    DISTANCE_BINS,
    DISTANCE_LABELS,
    FARE_BINS,
    FARE_LABELS,
)
from taxitip.errors import SchemaError, DataQualityWarning


def _trips(pickups, dropoffs, fare=None, distance=None, payment=None):
    n = len(pickups)
    return pd.DataFrame({
        "tpep_pickup_datetime": pd.to_datetime(pickups),
        "tpep_dropoff_datetime": pd.to_datetime(dropoffs),
        "fare_amount": fare if fare is not None else [10.0] * n,
        "trip_distance": distance if distance is not None else [2.0] * n,
        "payment_type": payment if payment is not None else [1] * n,
        "tip_amount": [1.0] * n,
    })


class TestHelpers:
    """Tests for the stateless feature helpers."""

    def test_is_night_all_hours(self):
        hours = pd.Series(range(24))
        expected = [h >= 22 or h <= 5 for h in range(24)]
        assert is_night(hours).tolist() == expected

    def test_distance_bins_partition(self):
        values = pd.Series([0.0, 1.0, 2.0, 2.01, 5.0, 5.5, 10.0, 10.01, 250.0])
        binned = bin_values(values, DISTANCE_BINS, DISTANCE_LABELS)
        assert binned.notna().all()
        assert list(binned.astype(str)) == [
            "Short", "Short", "Short", "Medium", "Medium", "Long", "Long", "VeryLong", "VeryLong"
        ]

    def test_fare_bins_boundaries(self):
        values = pd.Series([0.0, 10.0, 10.5, 20.0, 30.0, 30.01])
        binned = bin_values(values, FARE_BINS, FARE_LABELS)
        assert list(binned.astype(str)) == ["Low", "Low", "Medium", "Medium", "High", "VeryHigh"]

    def test_payment_recode(self):
        codes = pd.Series([1, 2, 3, 4, 5, 0])
        labels = recode_payment_type(codes)
        assert list(labels.astype(str)) == [
            "Credit Card", "Cash", "No Charge", "Dispute", "Unknown", "Unknown"
        ]

    def test_payment_recode_float_codes(self):
        labels = recode_payment_type(pd.Series([1.0, 2.0, np.nan]))
        assert list(labels.astype(str)) == ["Credit Card", "Cash", "Unknown"]


class TestEngineerFeatures:
    """Tests for engineer_features."""

    @pytest.fixture
    def week(self):
        # 2024-01-07 is a Sunday
        pickups = [f"2024-01-{day:02d} 12:00:00" for day in range(7, 14)]
        dropoffs = [f"2024-01-{day:02d} 12:15:30" for day in range(7, 14)]
        return _trips(pickups, dropoffs)

    def test_adds_derived_columns(self, week):
        result = engineer_features(week)
        for col in DERIVED_COLUMNS:
            assert col in result.table.columns
        assert "payment_type" in result.table.columns

    def test_week_starts_sunday(self, week):
        table = engineer_features(week).table
        assert list(table["day_of_week"].astype(str)) == DAY_LABELS
        assert list(table["day_of_week"].cat.categories) == DAY_LABELS

    def test_duration_in_minutes(self, week):
        table = engineer_features(week).table
        np.testing.assert_allclose(table["trip_duration"], 15.5)

    def test_hours(self):
        df = _trips(["2024-01-08 23:50:00", "2024-01-09 04:10:00"],
                    ["2024-01-09 00:20:00", "2024-01-09 04:30:00"])
        table = engineer_features(df).table
        assert table["pickup_hour"].tolist() == [23, 4]
        assert table["dropoff_hour"].tolist() == [0, 4]
        assert table["is_night"].tolist() == [True, True]

    def test_negative_duration_kept_and_warned(self):
        df = _trips(["2024-01-08 10:00:00", "2024-01-08 11:00:00"],
                    ["2024-01-08 09:50:00", "2024-01-08 11:20:00"])
        with pytest.warns(DataQualityWarning, match="negative duration"):
            result = engineer_features(df)

        assert len(result.table) == 2
        assert result.table["trip_duration"].iloc[0] == pytest.approx(-10.0)
        assert result.quality["negative_durations"] == 1

    def test_unknown_payment_warned(self):
        df = _trips(["2024-01-08 10:00:00"] * 2, ["2024-01-08 10:10:00"] * 2, payment=[1, 9])
        with pytest.warns(DataQualityWarning, match="payment code"):
            result = engineer_features(df)

        assert list(result.table["payment_type"].astype(str)) == ["Credit Card", "Unknown"]
        assert result.quality["unknown_payment_type"] == 1

    def test_clean_input_emits_no_warning(self, week):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DataQualityWarning)
            result = engineer_features(week)
        assert result.quality["negative_durations"] == 0
        assert result.quality["unknown_payment_type"] == 0

    def test_string_timestamps_parsed(self, week):
        as_text = week.copy()
        as_text["tpep_pickup_datetime"] = as_text["tpep_pickup_datetime"].astype(str)
        as_text["tpep_dropoff_datetime"] = as_text["tpep_dropoff_datetime"].astype(str)
        table = engineer_features(as_text).table
        np.testing.assert_allclose(table["trip_duration"], 15.5)

    def test_missing_column_raises(self, week):
        with pytest.raises(SchemaError, match="payment_type"):
            engineer_features(week.drop(columns=["payment_type"]))

    def test_unparseable_timestamp_raises(self, week):
        bad = week.copy()
        bad["tpep_pickup_datetime"] = "not a timestamp"
        with pytest.raises(SchemaError):
            engineer_features(bad)

    def test_non_numeric_fare_raises(self, week):
        bad = week.copy()
        bad["fare_amount"] = "ten dollars"
        with pytest.raises(SchemaError):
            engineer_features(bad)

    def test_does_not_mutate_input(self, week):
        before = week.copy()
        engineer_features(week)
        pd.testing.assert_frame_equal(week, before)

    def test_deterministic_per_window(self, make_raw_trips):
        raw = make_raw_trips(100)
        first = engineer_features(raw).table
        second = engineer_features(raw).table
        pd.testing.assert_frame_equal(first, second)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

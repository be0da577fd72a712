"""
Test Suite for Cleaning Module
==============================

Tests for column drops, the validity filter and upper-tail trimming.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from taxitip.cleaning import (
    OutlierThresholds,
    drop_columns,
    drop_invalid_trips,
    fit_outlier_thresholds,
    apply_outlier_thresholds,
    clean,
)
from taxitip.errors import SchemaError


class TestDropColumns:
    """Tests for drop_columns."""

    def test_drops_present_columns(self, make_raw_trips):
        df = make_raw_trips(20)
        out = drop_columns(df)
        assert "congestion_surcharge" not in out.columns
        assert "airport_fee" not in out.columns
        assert "congestion_surcharge" in df.columns

    def test_absent_columns_ignored(self):
        df = pd.DataFrame({"fare_amount": [1.0, 2.0]})
        out = drop_columns(df, ["congestion_surcharge", "airport_fee"])
        pd.testing.assert_frame_equal(out, df)


class TestDropInvalidTrips:
    """Tests for the validity filter."""

    @pytest.fixture
    def mixed_trips(self):
        return pd.DataFrame({
            "tip_amount": [1.0, np.nan, 2.0, 0.0, 3.0, 1.5],
            "fare_amount": [10.0, 12.0, 0.0, 8.0, -5.0, 20.0],
            "trip_distance": [1.0, 2.0, 3.0, 0.0, 4.0, 5.0],
        })

    def test_keeps_only_valid_rows(self, mixed_trips):
        out = drop_invalid_trips(mixed_trips)
        assert len(out) == 2
        assert list(out["fare_amount"]) == [10.0, 20.0]
        assert out.index.tolist() == [0, 1]

    def test_zero_tip_is_valid(self):
        df = pd.DataFrame({"tip_amount": [0.0], "fare_amount": [5.0], "trip_distance": [1.0]})
        assert len(drop_invalid_trips(df)) == 1

    def test_missing_column_raises(self, mixed_trips):
        with pytest.raises(SchemaError, match="trip_distance"):
            drop_invalid_trips(mixed_trips.drop(columns=["trip_distance"]))

    def test_non_numeric_column_raises(self, mixed_trips):
        bad = mixed_trips.copy()
        bad["fare_amount"] = ["a", "b", "c", "d", "e", "f"]
        with pytest.raises(SchemaError):
            drop_invalid_trips(bad)

    def test_numeric_strings_accepted(self):
        df = pd.DataFrame({"tip_amount": ["1.5"], "fare_amount": ["10"], "trip_distance": ["2.2"]})
        out = drop_invalid_trips(df)
        assert out["fare_amount"].iloc[0] == 10


class TestOutlierThresholds:
    """Tests for fitting and applying percentile thresholds."""

    @pytest.fixture
    def filtered(self):
        np.random.seed(42)
        n = 1000
        return pd.DataFrame({
            "tip_amount": np.random.exponential(2.0, n),
            "fare_amount": np.random.uniform(3, 80, n),
            "trip_distance": np.random.uniform(0.1, 30, n),
        })

    def test_thresholds_match_quantiles(self, filtered):
        thresholds = fit_outlier_thresholds(filtered)
        for col in ("tip_amount", "fare_amount", "trip_distance"):
            assert thresholds.upper(col) == pytest.approx(filtered[col].quantile(0.99))
            assert thresholds.lower(col) == pytest.approx(filtered[col].quantile(0.01))

    def test_only_upper_threshold_enforced(self, filtered):
        thresholds = fit_outlier_thresholds(filtered)
        out = apply_outlier_thresholds(filtered, thresholds)

        for col in ("tip_amount", "fare_amount", "trip_distance"):
            assert (out[col] <= thresholds.upper(col)).all()
        # rows under p1 survive
        assert (out["fare_amount"] < thresholds.lower("fare_amount")).any()

    def test_threshold_value_itself_kept(self):
        thresholds = OutlierThresholds(0.01, 0.99, {"tip_amount": (0.0, 5.0)})
        df = pd.DataFrame({"tip_amount": [5.0, 5.01, 1.0]})
        out = apply_outlier_thresholds(df, thresholds)
        assert list(out["tip_amount"]) == [5.0, 1.0]

    def test_invalid_quantiles(self, filtered):
        with pytest.raises(ValueError):
            fit_outlier_thresholds(filtered, lower=0.99, upper=0.5)

    def test_empty_table_raises(self, filtered):
        with pytest.raises(ValueError):
            fit_outlier_thresholds(filtered.iloc[0:0])

    def test_to_dict(self, filtered):
        payload = fit_outlier_thresholds(filtered).to_dict()
        assert payload["upper_quantile"] == 0.99
        assert set(payload["bounds"]) == {"tip_amount", "fare_amount", "trip_distance"}


class TestClean:
    """Tests for the full cleaning chain."""

    def test_invariants_hold(self, make_raw_trips):
        raw = make_raw_trips(500)
        raw.loc[0:9, "fare_amount"] = 0.0
        raw.loc[10:14, "trip_distance"] = -1.0
        raw.loc[15:19, "tip_amount"] = np.nan

        result = clean(raw)
        table = result.table

        assert (table["fare_amount"] > 0).all()
        assert (table["trip_distance"] > 0).all()
        assert table["tip_amount"].notna().all()
        for col in ("tip_amount", "fare_amount", "trip_distance"):
            assert (table[col] <= result.thresholds.upper(col)).all()
        assert "congestion_surcharge" not in table.columns

    def test_summary_counts(self, make_raw_trips):
        raw = make_raw_trips(300)
        raw.loc[0:4, "fare_amount"] = -1.0

        summary = clean(raw).summary

        assert summary["rows_raw"] == 300
        assert summary["rows_removed_invalid"] == 5
        assert summary["rows_valid"] == 295
        assert summary["rows_valid"] - summary["rows_removed_outliers"] == summary["rows_trimmed"]
        assert summary["thresholds_reused"] is False

    def test_reuses_given_thresholds(self, make_raw_trips):
        train = clean(make_raw_trips(300, seed=1))
        evaluation = clean(make_raw_trips(300, start="2024-01-14", seed=2), thresholds=train.thresholds)

        assert evaluation.thresholds is train.thresholds
        assert evaluation.summary["thresholds_reused"] is True
        assert (evaluation.table["fare_amount"] <= train.thresholds.upper("fare_amount")).all()

    def test_does_not_mutate_input(self, make_raw_trips):
        raw = make_raw_trips(100)
        before = raw.copy()
        clean(raw)
        pd.testing.assert_frame_equal(raw, before)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

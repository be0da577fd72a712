"""
Test Suite for the End-to-End Pipeline
======================================

Tests that compose loading, cleaning, features, selection, fitting and
evaluation on synthetic windows.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from taxitip.data_loader import load_trips, load_config, attach_zone_names
from taxitip.evaluation import evaluate_models
from taxitip.features import engineer_features
from taxitip.model import train_models, OLS_NAME, STEPWISE_NAME, RIDGE_NAME
from taxitip.pipeline import (
    DEFAULT_FIXED_PREDICTORS,
    prepare_windows,
    choose_predictors,
    run_pipeline,
)

FAST_CONFIG = {
    "model": {"ridge_alpha_grid": {"log10_min": -3, "log10_max": 3, "n": 7}, "cv_folds": 5},
}


class TestKnownNoise:
    """Fit tip = 0.2 * fare + N(0, sigma) and check the MSPE lands near sigma²."""

    SIGMA = 0.5

    def _window(self, make_raw_trips, n, start, seed):
        raw = make_raw_trips(n, start=start, seed=seed)
        rng = np.random.RandomState(seed + 100)
        raw["tip_amount"] = 0.2 * raw["fare_amount"] + rng.normal(0, self.SIGMA, n)
        return engineer_features(raw).table

    def test_mspe_close_to_noise_variance(self, make_raw_trips):
        train = self._window(make_raw_trips, 100, "2024-01-07", 1)
        evaluation = self._window(make_raw_trips, 50, "2024-01-14", 2)

        models = train_models(train, ["fare_amount"], FAST_CONFIG)
        result = evaluate_models(models, train, evaluation)

        variance = self.SIGMA ** 2
        for name in (OLS_NAME, STEPWISE_NAME, RIDGE_NAME):
            mspe = result.comparison.loc[name, "mspe"]
            assert 0.4 * variance < mspe < 1.8 * variance
        assert models[OLS_NAME].coefficients["fare_amount"] == pytest.approx(0.2, abs=0.05)


class TestPrepareWindows:
    """Tests for prepare_windows."""

    def test_evaluation_reuses_training_thresholds(self, make_raw_trips):
        train_raw = make_raw_trips(300, seed=1)
        eval_raw = make_raw_trips(300, start="2024-01-14", seed=2)

        prepared = prepare_windows(train_raw, eval_raw, {})

        assert prepared.cleaning["train"]["thresholds_reused"] is False
        assert prepared.cleaning["evaluation"]["thresholds_reused"] is True
        assert prepared.cleaning["evaluation"]["thresholds"] == prepared.thresholds.to_dict()
        upper = prepared.thresholds.upper("fare_amount")
        assert (prepared.evaluation["fare_amount"] <= upper).all()

    def test_per_window_thresholds(self, make_raw_trips):
        config = {"cleaning": {"reuse_training_thresholds": False}}
        prepared = prepare_windows(make_raw_trips(300, seed=1), make_raw_trips(300, seed=2), config)
        assert prepared.cleaning["evaluation"]["thresholds_reused"] is False

    def test_features_present_on_both_windows(self, make_raw_trips):
        prepared = prepare_windows(make_raw_trips(200, seed=1), make_raw_trips(200, seed=2), {})
        for table in (prepared.train, prepared.evaluation):
            for col in ("pickup_hour", "day_of_week", "trip_duration", "is_night", "fare_bin"):
                assert col in table.columns
            assert "airport_fee" not in table.columns

    def test_zone_join(self, make_raw_trips, zone_lookup):
        prepared = prepare_windows(
            make_raw_trips(100, seed=1), make_raw_trips(100, seed=2), {}, zones=zone_lookup
        )
        assert set(prepared.train["pickup_borough"]) <= {"Queens", "Manhattan"}
        assert len(prepared.train) == prepared.cleaning["train"]["rows_trimmed"]


class TestRunPipeline:
    """Smoke tests for the composed pipeline."""

    def test_full_run(self, make_raw_trips):
        train_raw = make_raw_trips(400, seed=1)
        eval_raw = make_raw_trips(300, start="2024-01-14", seed=2)

        prepared, modeling = run_pipeline(train_raw, eval_raw, FAST_CONFIG)

        assert set(modeling.models) == {OLS_NAME, STEPWISE_NAME, RIDGE_NAME}
        assert modeling.predictors == modeling.selection.predictors
        assert modeling.evaluation.final_model in modeling.models
        assert np.isfinite(modeling.evaluation.final_mspe)
        # tips depend on payment type and fare
        assert "payment_type" in modeling.predictors

    def test_fixed_predictors(self, make_raw_trips):
        config = dict(FAST_CONFIG, selection={"max_size": 3})
        config["model"] = dict(FAST_CONFIG["model"], use_selected_predictors=False)
        prepared = prepare_windows(make_raw_trips(300, seed=1), make_raw_trips(300, seed=2), config)

        predictors, selection = choose_predictors(prepared.train, config)

        assert predictors == DEFAULT_FIXED_PREDICTORS
        assert selection.n_terms <= 3

    def test_from_files(self, make_raw_trips, tmp_path):
        train_path = tmp_path / "train.csv"
        eval_path = tmp_path / "eval.csv"
        make_raw_trips(300, seed=1).to_csv(train_path, index=False)
        make_raw_trips(300, start="2024-01-14", seed=2).to_csv(eval_path, index=False)

        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "selection:\n  method: forward\n"
            "model:\n  ridge_alphas: [0.1, 1.0, 10.0]\n  cv_folds: 3\n"
        )
        config = load_config(str(config_path))

        _, modeling = run_pipeline(load_trips(str(train_path)), load_trips(str(eval_path)), config)
        assert modeling.models[RIDGE_NAME].alpha in (0.1, 1.0, 10.0)


class TestDataLoader:
    """Tests for loading helpers used by the pipeline."""

    def test_load_trips_parses_timestamps(self, make_raw_trips, tmp_path):
        path = tmp_path / "trips.csv"
        make_raw_trips(10).to_csv(path, index=False)
        df = load_trips(str(path))
        assert pd.api.types.is_datetime64_any_dtype(df["tpep_pickup_datetime"])

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_trips(str(tmp_path / "missing.parquet"))

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "trips.txt"
        path.write_text("a,b\n1,2\n")
        with pytest.raises(ValueError):
            load_trips(str(path))

    def test_unknown_zone_labelled(self, make_raw_trips, zone_lookup):
        trips = make_raw_trips(5)
        trips.loc[0, "PULocationID"] = 999
        joined = attach_zone_names(trips, zone_lookup)
        assert joined.loc[0, "pickup_borough"] == "Unknown"
        assert len(joined) == 5


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Feature Engineering Module
==========================

Derives temporal, categorical and duration features from cleaned trip
records. The same deterministic transformation is applied to each window
independently; nothing here looks at another window's statistics.

Derived columns:
    - pickup_hour, dropoff_hour: hour of day (0-23), source timezone kept
    - day_of_week: Sun..Sat (week starts Sunday)
    - trip_duration: minutes between pickup and dropoff, may be negative
    - trip_distance_bin: Short (0,2], Medium (2,5], Long (5,10], VeryLong (10,inf)
    - fare_bin: Low (0,10], Medium (10,20], High (20,30], VeryHigh (30,inf)
    - payment_type: Credit Card / Cash / No Charge / Dispute / Unknown
    - is_night: pickup_hour >= 22 or pickup_hour <= 5
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Any, List

import numpy as np
import pandas as pd

from .data_loader import PICKUP_COL, DROPOFF_COL, require_columns
from .errors import SchemaError, DataQualityWarning

logger = logging.getLogger(__name__)

DAY_LABELS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

DISTANCE_BINS = [0, 2, 5, 10, np.inf]
DISTANCE_LABELS = ["Short", "Medium", "Long", "VeryLong"]

FARE_BINS = [0, 10, 20, 30, np.inf]
FARE_LABELS = ["Low", "Medium", "High", "VeryHigh"]

PAYMENT_LABELS = {
    1: "Credit Card",
    2: "Cash",
    3: "No Charge",
    4: "Dispute",
}
UNKNOWN_PAYMENT = "Unknown"

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 5

SOURCE_COLUMNS = [PICKUP_COL, DROPOFF_COL, "fare_amount", "trip_distance", "payment_type"]

DERIVED_COLUMNS = [
    "pickup_hour",
    "dropoff_hour",
    "day_of_week",
    "trip_duration",
    "trip_distance_bin",
    "fare_bin",
    "is_night",
]


@dataclass(frozen=True)
class FeatureResult:
    table: pd.DataFrame
    quality: Dict[str, int]


def _to_datetime(series: pd.Series, name: str) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(series):
        return series
    try:
        return pd.to_datetime(series)
    except (TypeError, ValueError) as e:
        raise SchemaError(f"[features] column '{name}' is not a timestamp: {e}") from e


def _to_numeric(series: pd.Series, name: str) -> pd.Series:
    try:
        return pd.to_numeric(series)
    except (TypeError, ValueError) as e:
        raise SchemaError(f"[features] column '{name}' is not numeric: {e}") from e


def day_of_week(timestamps: pd.Series) -> pd.Categorical:
    """Map timestamps to Sunday-first ordered day labels."""
    # pandas dayofweek is Monday=0; shift so Sunday=0
    codes = (timestamps.dt.dayofweek + 1) % 7
    codes = codes.fillna(-1).astype(int).to_numpy()
    return pd.Categorical.from_codes(codes, categories=DAY_LABELS, ordered=True)


def bin_values(values: pd.Series, bins: List[float], labels: List[str]) -> pd.Series:
    """Right-closed binning where the lowest bin also includes its left edge."""
    return pd.cut(values, bins=bins, labels=labels, right=True, include_lowest=True)


def recode_payment_type(codes: pd.Series) -> pd.Series:
    """Recode integer payment codes; anything unmapped becomes 'Unknown'."""
    labels = codes.map(PAYMENT_LABELS).fillna(UNKNOWN_PAYMENT)
    categories = list(PAYMENT_LABELS.values()) + [UNKNOWN_PAYMENT]
    return pd.Series(pd.Categorical(labels, categories=categories), index=codes.index)


def is_night(hours: pd.Series) -> pd.Series:
    """True for pickup hours 22-23 and 0-5."""
    return (hours >= NIGHT_START_HOUR) | (hours <= NIGHT_END_HOUR)


def engineer_features(df: pd.DataFrame) -> FeatureResult:
    """
    Add derived features to a cleaned trip table.

    Args:
        df: Cleaned trip table for one window

    Returns:
        FeatureResult with the augmented table and data-quality counts

    Raises:
        SchemaError: If a source column is missing or cannot be converted
    """
    require_columns(df, SOURCE_COLUMNS, stage="features")

    work_df = df.copy()
    pickup = _to_datetime(work_df[PICKUP_COL], PICKUP_COL)
    dropoff = _to_datetime(work_df[DROPOFF_COL], DROPOFF_COL)
    fare = _to_numeric(work_df["fare_amount"], "fare_amount")
    distance = _to_numeric(work_df["trip_distance"], "trip_distance")
    payment_codes = _to_numeric(work_df["payment_type"], "payment_type")

    work_df[PICKUP_COL] = pickup
    work_df[DROPOFF_COL] = dropoff

    work_df["pickup_hour"] = pickup.dt.hour.astype("Int64")
    work_df["dropoff_hour"] = dropoff.dt.hour.astype("Int64")
    work_df["day_of_week"] = day_of_week(pickup)
    work_df["trip_duration"] = (dropoff - pickup).dt.total_seconds() / 60.0
    work_df["trip_distance_bin"] = bin_values(distance, DISTANCE_BINS, DISTANCE_LABELS)
    work_df["fare_bin"] = bin_values(fare, FARE_BINS, FARE_LABELS)
    work_df["payment_type"] = recode_payment_type(payment_codes)
    work_df["is_night"] = is_night(work_df["pickup_hour"])

    quality = {
        "rows": len(work_df),
        "missing_timestamps": int((pickup.isna() | dropoff.isna()).sum()),
        "negative_durations": int((work_df["trip_duration"] < 0).sum()),
        "unknown_payment_type": int((work_df["payment_type"] == UNKNOWN_PAYMENT).sum()),
    }

    if quality["negative_durations"]:
        msg = f"{quality['negative_durations']} trips have a negative duration (kept)"
        logger.warning(msg)
        warnings.warn(msg, DataQualityWarning, stacklevel=2)
    if quality["unknown_payment_type"]:
        msg = f"{quality['unknown_payment_type']} trips have an unmapped payment code (recoded as '{UNKNOWN_PAYMENT}')"
        logger.warning(msg)
        warnings.warn(msg, DataQualityWarning, stacklevel=2)
    if quality["missing_timestamps"]:
        logger.warning(f"{quality['missing_timestamps']} trips have a missing timestamp")

    logger.info(f"Engineered {len(DERIVED_COLUMNS)} features for {len(work_df):,} trips")
    return FeatureResult(table=work_df, quality=quality)


def print_feature_summary(result: FeatureResult, label: str = "") -> None:
    """Print category counts and quality counters for an engineered window."""
    df = result.table
    print("\n" + "=" * 50)
    print(f"FEATURE SUMMARY {label}".strip())
    print("=" * 50)
    for col in ("day_of_week", "trip_distance_bin", "fare_bin", "payment_type"):
        counts = df[col].value_counts(sort=False)
        print(f"{col}: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    print(f"is_night share: {df['is_night'].mean():.3f}")
    print(f"trip_duration (min): median={df['trip_duration'].median():.2f}, "
          f"min={df['trip_duration'].min():.2f}, max={df['trip_duration'].max():.2f}")
    print("\nData quality:")
    for key, value in result.quality.items():
        print(f"  {key}: {value}")
    print("=" * 50 + "\n")

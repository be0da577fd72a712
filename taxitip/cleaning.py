"""
Cleaning Module
===============

Removes unneeded columns, drops invalid trips and trims upper-tail outliers.

Order of operations (percentiles are sensitive to it):
    1. drop the surcharge columns (if present)
    2. keep rows with a tip, positive fare and positive distance
    3. compute p1/p99 of tip, fare and distance on the filtered rows
    4. drop rows above any p99 threshold

Only the upper threshold is enforced. The lower percentile is computed and
reported alongside it but rows below it are kept.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Sequence, Tuple

import pandas as pd

from .data_loader import require_columns
from .errors import SchemaError

logger = logging.getLogger(__name__)

DEFAULT_DROP_COLUMNS = ("congestion_surcharge", "airport_fee")
OUTLIER_COLUMNS = ("tip_amount", "fare_amount", "trip_distance")
REQUIRED_COLUMNS = OUTLIER_COLUMNS


@dataclass(frozen=True)
class OutlierThresholds:
    """Percentile thresholds fitted once on the training window."""

    lower_quantile: float
    upper_quantile: float
    bounds: Dict[str, Tuple[float, float]] = field(default_factory=dict)

    def upper(self, column: str) -> float:
        return self.bounds[column][1]

    def lower(self, column: str) -> float:
        return self.bounds[column][0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lower_quantile": self.lower_quantile,
            "upper_quantile": self.upper_quantile,
            "bounds": {c: list(b) for c, b in self.bounds.items()},
        }


@dataclass(frozen=True)
class CleaningResult:
    table: pd.DataFrame
    thresholds: OutlierThresholds
    summary: Dict[str, Any]


def _numeric(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    out = df.copy()
    for col in columns:
        try:
            out[col] = pd.to_numeric(out[col])
        except (TypeError, ValueError) as e:
            raise SchemaError(f"[cleaning] column '{col}' is not numeric: {e}") from e
    return out


def drop_columns(df: pd.DataFrame, columns: Sequence[str] = DEFAULT_DROP_COLUMNS) -> pd.DataFrame:
    """Drop the named columns that are present; absent names are ignored."""
    present = [c for c in columns if c in df.columns]
    if present:
        logger.info(f"Dropping columns: {present}")
    return df.drop(columns=present)


def drop_invalid_trips(df: pd.DataFrame) -> pd.DataFrame:
    """
    Keep trips with a defined tip, a positive fare and a positive distance.

    Args:
        df: Trip table containing tip_amount, fare_amount and trip_distance

    Returns:
        New filtered DataFrame with a fresh index

    Raises:
        SchemaError: If a required column is missing or non-numeric
    """
    require_columns(df, REQUIRED_COLUMNS, stage="cleaning")
    work_df = _numeric(df, REQUIRED_COLUMNS)

    mask = (
        work_df["tip_amount"].notna()
        & (work_df["fare_amount"] > 0)
        & (work_df["trip_distance"] > 0)
    )
    removed = int((~mask).sum())
    logger.info(f"Removed {removed:,} invalid trips (missing tip, fare <= 0 or distance <= 0)")
    return work_df.loc[mask].reset_index(drop=True)


def fit_outlier_thresholds(
    df: pd.DataFrame,
    columns: Sequence[str] = OUTLIER_COLUMNS,
    lower: float = 0.01,
    upper: float = 0.99
) -> OutlierThresholds:
    """
    Compute lower/upper percentile thresholds for each outlier column.

    Args:
        df: Validity-filtered trip table
        columns: Columns to compute thresholds for
        lower: Lower quantile (reported only)
        upper: Upper quantile (enforced)

    Returns:
        Immutable OutlierThresholds
    """
    if not (0 <= lower < upper <= 1):
        raise ValueError(f"Expected 0 <= lower < upper <= 1, got lower={lower} upper={upper}")
    require_columns(df, columns, stage="cleaning")
    if df.empty:
        raise ValueError("Cannot compute outlier thresholds on an empty table")

    bounds = {}
    for col in columns:
        q_low, q_high = df[col].quantile([lower, upper])
        bounds[col] = (float(q_low), float(q_high))
        logger.info(f"{col:15s}: p{lower * 100:g} = {q_low:.3f}, p{upper * 100:g} = {q_high:.3f}")

    return OutlierThresholds(lower_quantile=lower, upper_quantile=upper, bounds=bounds)


def apply_outlier_thresholds(df: pd.DataFrame, thresholds: OutlierThresholds) -> pd.DataFrame:
    """Drop rows where any thresholded column exceeds its upper bound."""
    columns = list(thresholds.bounds)
    require_columns(df, columns, stage="cleaning")

    mask = pd.Series(True, index=df.index)
    for col in columns:
        mask &= df[col] <= thresholds.upper(col)

    removed = int((~mask).sum())
    pct = removed / len(df) * 100 if len(df) else 0.0
    logger.info(f"Removed {removed:,} rows above upper thresholds ({pct:.2f}%)")
    return df.loc[mask].reset_index(drop=True)


def clean(
    raw: pd.DataFrame,
    drop: Sequence[str] = DEFAULT_DROP_COLUMNS,
    thresholds: Optional[OutlierThresholds] = None,
    lower: float = 0.01,
    upper: float = 0.99
) -> CleaningResult:
    """
    Run the full cleaning chain on one window.

    When ``thresholds`` is given (evaluation window) they are reused as-is;
    otherwise they are fitted on this window's validity-filtered rows.

    Args:
        raw: Raw trip table
        drop: Columns to drop if present
        thresholds: Previously fitted thresholds to reuse
        lower: Lower quantile used when fitting
        upper: Upper quantile used when fitting

    Returns:
        CleaningResult with the trimmed table, the thresholds applied and a summary
    """
    logger.info("=" * 60)
    logger.info("CLEANING")
    logger.info("=" * 60)

    reduced = drop_columns(raw, drop)
    filtered = drop_invalid_trips(reduced)

    reused = thresholds is not None
    if thresholds is None:
        thresholds = fit_outlier_thresholds(filtered, lower=lower, upper=upper)
    else:
        logger.info("Reusing previously fitted outlier thresholds")

    trimmed = apply_outlier_thresholds(filtered, thresholds)

    summary = {
        "rows_raw": len(raw),
        "rows_valid": len(filtered),
        "rows_trimmed": len(trimmed),
        "rows_removed_invalid": len(raw) - len(filtered),
        "rows_removed_outliers": len(filtered) - len(trimmed),
        "thresholds_reused": reused,
        "thresholds": thresholds.to_dict(),
    }
    logger.info(f"Kept {len(trimmed):,} of {len(raw):,} rows")
    return CleaningResult(table=trimmed, thresholds=thresholds, summary=summary)


def print_cleaning_summary(summary: Dict[str, Any], label: str = "") -> None:
    """Print a cleaning summary block."""
    title = f"CLEANING SUMMARY {label}".strip()
    print("\n" + "=" * 50)
    print(title)
    print("=" * 50)
    print(f"Raw rows: {summary['rows_raw']:,}")
    print(f"Removed (invalid): {summary['rows_removed_invalid']:,}")
    print(f"Removed (above p99): {summary['rows_removed_outliers']:,}")
    print(f"Remaining rows: {summary['rows_trimmed']:,}")
    source = "training window" if summary["thresholds_reused"] else "this window"
    print(f"\nThresholds (from {source}):")
    for col, (low, high) in summary["thresholds"]["bounds"].items():
        print(f"  {col:15s} p1={low:.3f}  p99={high:.3f}")
    print("=" * 50 + "\n")

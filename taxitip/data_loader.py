"""
Data Loader Module
==================

Handles trip-table ingestion, the zone lookup table, schema checks and basic
data quality reports.

Functions:
    - load_config: Load YAML configuration file
    - load_trips: Load a CSV or Parquet trip table
    - load_zone_lookup: Load the taxi zone lookup table
    - attach_zone_names: Optional pickup-zone join
    - require_columns: Fail with SchemaError when columns are missing
    - validate_data: Check data quality constraints
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Iterable, Tuple

import pandas as pd
import numpy as np
import yaml

from .errors import SchemaError

logger = logging.getLogger(__name__)

PICKUP_COL = "tpep_pickup_datetime"
DROPOFF_COL = "tpep_dropoff_datetime"
TARGET_COL = "tip_amount"

TRIP_COLUMNS = [
    PICKUP_COL,
    DROPOFF_COL,
    "fare_amount",
    "trip_distance",
    TARGET_COL,
    "passenger_count",
    "payment_type",
]

ZONE_COLUMNS = ["LocationID", "Borough", "Zone"]


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _read_table(file_path: Path) -> pd.DataFrame:
    suffix = file_path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(file_path)
    if suffix in (".parquet", ".pq"):
        return pd.read_parquet(file_path)
    raise ValueError(f"Unsupported file type '{suffix}' for {file_path} (expected .csv or .parquet)")


def load_trips(file_path: str) -> pd.DataFrame:
    """
    Load a trip table and parse its timestamp columns.

    Args:
        file_path: Path to a .csv or .parquet file

    Returns:
        DataFrame containing the raw trip records

    Raises:
        FileNotFoundError: If data file doesn't exist
        ValueError: If the file type is not supported
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = _read_table(file_path)

    for col in (PICKUP_COL, DROPOFF_COL):
        if col in df.columns and not pd.api.types.is_datetime64_any_dtype(df[col]):
            df[col] = pd.to_datetime(df[col], errors="coerce")

    logger.info(f"Loaded trips from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")
    return df


def load_zone_lookup(file_path: str) -> pd.DataFrame:
    """
    Load the taxi zone lookup table (LocationID, Borough, Zone, service_zone).

    Args:
        file_path: Path to the lookup CSV

    Returns:
        Zone lookup DataFrame
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Zone lookup file not found: {file_path}")

    zones = _read_table(file_path)
    require_columns(zones, ZONE_COLUMNS, stage="zone lookup")
    logger.info(f"Loaded {len(zones)} zones from {file_path}")
    return zones


def attach_zone_names(trips: pd.DataFrame, zones: pd.DataFrame) -> pd.DataFrame:
    """
    Add pickup_borough and pickup_zone columns from the zone lookup.

    Trips without PULocationID are returned unchanged. Zones missing from
    the lookup are labelled "Unknown".

    Args:
        trips: Trip table
        zones: Zone lookup table

    Returns:
        New DataFrame with the zone columns added
    """
    if "PULocationID" not in trips.columns:
        logger.warning("PULocationID not present; skipping zone join")
        return trips.copy()

    lookup = zones[["LocationID", "Borough", "Zone"]].rename(
        columns={"LocationID": "PULocationID", "Borough": "pickup_borough", "Zone": "pickup_zone"}
    )
    joined = trips.merge(lookup, on="PULocationID", how="left")
    joined["pickup_borough"] = joined["pickup_borough"].fillna("Unknown")
    joined["pickup_zone"] = joined["pickup_zone"].fillna("Unknown")
    return joined


def require_columns(df: pd.DataFrame, columns: Iterable[str], stage: str) -> None:
    """Raise SchemaError if any of ``columns`` is absent from ``df``."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaError(f"[{stage}] missing required columns: {missing}")


def validate_data(df: pd.DataFrame, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for a raw trip table.

    Checks:
        - Required trip columns are present
        - Missing values
        - Duplicate rows
        - Non-positive fares and distances
        - Negative trip durations

    Args:
        df: DataFrame to validate
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Schema
    missing_cols = [c for c in TRIP_COLUMNS if c not in df.columns]
    if missing_cols:
        issue = f"Missing trip columns: {missing_cols}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 2: Missing values
    missing_counts = df.isnull().sum()
    total_missing = missing_counts.sum()
    if total_missing > 0:
        missing_pct = (total_missing / (df.shape[0] * df.shape[1])) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 3: Duplicate rows
    duplicates = df.duplicated().sum()
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 4: Non-positive monetary / distance values
    for col in ("fare_amount", "trip_distance"):
        if col in df.columns:
            non_positive = int((pd.to_numeric(df[col], errors="coerce") <= 0).sum())
            if non_positive > 0:
                issue = f"Column '{col}' has {non_positive} non-positive values"
                report["issues"].append(issue)
                logger.warning(issue)

    # Check 5: Negative durations
    if PICKUP_COL in df.columns and DROPOFF_COL in df.columns:
        pickup = pd.to_datetime(df[PICKUP_COL], errors="coerce")
        dropoff = pd.to_datetime(df[DROPOFF_COL], errors="coerce")
        negative = int(((dropoff - pickup).dt.total_seconds() < 0).sum())
        if negative > 0:
            issue = f"{negative} trips end before they start"
            report["issues"].append(issue)
            logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the numeric trip columns.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "memory_usage_mb": df.memory_usage(deep=True).sum() / 1024 / 1024,
        "statistics": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "99%": float(df[col].quantile(0.99)),
            "max": float(df[col].max())
        }

    return summary


def print_data_summary(df: pd.DataFrame, title: str = "DATASET SUMMARY") -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        title: Heading for the summary block
    """
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    numeric = df.select_dtypes(include=[np.number])
    if not numeric.empty:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")

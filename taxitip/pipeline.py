"""
Pipeline Module
===============

Composes the stages into one batch pass:

    load -> clean -> engineer features -> {select, fit} -> evaluate

Each stage returns new tables / models; nothing is mutated in place.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd

from .cleaning import clean, DEFAULT_DROP_COLUMNS, OutlierThresholds
from .data_loader import TARGET_COL, attach_zone_names
from .evaluation import evaluate_models, EvaluationResult, MSPE_TIE_TOLERANCE
from .features import engineer_features
from .model import train_models, TipRegressionModel
from .selection import subset_search, SelectionResult

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES = [
    "fare_amount",
    "trip_distance",
    "trip_duration",
    "passenger_count",
    "pickup_hour",
    "day_of_week",
    "payment_type",
    "is_night",
]

DEFAULT_FIXED_PREDICTORS = [
    "fare_amount",
    "trip_distance",
    "trip_duration",
    "payment_type",
    "is_night",
]


@dataclass(frozen=True)
class PreparedWindows:
    train: pd.DataFrame
    evaluation: pd.DataFrame
    thresholds: OutlierThresholds
    cleaning: Dict[str, Dict[str, Any]]
    quality: Dict[str, Dict[str, int]]


@dataclass(frozen=True)
class ModelingResult:
    predictors: List[str]
    selection: Optional[SelectionResult]
    models: Dict[str, TipRegressionModel]
    evaluation: EvaluationResult


def prepare_windows(
    train_raw: pd.DataFrame,
    eval_raw: pd.DataFrame,
    config: Dict[str, Any],
    zones: Optional[pd.DataFrame] = None
) -> PreparedWindows:
    """
    Clean and feature-engineer both windows.

    Outlier thresholds are fitted on the training window. By default the
    evaluation window is trimmed with those same thresholds; setting
    ``cleaning.reuse_training_thresholds`` to false fits them per window.

    Args:
        train_raw: Raw training-window trips
        eval_raw: Raw evaluation-window trips
        config: Configuration dictionary
        zones: Optional zone lookup for the pickup-borough join

    Returns:
        PreparedWindows
    """
    clean_config = config.get('cleaning', {})
    drop = clean_config.get('drop_columns', list(DEFAULT_DROP_COLUMNS))
    lower = clean_config.get('lower_quantile', 0.01)
    upper = clean_config.get('upper_quantile', 0.99)
    reuse = clean_config.get('reuse_training_thresholds', True)

    train_clean = clean(train_raw, drop=drop, lower=lower, upper=upper)
    eval_clean = clean(
        eval_raw,
        drop=drop,
        thresholds=train_clean.thresholds if reuse else None,
        lower=lower,
        upper=upper,
    )

    train_features = engineer_features(train_clean.table)
    eval_features = engineer_features(eval_clean.table)

    train_table = train_features.table
    eval_table = eval_features.table
    if zones is not None:
        train_table = attach_zone_names(train_table, zones)
        eval_table = attach_zone_names(eval_table, zones)

    return PreparedWindows(
        train=train_table,
        evaluation=eval_table,
        thresholds=train_clean.thresholds,
        cleaning={"train": train_clean.summary, "evaluation": eval_clean.summary},
        quality={"train": train_features.quality, "evaluation": eval_features.quality},
    )


def choose_predictors(
    train: pd.DataFrame,
    config: Dict[str, Any]
) -> Tuple[List[str], Optional[SelectionResult]]:
    """
    Decide the predictors used for model fitting.

    The subset search always runs; its output is used unless
    ``model.use_selected_predictors`` is false, in which case the fixed
    ``model.predictors`` list is used instead.
    """
    select_config = config.get('selection', {})
    model_config = config.get('model', {})

    selection = subset_search(
        train,
        candidates=select_config.get('candidates', DEFAULT_CANDIDATES),
        target=TARGET_COL,
        max_size=select_config.get('max_size', 8),
        method=select_config.get('method', 'exhaustive'),
    )

    if model_config.get('use_selected_predictors', True):
        predictors = selection.predictors
        logger.info(f"Fitting on selected predictors: {predictors}")
    else:
        predictors = list(model_config.get('predictors', DEFAULT_FIXED_PREDICTORS))
        logger.info(f"Fitting on configured predictors {predictors} (selector chose {selection.predictors})")

    return predictors, selection


def run_modeling(prepared: PreparedWindows, config: Dict[str, Any]) -> ModelingResult:
    """Select predictors, fit the three models and evaluate them."""
    predictors, selection = choose_predictors(prepared.train, config)
    models = train_models(prepared.train, predictors, config, target=TARGET_COL)
    evaluation = evaluate_models(
        models,
        prepared.train,
        prepared.evaluation,
        target=TARGET_COL,
        tolerance=config.get('evaluation', {}).get('tie_tolerance', MSPE_TIE_TOLERANCE),
    )
    return ModelingResult(predictors=predictors, selection=selection, models=models, evaluation=evaluation)


def run_pipeline(
    train_raw: pd.DataFrame,
    eval_raw: pd.DataFrame,
    config: Dict[str, Any],
    zones: Optional[pd.DataFrame] = None
) -> Tuple[PreparedWindows, ModelingResult]:
    """Run every stage end to end without plotting."""
    prepared = prepare_windows(train_raw, eval_raw, config, zones)
    return prepared, run_modeling(prepared, config)

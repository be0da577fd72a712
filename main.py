#!/usr/bin/env python3
"""
Taxi Tip Modeling - Main Pipeline
=================================

Orchestrates the tip-amount analysis over a training window and an
evaluation window of taxi trips.

Phases:
    1. Cleaning - Column drops, validity filter, p99 trimming
    2. EDA - Exploratory plots of the training window
    3. Selection - Subset search by adjusted R²
    4. Training - OLS, backward-AIC OLS and ridge
    5. Evaluation - Model comparison and final-model choice by MSPE

Usage:
    # Run complete pipeline
    python main.py --train data/raw/week1.parquet --eval data/raw/week2.parquet

    # Run specific phase
    python main.py --train data/raw/week1.parquet --eval data/raw/week2.parquet --phase select

    # Run with zone lookup and custom config
    python main.py --train week1.csv --eval week2.csv --zones taxi_zone_lookup.csv --config config/custom.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from taxitip.data_loader import (
    load_config,
    load_trips,
    load_zone_lookup,
    validate_data,
    print_data_summary,
)
from taxitip.cleaning import print_cleaning_summary
from taxitip.features import print_feature_summary, FeatureResult
from taxitip.eda import generate_eda_report, print_correlation_insights
from taxitip.selection import print_selection_summary
from taxitip.model import train_models, print_model_summary
from taxitip.evaluation import evaluate_models, generate_evaluation_report, print_evaluation_report
from taxitip.pipeline import prepare_windows, choose_predictors, PreparedWindows


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def run_cleaning(
    train_raw: pd.DataFrame,
    eval_raw: pd.DataFrame,
    config: Dict[str, Any],
    zones: Optional[pd.DataFrame] = None
) -> PreparedWindows:
    """
    Execute Phase 1: cleaning and feature engineering of both windows.

    Args:
        train_raw: Raw training-window trips
        eval_raw: Raw evaluation-window trips
        config: Configuration dictionary
        zones: Optional zone lookup table

    Returns:
        Prepared (cleaned + feature-augmented) windows
    """
    print("\n" + "=" * 70)
    print("PHASE 1: CLEANING & FEATURE ENGINEERING")
    print("=" * 70)

    prepared = prepare_windows(train_raw, eval_raw, config, zones)

    print_cleaning_summary(prepared.cleaning["train"], label="(training window)")
    print_cleaning_summary(prepared.cleaning["evaluation"], label="(evaluation window)")
    print_feature_summary(FeatureResult(prepared.train, prepared.quality["train"]), label="(training window)")
    print_feature_summary(FeatureResult(prepared.evaluation, prepared.quality["evaluation"]), label="(evaluation window)")

    return prepared


def run_eda(prepared: PreparedWindows, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: Exploratory Data Analysis on the training window.

    Args:
        prepared: Prepared windows
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(prepared.train, output_dir=output_dir, show_plots=False)

    corr_df = pd.DataFrame(report["correlation_matrix"])
    print_correlation_insights(corr_df)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_selection(prepared: PreparedWindows, config: Dict[str, Any]) -> Dict[str, Any]:
    """Execute Phase 3: predictor subset selection."""
    print("\n" + "=" * 70)
    print("PHASE 3: SUBSET SELECTION")
    print("=" * 70)

    predictors, selection = choose_predictors(prepared.train, config)
    print_selection_summary(selection)
    print(f"Predictors used for fitting: {predictors}")

    return {'predictors': predictors, 'selection': selection}


def run_training(prepared: PreparedWindows, predictors: list, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 4: Model Training.

    Args:
        prepared: Prepared windows
        predictors: Predictors for the full model
        config: Configuration dictionary

    Returns:
        Dictionary of fitted models
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL TRAINING")
    print("=" * 70)

    models = train_models(prepared.train, predictors, config)
    for model in models.values():
        print_model_summary(model)

    return models


def run_evaluation(prepared: PreparedWindows, models: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 5: Model Evaluation.

    Args:
        prepared: Prepared windows
        models: Fitted models
        config: Configuration dictionary

    Returns:
        Evaluation result and report paths
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    eval_config = config.get('evaluation', {})
    result = evaluate_models(
        models,
        prepared.train,
        prepared.evaluation,
        tolerance=eval_config.get('tie_tolerance', 1e-9),
    )

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    report = generate_evaluation_report(result, models, prepared.evaluation, output_dir=output_dir)

    print_evaluation_report(result)

    return {'result': result, 'report': report}


def load_inputs(train_path: str, eval_path: str, zones_path: Optional[str]):
    """Load both trip windows and the optional zone lookup."""
    print("\n📊 Loading data...")
    train_raw = load_trips(train_path)
    eval_raw = load_trips(eval_path)
    print_data_summary(train_raw, title="TRAINING WINDOW")
    print_data_summary(eval_raw, title="EVALUATION WINDOW")

    for label, df in (("training", train_raw), ("evaluation", eval_raw)):
        is_valid, _ = validate_data(df, strict=False)
        if not is_valid:
            print(f"⚠️  Data validation warnings in the {label} window. Proceeding anyway...")

    zones = load_zone_lookup(zones_path) if zones_path else None
    return train_raw, eval_raw, zones


def run_full_pipeline(
    train_path: str,
    eval_path: str,
    config_path: str = "config/config.yaml",
    zones_path: Optional[str] = None,
    phase: str = "all",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the pipeline up to and including ``phase``.

    Args:
        train_path: Training-window trip file
        eval_path: Evaluation-window trip file
        config_path: Path to configuration file
        zones_path: Optional zone lookup file
        phase: Last phase to run ('clean', 'eda', 'select', 'train', 'evaluate', 'all')
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("TAXI TIP MODELING PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    train_raw, eval_raw, zones = load_inputs(train_path, eval_path, zones_path)

    results: Dict[str, Any] = {'config': config}

    results['prepared'] = run_cleaning(train_raw, eval_raw, config, zones)
    if phase == 'clean':
        return results

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(results['prepared'], config)
        if phase == 'eda':
            return results

    results['selection'] = run_selection(results['prepared'], config)
    if phase == 'select':
        return results

    results['models'] = run_training(results['prepared'], results['selection']['predictors'], config)
    if phase == 'train':
        return results

    results['evaluation'] = run_evaluation(results['prepared'], results['models'], config)

    evaluation = results['evaluation']['result']
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Training rows: {len(results['prepared'].train):,}")
    print(f"  • Evaluation rows: {len(results['prepared'].evaluation):,}")
    print(f"  • Predictors: {results['selection']['predictors']}")
    print(f"  • Final model: {evaluation.final_model}")
    print(f"  • Final MSPE: {evaluation.final_mspe:.6f}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Taxi tip modeling over a training and an evaluation window",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --train data/raw/week1.parquet --eval data/raw/week2.parquet
  python main.py --train week1.csv --eval week2.csv --phase select
  python main.py --train week1.csv --eval week2.csv --zones taxi_zone_lookup.csv
        """
    )

    parser.add_argument(
        '--train', '-t',
        type=str,
        required=True,
        help='Path to the training-window trip file (.csv or .parquet)'
    )

    parser.add_argument(
        '--eval', '-e',
        type=str,
        required=True,
        help='Path to the evaluation-window trip file (.csv or .parquet)'
    )

    parser.add_argument(
        '--zones', '-z',
        type=str,
        default=None,
        help='Path to the taxi zone lookup table (optional)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=['clean', 'eda', 'select', 'train', 'evaluate', 'all'],
        default='all',
        help='Last phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    for label, path in (("Training", args.train), ("Evaluation", args.eval)):
        if not Path(path).exists():
            print(f"Error: {label} data file not found: {path}")
            sys.exit(1)

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    try:
        run_full_pipeline(
            args.train, args.eval, args.config, args.zones, args.phase,
            log_level="DEBUG" if args.verbose else None
        )
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Model Evaluation Module
=======================

Scores every fitted model on both windows and picks the final model by
out-of-window prediction error.

Metrics per model:
    - AIC, BIC (NaN for the ridge model: no fixed likelihood / df)
    - R², adjusted R² and MSE on the training window
    - MSPE on the evaluation window: mean((actual - predicted)^2)

Evaluation rows whose predictors or target are undefined are excluded from
MSPE and counted per model in ``n_excluded``.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, r2_score

from .data_loader import require_columns
from .model import TipRegressionModel, OLS_NAME, STEPWISE_NAME, RIDGE_NAME
from .selection import adjusted_r2

logger = logging.getLogger(__name__)

# Tie-break order for equal MSPE
PREFERENCE_ORDER = [RIDGE_NAME, STEPWISE_NAME, OLS_NAME]
MSPE_TIE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class EvaluationResult:
    comparison: pd.DataFrame
    final_model: str
    final_mspe: float
    excluded_rows: Dict[str, int]


def _scored_rows(
    model: TipRegressionModel,
    df: pd.DataFrame,
    target: str
) -> Tuple[pd.Series, pd.Series, int]:
    actual = pd.to_numeric(df[target], errors="coerce")
    predicted = model.predict(df)
    mask = actual.notna() & predicted.notna()
    return actual[mask], predicted[mask], int((~mask).sum())


def calculate_metrics(
    model: TipRegressionModel,
    train_df: pd.DataFrame,
    eval_df: pd.DataFrame,
    target: str = "tip_amount"
) -> Dict[str, Any]:
    """
    Calculate fit and prediction metrics for one model.

    Args:
        model: Fitted model
        train_df: Feature-augmented training table
        eval_df: Feature-augmented evaluation table
        target: Response column

    Returns:
        Dictionary of metric name -> value
    """
    y_train, p_train, _ = _scored_rows(model, train_df, target)
    y_eval, p_eval, n_excluded = _scored_rows(model, eval_df, target)

    r2 = float(r2_score(y_train, p_train)) if len(y_train) > 1 else float("nan")
    mspe = float(mean_squared_error(y_eval, p_eval)) if len(y_eval) else float("nan")

    if n_excluded:
        logger.warning(f"[{model.name}] excluded {n_excluded} evaluation rows with undefined predictors or target")

    return {
        "aic": model.aic,
        "bic": model.bic,
        "r2": r2,
        "adj_r2": adjusted_r2(r2, len(y_train), model.n_coefficients - 1),
        "train_mse": float(mean_squared_error(y_train, p_train)) if len(y_train) else float("nan"),
        "mspe": mspe,
        "n_eval": int(len(y_eval)),
        "n_excluded": n_excluded,
        "n_coefficients": model.n_coefficients,
        "alpha": model.alpha if model.alpha is not None else float("nan"),
    }


def choose_final_model(comparison: pd.DataFrame, tolerance: float = MSPE_TIE_TOLERANCE) -> str:
    """
    Lowest MSPE wins; within ``tolerance`` of the minimum prefer ridge,
    then the stepwise model, then fewer coefficients.
    """
    scored = comparison.dropna(subset=["mspe"])
    if scored.empty:
        raise ValueError("No model produced an evaluation-window MSPE")

    best = scored["mspe"].min()
    tied = scored[scored["mspe"] <= best + tolerance]

    def rank(name: str) -> Tuple[int, int]:
        order = PREFERENCE_ORDER.index(name) if name in PREFERENCE_ORDER else len(PREFERENCE_ORDER)
        return order, int(tied.loc[name, "n_coefficients"])

    return min(tied.index, key=rank)


def evaluate_models(
    models: Dict[str, TipRegressionModel],
    train_df: pd.DataFrame,
    eval_df: pd.DataFrame,
    target: str = "tip_amount",
    tolerance: float = MSPE_TIE_TOLERANCE
) -> EvaluationResult:
    """
    Compare fitted models and select the final one by evaluation MSPE.

    Args:
        models: Model name -> fitted model
        train_df: Feature-augmented training table
        eval_df: Feature-augmented evaluation table
        target: Response column
        tolerance: MSPE difference treated as a tie

    Returns:
        EvaluationResult with the comparison table and chosen model
    """
    if not models:
        raise ValueError("No models to evaluate")
    require_columns(train_df, [target], stage="evaluation")
    require_columns(eval_df, [target], stage="evaluation")

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    rows = {name: calculate_metrics(model, train_df, eval_df, target) for name, model in models.items()}
    comparison = pd.DataFrame.from_dict(rows, orient="index")
    comparison.index.name = "model"

    final_model = choose_final_model(comparison, tolerance)
    final_mspe = float(comparison.loc[final_model, "mspe"])

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    for name, row in comparison.iterrows():
        logger.info(f"  {name}: MSPE={row['mspe']:.6f}, R²={row['r2']:.4f}")
    logger.info(f"  Final model: {final_model} (MSPE {final_mspe:.6f})")
    logger.info("=" * 60)

    return EvaluationResult(
        comparison=comparison,
        final_model=final_model,
        final_mspe=final_mspe,
        excluded_rows=comparison["n_excluded"].astype(int).to_dict(),
    )


def plot_actual_vs_predicted(
    models: Dict[str, TipRegressionModel],
    eval_df: pd.DataFrame,
    target: str = "tip_amount",
    figsize: Tuple[int, int] = (15, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Actual vs predicted tip on the evaluation window, one panel per model.

    Args:
        models: Fitted models
        eval_df: Feature-augmented evaluation table
        target: Response column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, axes = plt.subplots(1, len(models), figsize=figsize, squeeze=False)

    for ax, (name, model) in zip(axes[0], models.items()):
        actual, predicted, _ = _scored_rows(model, eval_df, target)
        ax.scatter(actual, predicted, alpha=0.3, s=8)

        lo = min(actual.min(), predicted.min())
        hi = max(actual.max(), predicted.max())
        ax.plot([lo, hi], [lo, hi], 'r--', linewidth=2, label='Perfect')

        mspe = mean_squared_error(actual, predicted)
        ax.set_xlabel('Actual tip')
        ax.set_ylabel('Predicted tip')
        ax.set_title(f'{name}\nMSPE={mspe:.4f}', fontsize=10, fontweight='bold')
        ax.legend(loc='upper left', fontsize=8)

    plt.suptitle('Actual vs Predicted - Evaluation Window', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_residuals(
    models: Dict[str, TipRegressionModel],
    eval_df: pd.DataFrame,
    target: str = "tip_amount",
    figsize: Tuple[int, int] = (15, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residual distribution of each model on the evaluation window.

    Returns:
        Matplotlib Figure object
    """
    fig, axes = plt.subplots(1, len(models), figsize=figsize, squeeze=False)

    for ax, (name, model) in zip(axes[0], models.items()):
        actual, predicted, _ = _scored_rows(model, eval_df, target)
        residuals = actual - predicted

        sns.histplot(residuals, kde=True, ax=ax, bins=50, alpha=0.7)
        ax.axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
        ax.axvline(residuals.mean(), color='green', linestyle='--',
                   linewidth=2, label=f'Mean: {residuals.mean():.4f}')

        ax.set_xlabel('Residual (Actual - Predicted)')
        ax.set_ylabel('Frequency')
        ax.set_title(f'{name} (Std: {residuals.std():.4f})', fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    plt.suptitle('Residual Analysis - Evaluation Window', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_model_comparison(
    result: EvaluationResult,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar charts of training R² and evaluation MSPE per model.

    Returns:
        Matplotlib Figure object
    """
    comparison = result.comparison
    names = list(comparison.index)
    x = np.arange(len(names))
    colors = ['seagreen' if n == result.final_model else 'steelblue' for n in names]

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    axes[0].bar(x, comparison["mspe"], 0.6, color=colors, alpha=0.8)
    axes[0].set_title('Evaluation MSPE (lower is better)', fontweight='bold')
    axes[0].set_ylabel('MSPE')
    axes[0].set_xticks(x)
    axes[0].set_xticklabels(names, rotation=30, ha='right')

    axes[1].bar(x, comparison["r2"], 0.6, color=colors, alpha=0.8)
    axes[1].set_title('Training R²', fontweight='bold')
    axes[1].set_ylabel('R²')
    axes[1].set_xticks(x)
    axes[1].set_xticklabels(names, rotation=30, ha='right')

    plt.suptitle(f'Model Comparison (final: {result.final_model})', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Model comparison plot saved to {save_path}")

    return fig


def save_comparison(result: EvaluationResult, metrics_dir: str) -> str:
    """Write the comparison table and final choice to JSON; returns the path."""
    metrics_dir = Path(metrics_dir)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "final_model": result.final_model,
        "final_mspe": result.final_mspe,
        "excluded_rows": result.excluded_rows,
        "models": {
            name: {k: (None if isinstance(v, float) and np.isnan(v) else v) for k, v in row.items()}
            for name, row in result.comparison.to_dict(orient="index").items()
        },
    }
    metrics_file = metrics_dir / "model_comparison.json"
    with open(metrics_file, 'w') as f:
        json.dump(payload, f, indent=2, default=float)
    logger.info(f"Metrics saved to {metrics_file}")
    return str(metrics_file)


def generate_evaluation_report(
    result: EvaluationResult,
    models: Dict[str, TipRegressionModel],
    eval_df: pd.DataFrame,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Save metrics JSON and diagnostic figures for an evaluation.

    Returns:
        Dictionary with the metrics file path and figure names
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    figures_dir.mkdir(parents=True, exist_ok=True)

    metrics_file = save_comparison(result, str(output_dir / "metrics"))

    figures: List[str] = []
    plot_actual_vs_predicted(models, eval_df, save_path=str(figures_dir / "eval_actual_vs_predicted.png"))
    figures.append("eval_actual_vs_predicted.png")

    plot_residuals(models, eval_df, save_path=str(figures_dir / "eval_residuals.png"))
    figures.append("eval_residuals.png")

    plot_model_comparison(result, save_path=str(figures_dir / "eval_model_comparison.png"))
    figures.append("eval_model_comparison.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    return {"metrics_file": metrics_file, "figures": figures}


def print_evaluation_report(result: EvaluationResult) -> None:
    """
    Print the model comparison table and the final choice.

    Args:
        result: EvaluationResult from evaluate_models
    """
    print("\n" + "=" * 90)
    print("MODEL COMPARISON")
    print("=" * 90)
    print(f"{'Model':<14} {'AIC':>12} {'BIC':>12} {'R²':>8} {'Adj R²':>8} "
          f"{'Train MSE':>10} {'MSPE':>10} {'Excluded':>9}")
    print("-" * 90)

    def fmt(value: float, width: int, digits: int) -> str:
        return f"{'NA':>{width}}" if pd.isna(value) else f"{value:>{width}.{digits}f}"

    for name, row in result.comparison.iterrows():
        print(f"{name:<14} {fmt(row['aic'], 12, 1)} {fmt(row['bic'], 12, 1)} "
              f"{fmt(row['r2'], 8, 4)} {fmt(row['adj_r2'], 8, 4)} "
              f"{fmt(row['train_mse'], 10, 4)} {fmt(row['mspe'], 10, 4)} {int(row['n_excluded']):>9}")

    print("-" * 90)
    print(f"\nFinal model: {result.final_model}")
    print(f"  • Evaluation-window MSPE: {result.final_mspe:.6f}")
    alpha = result.comparison.loc[result.final_model, "alpha"]
    if not pd.isna(alpha):
        print(f"  • Ridge alpha: {alpha:.6g}")
    print("=" * 90 + "\n")

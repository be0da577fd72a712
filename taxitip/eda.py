"""
Exploratory Data Analysis (EDA) Module
======================================

Visual checks of the engineered training window. Figures are written to
disk and never feed back into modeling.

Functions:
    - plot_tip_distribution: Histogram + KDE of tip_amount
    - plot_tip_relationships: Tip vs fare / distance / duration
    - plot_tip_by_category: Tip by hour, day of week, payment type, bins
    - plot_correlation_matrix: Correlation heatmap of numeric features
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

NUMERIC_FEATURES = [
    "tip_amount",
    "fare_amount",
    "trip_distance",
    "trip_duration",
    "passenger_count",
    "pickup_hour",
]

CATEGORY_PANELS = [
    "pickup_hour",
    "day_of_week",
    "payment_type",
    "trip_distance_bin",
    "fare_bin",
    "is_night",
]


def _sample(df: pd.DataFrame, max_points: int, seed: int = 42) -> pd.DataFrame:
    if len(df) <= max_points:
        return df
    return df.sample(n=max_points, random_state=seed)


def plot_tip_distribution(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram of tip_amount with mean/median markers and a normality test.

    Args:
        df: Feature-augmented table
        figsize: Figure size
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    tips = df["tip_amount"].dropna()
    fig, ax = plt.subplots(figsize=figsize)

    sns.histplot(tips, kde=True, ax=ax, bins=50, alpha=0.7)
    ax.axvline(tips.mean(), color='red', linestyle='--', label=f'Mean: {tips.mean():.2f}')
    ax.axvline(tips.median(), color='green', linestyle='--', label=f'Median: {tips.median():.2f}')

    title = 'Tip Amount Distribution'
    if len(tips) >= 8:
        _, p_value = stats.normaltest(tips)
        normality = "Normal" if p_value > 0.05 else "Non-Normal"
        title += f' ({normality}, p={p_value:.3f})'
    zero_share = (tips == 0).mean()
    ax.set_title(f'{title}\nZero tips: {zero_share:.1%}', fontsize=12, fontweight='bold')
    ax.set_xlabel('tip_amount')
    ax.legend(fontsize=8)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Tip distribution saved to {save_path}")

    return fig


def plot_tip_relationships(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    max_points: int = 20_000,
    figsize: Tuple[int, int] = (15, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter plots of tip_amount against continuous predictors with a fitted line.

    Args:
        df: Feature-augmented table
        columns: Predictors to plot (default: fare, distance, duration)
        max_points: Points drawn per panel
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = ["fare_amount", "trip_distance", "trip_duration"]
    columns = [c for c in columns if c in df.columns]

    data = _sample(df[columns + ["tip_amount"]].dropna(), max_points)
    fig, axes = plt.subplots(1, len(columns), figsize=figsize, squeeze=False)

    for ax, col in zip(axes[0], columns):
        ax.scatter(data[col], data["tip_amount"], alpha=0.2, s=6)
        if len(data) > 1 and data[col].nunique() > 1:
            z = np.polyfit(data[col], data["tip_amount"], 1)
            xs = np.linspace(data[col].min(), data[col].max(), 100)
            ax.plot(xs, np.poly1d(z)(xs), "r--", label=f'slope: {z[0]:.4f}')
            ax.legend(loc='upper left', fontsize=8)
        r = data[col].corr(data["tip_amount"])
        ax.set_title(f'tip vs {col} (r={r:.3f})', fontsize=10, fontweight='bold')
        ax.set_xlabel(col)
        ax.set_ylabel('tip_amount')

    plt.suptitle('Tip Relationships', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Tip relationship plots saved to {save_path}")

    return fig


def plot_tip_by_category(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (15, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Mean tip per level of each categorical / discrete feature.

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = CATEGORY_PANELS
    columns = [c for c in columns if c in df.columns]

    n_cols = len(columns)
    n_rows = (n_cols + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for idx, col in enumerate(columns):
        ax = axes[idx]
        means = df.groupby(col, observed=False)["tip_amount"].mean()
        ax.bar([str(i) for i in means.index], means.values, alpha=0.8)
        ax.set_title(f'Mean tip by {col}', fontsize=10, fontweight='bold')
        ax.set_ylabel('Mean tip_amount')
        ax.tick_params(axis='x', rotation=45)

    # Hide unused subplots
    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Tip by Category', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Category plots saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (9, 7),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for the numeric trip features.

    Args:
        df: Feature-augmented table
        columns: Numeric columns to include
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    if columns is None:
        columns = NUMERIC_FEATURES
    numeric = df[[c for c in columns if c in df.columns]].apply(pd.to_numeric, errors="coerce")
    corr_matrix = numeric.astype(float).corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.3f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the EDA figures for an engineered window.

    Args:
        df: Feature-augmented table
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "figures": [],
        "correlation_matrix": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    plot_tip_distribution(df, save_path=str(output_dir / "01_tip_distribution.png"))
    report["figures"].append("01_tip_distribution.png")

    plot_tip_relationships(df, save_path=str(output_dir / "02_tip_relationships.png"))
    report["figures"].append("02_tip_relationships.png")

    plot_tip_by_category(df, save_path=str(output_dir / "03_tip_by_category.png"))
    report["figures"].append("03_tip_by_category.png")

    _, corr_matrix = plot_correlation_matrix(df, save_path=str(output_dir / "04_correlation_matrix.png"))
    report["figures"].append("04_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    if "pickup_borough" in df.columns:
        plot_tip_by_category(
            df, columns=["pickup_borough"], figsize=(10, 5),
            save_path=str(output_dir / "05_tip_by_borough.png")
        )
        report["figures"].append("05_tip_by_borough.png")

    for col in NUMERIC_FEATURES:
        if col in df.columns:
            values = pd.to_numeric(df[col], errors="coerce").astype(float)
            report["statistics"][col] = {
                "mean": float(values.mean()),
                "std": float(values.std()),
                "min": float(values.min()),
                "max": float(values.max()),
                "skew": float(values.skew())
            }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_correlation_insights(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> None:
    """
    Print strongly correlated feature pairs.

    Args:
        corr_matrix: Correlation matrix DataFrame
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    strong_corr = []
    for i in range(len(corr_matrix.columns)):
        for j in range(i + 1, len(corr_matrix.columns)):
            corr_val = corr_matrix.iloc[i, j]
            if abs(corr_val) >= threshold:
                strong_corr.append({
                    "col1": corr_matrix.columns[i],
                    "col2": corr_matrix.columns[j],
                    "correlation": corr_val
                })

    if strong_corr:
        print(f"\nStrong correlations (|r| >= {threshold}):")
        for item in sorted(strong_corr, key=lambda x: abs(x["correlation"]), reverse=True):
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
    else:
        print(f"\nNo strong correlations found (|r| >= {threshold})")

    print("=" * 50 + "\n")

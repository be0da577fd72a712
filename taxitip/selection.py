"""
Subset Selection Module
=======================

Searches predictor subsets and scores each by the adjusted R² of its
least-squares fit:

    adj_R2 = 1 - (1 - R2) * (n - 1) / (n - p - 1)

where p counts design terms, so a categorical predictor with k observed
levels contributes k - 1 terms both to p and to the ``max_size`` budget.

For every term count the best-scoring subset is kept; the final choice is
the subset with the highest adjusted R² across sizes, with near-ties going
to the smaller model.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .design import DesignMatrixEncoder, model_frame

logger = logging.getLogger(__name__)

SEARCH_METHODS = ("exhaustive", "forward")
TIE_TOLERANCE = 1e-10


@dataclass(frozen=True)
class SelectionResult:
    predictors: List[str]
    adj_r2: float
    r2: float
    n_terms: int
    per_size: pd.DataFrame
    n_rows: int


def adjusted_r2(r2: float, n: int, p: int) -> float:
    """Adjusted R² for ``n`` rows and ``p`` predictors (intercept excluded)."""
    if n - p - 1 <= 0:
        return float("nan")
    return 1.0 - (1.0 - r2) * (n - 1) / (n - p - 1)


def _fit_r2(X: np.ndarray, y: np.ndarray, tss: float) -> Tuple[float, float]:
    """Least-squares fit with intercept; returns (rss, r2)."""
    design = np.column_stack([np.ones(len(y)), X]) if X.size else np.ones((len(y), 1))
    beta, _, _, _ = np.linalg.lstsq(design, y, rcond=None)
    resid = y - design @ beta
    rss = float(resid @ resid)
    r2 = 1.0 - rss / tss if tss > 0 else 0.0
    return rss, r2


class _SubsetScorer:
    """Caches the encoded matrix so each subset costs one lstsq call."""

    def __init__(self, encoder: DesignMatrixEncoder, X: pd.DataFrame, y: pd.Series):
        self.encoder = encoder
        self.X = X.to_numpy(dtype=float)
        self.y = y.to_numpy(dtype=float)
        self.n = len(self.y)
        self.tss = float(((self.y - self.y.mean()) ** 2).sum())
        self.column_index = {name: i for i, name in enumerate(X.columns)}

    def n_terms(self, subset: Sequence[str]) -> int:
        return sum(self.encoder.n_terms(p) for p in subset)

    def score(self, subset: Sequence[str]) -> Dict[str, float]:
        cols = [self.column_index[c] for c in self.encoder.columns_for(list(subset))]
        rss, r2 = _fit_r2(self.X[:, cols], self.y, self.tss)
        p = len(cols)
        return {"rss": rss, "r2": r2, "adj_r2": adjusted_r2(r2, self.n, p), "n_terms": p}


def _exhaustive(scorer: _SubsetScorer, candidates: List[str], max_size: int) -> Dict[int, dict]:
    best: Dict[int, dict] = {}
    for k in range(1, len(candidates) + 1):
        for subset in itertools.combinations(candidates, k):
            if scorer.n_terms(subset) > max_size:
                continue
            result = scorer.score(subset)
            size = result["n_terms"]
            if size not in best or result["rss"] < best[size]["rss"]:
                best[size] = dict(result, predictors=list(subset))
    return best


def _forward(scorer: _SubsetScorer, candidates: List[str], max_size: int) -> Dict[int, dict]:
    best: Dict[int, dict] = {}
    current: List[str] = []
    remaining = list(candidates)

    while remaining:
        step = None
        for cand in remaining:
            subset = [c for c in candidates if c in current or c == cand]
            if scorer.n_terms(subset) > max_size:
                continue
            result = scorer.score(subset)
            if step is None or result["rss"] < step["rss"]:
                step = dict(result, predictors=subset, added=cand)
        if step is None:
            break
        current = step["predictors"]
        remaining.remove(step["added"])
        step.pop("added")
        size = step["n_terms"]
        if size not in best or step["rss"] < best[size]["rss"]:
            best[size] = step
        logger.debug(f"Forward step: {current} adj_R2={step['adj_r2']:.6f}")

    return best


def _choose_across_sizes(best: Dict[int, dict], tolerance: float = TIE_TOLERANCE) -> dict:
    chosen = None
    for size in sorted(best):
        entry = best[size]
        if np.isnan(entry["adj_r2"]):
            continue
        # strictly better beyond tolerance is required to prefer more terms
        if chosen is None or entry["adj_r2"] > chosen["adj_r2"] + tolerance:
            chosen = entry
    if chosen is None:
        raise ValueError("No subset could be scored; too few rows for the number of terms")
    return chosen


def subset_search(
    df: pd.DataFrame,
    candidates: Sequence[str],
    target: str = "tip_amount",
    max_size: int = 8,
    method: str = "exhaustive",
    encoder: Optional[DesignMatrixEncoder] = None
) -> SelectionResult:
    """
    Search candidate predictor subsets by adjusted R².

    Args:
        df: Feature-augmented training table
        candidates: Candidate predictor names
        target: Response column
        max_size: Maximum number of design terms in a subset
        method: 'exhaustive' (all combinations) or 'forward' (greedy)
        encoder: Pre-fitted encoder covering the candidates (optional)

    Returns:
        SelectionResult with the chosen predictors and the per-size table
    """
    candidates = list(candidates)
    if not candidates:
        raise ValueError("At least one candidate predictor is required")
    if max_size < 1:
        raise ValueError(f"max_size must be >= 1 (got {max_size})")
    if method not in SEARCH_METHODS:
        raise ValueError(f"method must be one of {list(SEARCH_METHODS)} (got {method})")

    logger.info("=" * 60)
    logger.info(f"SUBSET SELECTION ({method}, max {max_size} terms)")
    logger.info("=" * 60)

    if encoder is None:
        encoder = DesignMatrixEncoder(candidates).fit(df)
    else:
        encoder = encoder.subset(candidates)

    single_level = [c for c in candidates if encoder.n_terms(c) == 0]
    if single_level:
        logger.warning(f"Dropping candidates with a single observed level: {single_level}")
        candidates = [c for c in candidates if c not in single_level]
        if not candidates:
            raise ValueError("Every candidate has a single observed level; nothing to select")
        encoder = encoder.subset(candidates)

    X, y, n_excluded = model_frame(encoder, df, target)
    if n_excluded:
        logger.info(f"Excluded {n_excluded:,} rows with undefined predictors or target")

    scorer = _SubsetScorer(encoder, X, y)
    if method == "exhaustive":
        best = _exhaustive(scorer, candidates, max_size)
    else:
        best = _forward(scorer, candidates, max_size)

    if not best:
        raise ValueError(f"No candidate fits within max_size={max_size} terms")

    chosen = _choose_across_sizes(best)

    per_size = pd.DataFrame(
        [
            {
                "n_terms": size,
                "predictors": ", ".join(entry["predictors"]),
                "r2": entry["r2"],
                "adj_r2": entry["adj_r2"],
                "rss": entry["rss"],
            }
            for size, entry in sorted(best.items())
        ]
    )

    logger.info(
        f"Selected {chosen['predictors']} ({chosen['n_terms']} terms, adj R² = {chosen['adj_r2']:.6f})"
    )

    return SelectionResult(
        predictors=list(chosen["predictors"]),
        adj_r2=float(chosen["adj_r2"]),
        r2=float(chosen["r2"]),
        n_terms=int(chosen["n_terms"]),
        per_size=per_size,
        n_rows=scorer.n,
    )


def select_best_subset(
    df: pd.DataFrame,
    candidates: Sequence[str],
    target: str = "tip_amount",
    max_size: int = 8,
    method: str = "exhaustive"
) -> List[str]:
    """Return only the chosen predictor names (candidate order)."""
    return subset_search(df, candidates, target, max_size, method).predictors


def print_selection_summary(result: SelectionResult) -> None:
    print("\n" + "=" * 70)
    print("SUBSET SELECTION")
    print("=" * 70)
    print(f"Rows used: {result.n_rows:,}")
    print(result.per_size.to_string(index=False, float_format=lambda v: f"{v:.6f}"))
    print("-" * 70)
    print(f"Chosen: {result.predictors}")
    print(f"  terms = {result.n_terms}, R² = {result.r2:.6f}, adj R² = {result.adj_r2:.6f}")
    print("=" * 70 + "\n")

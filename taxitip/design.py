"""
Design Matrix Module
====================

Builds the numeric predictor matrix used by every model. The layout is
learned once from the training window and reused verbatim for any other
table, so training and evaluation rows always share the same columns.

Encoding rules:
    - numeric / boolean predictors are used directly (as float)
    - categorical predictors are dummy-coded over the levels observed in
      training; the first observed level is the reference and is dropped
    - a level unseen in training encodes as an all-zero indicator row
"""

import logging
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .data_loader import require_columns

logger = logging.getLogger(__name__)


def _is_categorical(series: pd.Series) -> bool:
    # pandas 3 reads text as the "str" dtype, not object
    return (
        isinstance(series.dtype, pd.CategoricalDtype)
        or pd.api.types.is_object_dtype(series)
        or pd.api.types.is_string_dtype(series)
    )


class DesignMatrixEncoder:
    """
    Fixed dummy-encoding layout for a list of predictors.

    Must be fitted on the training window before transforming any table.
    """

    def __init__(self, predictors: List[str]):
        """
        Args:
            predictors: Predictor column names, in model order
        """
        self.predictors = list(predictors)
        self.levels: Dict[str, List[str]] = {}
        self.term_groups: Dict[str, List[str]] = {}
        self.feature_names: Optional[List[str]] = None
        self._is_fitted = False

    def fit(self, df: pd.DataFrame) -> 'DesignMatrixEncoder':
        """
        Learn categorical levels and the column layout from a training table.

        Args:
            df: Feature-augmented training table

        Returns:
            Self for method chaining
        """
        require_columns(df, self.predictors, stage="design matrix")

        self.levels = {}
        self.term_groups = {}
        feature_names = []

        for col in self.predictors:
            series = df[col]
            if _is_categorical(series):
                observed = set(series.dropna().astype(str))
                if isinstance(series.dtype, pd.CategoricalDtype):
                    ordered = [str(c) for c in series.cat.categories if str(c) in observed]
                else:
                    ordered = sorted(observed)
                self.levels[col] = ordered
                names = [f"{col}_{level}" for level in ordered[1:]]
            else:
                names = [col]
            self.term_groups[col] = names
            feature_names.extend(names)

        self.feature_names = feature_names
        self._is_fitted = True
        logger.info(
            f"Design matrix layout: {len(self.predictors)} predictors -> {len(feature_names)} columns"
        )
        return self

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Encoder must be fitted before transform. Call fit() first.")

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Encode a table on the fitted layout.

        Missing predictor values stay NaN in numeric columns; use
        ``valid_rows`` to exclude them.

        Args:
            df: Feature-augmented table (any window)

        Returns:
            Float DataFrame with columns ``feature_names`` and the input index
        """
        self._check_fitted()
        require_columns(df, self.predictors, stage="design matrix")

        columns = {}
        for col in self.predictors:
            if col in self.levels:
                present = df[col].notna()
                as_str = df[col].astype(str)
                for level, name in zip(self.levels[col][1:], self.term_groups[col]):
                    columns[name] = ((as_str == level) & present).astype(float)
            else:
                columns[col] = pd.to_numeric(df[col], errors="coerce").astype("float64")

        return pd.DataFrame(columns, index=df.index, columns=self.feature_names)

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        self.fit(df)
        return self.transform(df)

    def valid_rows(self, df: pd.DataFrame) -> pd.Series:
        """Boolean mask of rows whose predictors are all defined."""
        self._check_fitted()
        require_columns(df, self.predictors, stage="design matrix")

        mask = pd.Series(True, index=df.index)
        for col in self.predictors:
            if col in self.levels:
                mask &= df[col].notna()
            else:
                mask &= pd.to_numeric(df[col], errors="coerce").notna()
        return mask

    def n_terms(self, predictor: str) -> int:
        """Number of design columns a predictor expands to."""
        self._check_fitted()
        return len(self.term_groups[predictor])

    def columns_for(self, predictors: List[str]) -> List[str]:
        """Design columns for a subset of predictors, in layout order."""
        self._check_fitted()
        return [name for p in self.predictors if p in predictors for name in self.term_groups[p]]

    def subset(self, predictors: List[str]) -> 'DesignMatrixEncoder':
        """Encoder restricted to ``predictors`` sharing this encoder's levels."""
        self._check_fitted()
        unknown = [p for p in predictors if p not in self.predictors]
        if unknown:
            raise ValueError(f"Predictors not in fitted layout: {unknown}")

        ordered = [p for p in self.predictors if p in predictors]
        sub = DesignMatrixEncoder(ordered)
        sub.levels = {p: self.levels[p] for p in ordered if p in self.levels}
        sub.term_groups = {p: self.term_groups[p] for p in ordered}
        sub.feature_names = self.columns_for(ordered)
        sub._is_fitted = True
        return sub


def model_frame(
    encoder: DesignMatrixEncoder,
    df: pd.DataFrame,
    target: str
) -> Tuple[pd.DataFrame, pd.Series, int]:
    """
    Encode predictors and target, keeping only rows where both are defined.

    Returns:
        Tuple of (X, y, n_excluded)
    """
    require_columns(df, [target], stage="design matrix")
    y = pd.to_numeric(df[target], errors="coerce")
    mask = encoder.valid_rows(df) & y.notna()
    X = encoder.transform(df.loc[mask])
    return X, y.loc[mask].astype("float64"), int((~mask).sum())


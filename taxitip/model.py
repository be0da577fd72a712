"""
Model Training Module
=====================

Fits the three tip-amount regressions on the training window:

    - ols: ordinary least squares on the chosen predictors (statsmodels)
    - stepwise_ols: backward elimination from the full OLS model by AIC
    - ridge: L2-penalized least squares, alpha chosen by k-fold CV (scikit-learn)

All variants share one DesignMatrixEncoder fitted on the training window,
so their coefficients live on the same column layout.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from sklearn.linear_model import Ridge
from sklearn.model_selection import GridSearchCV, KFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .design import DesignMatrixEncoder, model_frame
from .errors import FitError

logger = logging.getLogger(__name__)

OLS_NAME = "ols"
STEPWISE_NAME = "stepwise_ols"
RIDGE_NAME = "ridge"

DEFAULT_ALPHAS = np.logspace(-4, 4, 50)


class TipRegressionModel:
    """
    A fitted linear model for tip_amount.

    Holds the encoder (column layout), intercept and coefficients so any
    feature-augmented table can be scored, plus fit metadata.
    """

    def __init__(
        self,
        name: str,
        encoder: DesignMatrixEncoder,
        intercept: float,
        coefficients: pd.Series,
        alpha: Optional[float] = None,
        results: Any = None,
        training_info: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            name: Model identifier
            encoder: Fitted encoder restricted to this model's predictors
            intercept: Fitted intercept
            coefficients: Coefficients indexed by design column name
            alpha: Ridge penalty (None for unpenalized fits)
            results: statsmodels results object for OLS fits
            training_info: Row counts, timing and search details
        """
        self.name = name
        self.encoder = encoder
        self.intercept = float(intercept)
        self.coefficients = coefficients.reindex(encoder.feature_names)
        self.alpha = alpha
        self.results = results
        self.training_info = training_info or {}

    @property
    def predictors(self) -> List[str]:
        return list(self.encoder.predictors)

    @property
    def is_penalized(self) -> bool:
        return self.alpha is not None

    @property
    def n_coefficients(self) -> int:
        """Coefficients including the intercept."""
        return len(self.coefficients) + 1

    @property
    def aic(self) -> float:
        return float(self.results.aic) if self.results is not None else float("nan")

    @property
    def bic(self) -> float:
        return float(self.results.bic) if self.results is not None else float("nan")

    def predict(self, df: pd.DataFrame) -> pd.Series:
        """
        Predict tip_amount for every row of ``df``.

        Rows with an undefined predictor get NaN.

        Args:
            df: Feature-augmented table

        Returns:
            Predictions indexed like ``df``
        """
        X = self.encoder.transform(df)
        pred = X.to_numpy(dtype=float) @ self.coefficients.to_numpy(dtype=float) + self.intercept
        pred = pd.Series(pred, index=df.index, name="predicted")
        return pred.where(self.encoder.valid_rows(df))

    def coefficient_table(self) -> pd.DataFrame:
        table = pd.DataFrame({
            "coefficient": pd.concat([pd.Series({"const": self.intercept}), self.coefficients])
        })
        if self.results is not None:
            table["std_error"] = self.results.bse
            table["p_value"] = self.results.pvalues
        return table


def _with_const(X: pd.DataFrame) -> pd.DataFrame:
    Xc = X.copy()
    Xc.insert(0, "const", 1.0)
    return Xc


def _collinear_columns(X: pd.DataFrame) -> List[str]:
    """Columns that add no rank when appended left to right."""
    collinear = []
    kept = np.empty((len(X), 0))
    for col in X.columns:
        trial = np.column_stack([kept, X[col].to_numpy(dtype=float)])
        if np.linalg.matrix_rank(trial) > kept.shape[1]:
            kept = trial
        else:
            collinear.append(col)
    return collinear


def _encoder_for(df: pd.DataFrame, predictors: Sequence[str], encoder: Optional[DesignMatrixEncoder]):
    if encoder is None:
        return DesignMatrixEncoder(list(predictors)).fit(df)
    return encoder.subset(list(predictors))


def fit_ols(
    df: pd.DataFrame,
    predictors: Sequence[str],
    target: str = "tip_amount",
    encoder: Optional[DesignMatrixEncoder] = None,
    name: str = OLS_NAME
) -> TipRegressionModel:
    """
    Fit ordinary least squares of ``target`` on ``predictors``.

    Args:
        df: Feature-augmented training table
        predictors: Predictor column names
        target: Response column
        encoder: Fitted encoder covering the predictors (optional)
        name: Model name

    Returns:
        Fitted TipRegressionModel

    Raises:
        FitError: If the design matrix is rank deficient or has too few rows
    """
    encoder = _encoder_for(df, predictors, encoder)
    X, y, n_excluded = model_frame(encoder, df, target)
    Xc = _with_const(X)

    if len(y) <= Xc.shape[1]:
        raise FitError(f"[{name}] {len(y)} rows is too few for {Xc.shape[1]} coefficients")

    rank = np.linalg.matrix_rank(Xc.to_numpy(dtype=float))
    if rank < Xc.shape[1]:
        raise FitError(
            f"[{name}] design matrix is rank deficient ({rank} < {Xc.shape[1]}); "
            f"collinear columns: {_collinear_columns(Xc)}"
        )

    results = sm.OLS(y, Xc).fit()
    params = results.params

    logger.info(
        f"[{name}] n={len(y):,} (excluded {n_excluded:,}), {Xc.shape[1]} coefficients, "
        f"R²={results.rsquared:.4f}, AIC={results.aic:.1f}"
    )

    return TipRegressionModel(
        name=name,
        encoder=encoder,
        intercept=params["const"],
        coefficients=params.drop("const"),
        results=results,
        training_info={
            "n_samples": int(len(y)),
            "n_excluded": n_excluded,
            "trained_at": datetime.now().isoformat(),
        },
    )


def fit_backward_ols(
    df: pd.DataFrame,
    predictors: Sequence[str],
    target: str = "tip_amount",
    encoder: Optional[DesignMatrixEncoder] = None,
    name: str = STEPWISE_NAME
) -> TipRegressionModel:
    """
    Backward elimination by AIC, starting from the full OLS model.

    Each step drops the single predictor (all of its dummy columns together)
    whose removal yields the lowest AIC, as long as that AIC beats the
    current model's. The row set is fixed by the full model so AIC values
    stay comparable.

    Args:
        df: Feature-augmented training table
        predictors: Starting predictor set
        target: Response column
        encoder: Fitted encoder covering the predictors (optional)
        name: Model name

    Returns:
        Fitted TipRegressionModel at the local AIC optimum
    """
    encoder = _encoder_for(df, predictors, encoder)
    rows = encoder.valid_rows(df) & pd.to_numeric(df[target], errors="coerce").notna()
    data = df.loc[rows]

    current = list(encoder.predictors)
    best = fit_ols(data, current, target, encoder, name=name)
    history = [{"removed": None, "aic": best.aic, "predictors": list(current)}]

    while current:
        trials = []
        for pred in current:
            remaining = [p for p in current if p != pred]
            trial = fit_ols(data, remaining, target, encoder, name=name)
            trials.append((trial.aic, pred, trial))

        trial_aic, dropped, trial_model = min(trials, key=lambda t: t[0])
        if trial_aic >= best.aic:
            break

        logger.info(f"[{name}] dropping '{dropped}': AIC {best.aic:.2f} -> {trial_aic:.2f}")
        current = [p for p in current if p != dropped]
        best = trial_model
        history.append({"removed": dropped, "aic": trial_aic, "predictors": list(current)})

    best.training_info["n_excluded"] = int((~rows).sum())
    best.training_info["elimination_history"] = history
    logger.info(f"[{name}] final predictors: {current}")
    return best


def fit_ridge(
    df: pd.DataFrame,
    predictors: Sequence[str],
    target: str = "tip_amount",
    encoder: Optional[DesignMatrixEncoder] = None,
    alphas: Optional[Sequence[float]] = None,
    cv_folds: int = 10,
    random_state: int = 42,
    name: str = RIDGE_NAME
) -> TipRegressionModel:
    """
    Fit ridge regression, choosing alpha by k-fold cross-validated MSE.

    Predictors are standardized before penalizing; the intercept is not
    penalized. After the search the model is refit once on all training
    rows at the chosen alpha. Coefficients are reported on the original
    predictor scale.

    Args:
        df: Feature-augmented training table
        predictors: Predictor column names
        target: Response column
        encoder: Fitted encoder covering the predictors (optional)
        alphas: Penalty grid; a single value skips cross-validation
        cv_folds: Number of CV folds
        random_state: Seed for fold shuffling
        name: Model name

    Returns:
        Fitted TipRegressionModel
    """
    encoder = _encoder_for(df, predictors, encoder)
    X, y, n_excluded = model_frame(encoder, df, target)
    alphas = list(DEFAULT_ALPHAS if alphas is None else alphas)

    if X.shape[1] == 0:
        raise FitError(f"[{name}] ridge needs at least one design column")
    if len(y) < 2:
        raise FitError(f"[{name}] {len(y)} rows is too few to fit")

    pipeline = Pipeline([("scaler", StandardScaler()), ("ridge", Ridge())])
    cv_results = None

    if len(alphas) == 1:
        alpha = float(alphas[0])
        pipeline.set_params(ridge__alpha=alpha)
        fitted = pipeline.fit(X, y)
        cv_mse = None
    else:
        folds = min(cv_folds, len(y))
        search = GridSearchCV(
            pipeline,
            param_grid={"ridge__alpha": alphas},
            cv=KFold(n_splits=folds, shuffle=True, random_state=random_state),
            scoring="neg_mean_squared_error",
            refit=True,
        )
        search.fit(X, y)
        fitted = search.best_estimator_
        alpha = float(search.best_params_["ridge__alpha"])
        cv_mse = float(-search.best_score_)
        cv_results = pd.DataFrame({
            "alpha": np.asarray(search.cv_results_["param_ridge__alpha"], dtype=float),
            "cv_mse": -search.cv_results_["mean_test_score"],
        })
        logger.info(f"[{name}] {folds}-fold CV chose alpha={alpha:.6g} (CV MSE {cv_mse:.4f})")

    scaler = fitted.named_steps["scaler"]
    ridge = fitted.named_steps["ridge"]
    coef = ridge.coef_ / scaler.scale_
    intercept = ridge.intercept_ - float(np.dot(coef, scaler.mean_))

    logger.info(f"[{name}] n={len(y):,} (excluded {n_excluded:,}), alpha={alpha:.6g}")

    return TipRegressionModel(
        name=name,
        encoder=encoder,
        intercept=intercept,
        coefficients=pd.Series(coef, index=X.columns),
        alpha=alpha,
        training_info={
            "n_samples": int(len(y)),
            "n_excluded": n_excluded,
            "cv_mse": cv_mse,
            "cv_results": cv_results,
            "trained_at": datetime.now().isoformat(),
        },
    )


def train_models(
    train_df: pd.DataFrame,
    predictors: Sequence[str],
    config: Dict[str, Any],
    target: str = "tip_amount"
) -> Dict[str, TipRegressionModel]:
    """
    Fit the OLS, backward-AIC OLS and ridge models on the training window.

    Args:
        train_df: Feature-augmented training table
        predictors: Predictors for the full model
        config: Configuration dictionary (uses the 'model' section)
        target: Response column

    Returns:
        Dictionary of model name -> fitted model
    """
    model_config = config.get('model', {})

    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING")
    logger.info("=" * 60)
    logger.info(f"Predictors: {list(predictors)}")

    encoder = DesignMatrixEncoder(list(predictors)).fit(train_df)

    alphas = model_config.get('ridge_alphas')
    if alphas is None:
        grid = model_config.get('ridge_alpha_grid', {})
        alphas = np.logspace(grid.get('log10_min', -4), grid.get('log10_max', 4), grid.get('n', 50))

    models = {
        OLS_NAME: fit_ols(train_df, predictors, target, encoder),
        STEPWISE_NAME: fit_backward_ols(train_df, predictors, target, encoder),
        RIDGE_NAME: fit_ridge(
            train_df,
            predictors,
            target,
            encoder,
            alphas=alphas,
            cv_folds=model_config.get('cv_folds', 10),
            random_state=model_config.get('random_state', 42),
        ),
    }

    logger.info("=" * 60)
    logger.info("MODEL TRAINING COMPLETE")
    logger.info("=" * 60)
    return models


def print_model_summary(model: TipRegressionModel) -> None:
    """
    Print a summary of a fitted model.

    Args:
        model: Fitted model instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 50)
    print(f"Predictors: {model.predictors}")
    print(f"Coefficients (incl. intercept): {model.n_coefficients}")
    if model.is_penalized:
        print(f"Ridge alpha: {model.alpha:.6g}")
        if model.training_info.get('cv_mse') is not None:
            print(f"CV MSE at alpha: {model.training_info['cv_mse']:.4f}")
    else:
        print(f"AIC: {model.aic:.2f}  BIC: {model.bic:.2f}")
    print(f"Training rows: {model.training_info.get('n_samples', 'N/A')}")

    history = model.training_info.get('elimination_history')
    if history and len(history) > 1:
        print("\nBackward elimination:")
        for step in history[1:]:
            print(f"  - dropped {step['removed']} (AIC {step['aic']:.2f})")

    print("\nCoefficients:")
    print(model.coefficient_table().round(5).to_string())
    print("=" * 50 + "\n")

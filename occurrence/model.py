"""
Occurrence-ratio regression models and predictor selection.

Four linear models are fitted on the same standardized predictors: ordinary
least squares and three penalized variants (LASSO, Ridge, Elastic net)
whose penalty strength is chosen by k-fold cross-validation on held-out
squared error.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import joblib
import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression, LassoCV, RidgeCV, ElasticNetCV
from sklearn.model_selection import KFold, cross_val_score
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .config import (
    CV_FOLDS,
    ELASTIC_NET_ALPHA,
    RANDOM_SEED,
    REMOVAL_THRESHOLD,
    SIGNIFICANCE_LEVEL,
)
from .errors import InsufficientData, DegenerateTarget
from .matching import MatchedObservation

logger = logging.getLogger(__name__)

PREDICTORS = ("tmax", "tmin", "prcp", "snow", "snwd", "landcover", "longitude", "latitude")

MODEL_NAMES: tuple[str, ...] = ("full", "lasso", "ridge", "elastic")
PENALIZED: tuple[str, ...] = ("lasso", "ridge", "elastic")

# Candidate penalties for Ridge; LASSO and Elastic net build their own path
RIDGE_ALPHAS = np.logspace(-4, 4, 50)
MAX_ITER = 10000


def feature_matrix(matched: Sequence[MatchedObservation]) -> np.ndarray:
    """Predictor matrix in PREDICTORS order, NaN where a value is missing."""
    return np.array(
        [[np.nan if getattr(m, name) is None else getattr(m, name) for name in PREDICTORS]
         for m in matched],
        dtype=float,
    ).reshape(len(matched), len(PREDICTORS))


@dataclass
class FittedModel:
    """One fitted regression with its coefficients on the standardized scale."""

    name: str
    pipeline: Pipeline
    cv_mse: float
    coefficients: dict[str, float]
    intercept: float
    penalty: Optional[float] = None
    p_values: Optional[dict[str, float]] = None

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predict the target for a predictor matrix.

        Args:
            X: Array of shape (n_samples, len(PREDICTORS))

        Returns:
            Array of predictions
        """
        return self.pipeline.predict(np.asarray(X, dtype=float))

    def largest_coefficient(self) -> float:
        return max(abs(c) for c in self.coefficients.values())

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "cv_mse": self.cv_mse,
            "intercept": self.intercept,
            "penalty": self.penalty,
            "coefficients": self.coefficients,
        }
        if self.p_values is not None:
            data["p_values"] = self.p_values
        return data

    def save(self, path: str | Path) -> None:
        """Save the fitted model to disk."""
        joblib.dump(self, path)

    @classmethod
    def load(cls, path: str | Path) -> "FittedModel":
        """Load a fitted model from disk."""
        model = joblib.load(path)
        if not isinstance(model, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        return model


@dataclass
class ModelComparison:
    """The four fitted models plus the predictor-removal recommendation."""

    models: dict[str, FittedModel]
    n_observations: int
    n_dropped: int
    removal_candidates: list[str] = field(default_factory=list)

    @property
    def full(self) -> FittedModel:
        return self.models["full"]

    @property
    def lasso(self) -> FittedModel:
        return self.models["lasso"]

    @property
    def ridge(self) -> FittedModel:
        return self.models["ridge"]

    @property
    def elastic(self) -> FittedModel:
        return self.models["elastic"]

    def best(self) -> FittedModel:
        """Model with the lowest cross-validated MSE (earlier names win ties)."""
        return min((self.models[name] for name in MODEL_NAMES), key=lambda m: m.cv_mse)

    def to_dict(self) -> dict:
        return {
            "predictors": list(PREDICTORS),
            "n_observations": self.n_observations,
            "n_dropped": self.n_dropped,
            "models": {name: m.to_dict() for name, m in self.models.items()},
            "removal_candidates": self.removal_candidates,
            "selected": self.best().name,
        }


def ols_p_values(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Two-sided t-test p-values for OLS slope coefficients.

    NaN where the coefficient is not identifiable or there are no residual
    degrees of freedom.
    """
    n, p = X.shape
    design = np.column_stack([np.ones(n), X])
    dof = n - p - 1
    if dof <= 0:
        return np.full(p, np.nan)

    beta, *_ = np.linalg.lstsq(design, y, rcond=None)
    residuals = y - design @ beta
    sigma2 = residuals @ residuals / dof
    variances = sigma2 * np.diag(np.linalg.pinv(design.T @ design))

    p_values = np.full(p, np.nan)
    ok = variances[1:] > 0
    t_stats = beta[1:][ok] / np.sqrt(variances[1:][ok])
    p_values[ok] = 2 * stats.t.sf(np.abs(t_stats), dof)
    return p_values


class ModelSelector:
    """
    Fits and compares OLS, LASSO, Ridge and Elastic-net regressions.

    A predictor is recommended for removal when every penalized model shrinks
    it below `removal_threshold` times that model's largest coefficient
    magnitude while OLS still reports it significant at `significance_level`.
    This is a heuristic, not a formal test.
    """

    def __init__(
        self,
        cv_folds: int = CV_FOLDS,
        elastic_net_alpha: float = ELASTIC_NET_ALPHA,
        removal_threshold: float = REMOVAL_THRESHOLD,
        significance_level: float = SIGNIFICANCE_LEVEL,
        random_state: int = RANDOM_SEED,
    ):
        """
        Args:
            cv_folds: Number of cross-validation folds
            elastic_net_alpha: L1 share of the Elastic-net penalty
            removal_threshold: Relative magnitude below which a coefficient is "zero"
            significance_level: OLS p-value cutoff
            random_state: Seed for fold shuffling
        """
        self.cv_folds = cv_folds
        self.elastic_net_alpha = elastic_net_alpha
        self.removal_threshold = removal_threshold
        self.significance_level = significance_level
        self.random_state = random_state

    def _build(self, name: str, cv: KFold) -> Pipeline:
        if name == "full":
            estimator = LinearRegression()
        elif name == "lasso":
            estimator = LassoCV(cv=cv, max_iter=MAX_ITER)
        elif name == "ridge":
            estimator = RidgeCV(alphas=RIDGE_ALPHAS, cv=cv, scoring="neg_mean_squared_error")
        elif name == "elastic":
            estimator = ElasticNetCV(l1_ratio=self.elastic_net_alpha, cv=cv, max_iter=MAX_ITER)
        else:
            raise ValueError(f"Unknown model: {name}. Choose from {list(MODEL_NAMES)}")
        return Pipeline([("scaler", StandardScaler()), (name, estimator)])

    def fit(self, features: np.ndarray | pd.DataFrame, target: np.ndarray) -> ModelComparison:
        """
        Fit all four models.

        Rows with any missing predictor or target are dropped first.

        Args:
            features: Array of shape (n, len(PREDICTORS)) or a DataFrame with
                PREDICTORS columns
            target: Regression target of length n

        Returns:
            ModelComparison with full, lasso, ridge and elastic models

        Raises:
            InsufficientData: fewer remaining rows than predictors
            DegenerateTarget: the target has zero variance
        """
        if isinstance(features, pd.DataFrame):
            features = features[list(PREDICTORS)].to_numpy(dtype=float)
        X = np.asarray(features, dtype=float)
        y = np.asarray(target, dtype=float)
        if X.ndim != 2 or X.shape[1] != len(PREDICTORS):
            raise ValueError(f"Expected {len(PREDICTORS)} predictor columns, got shape {X.shape}")
        if len(X) != len(y):
            raise ValueError(f"Features have {len(X)} rows but target has {len(y)}")

        complete = ~np.isnan(X).any(axis=1) & ~np.isnan(y)
        n_dropped = int((~complete).sum())
        X, y = X[complete], y[complete]
        if n_dropped:
            logger.info(f"Dropped {n_dropped} rows with missing predictors")

        n = len(X)
        if n < len(PREDICTORS) or n < 2:
            raise InsufficientData(
                f"Need at least {len(PREDICTORS)} complete observations, found {n}"
            )
        if np.var(y) == 0:
            raise DegenerateTarget("Target has zero variance; folds cannot be scored")

        cv, inner_cv = self._folds(n)

        models = {}
        for name in MODEL_NAMES:
            models[name] = self._fit_one(name, X, y, cv, inner_cv)
            logger.info(
                f"  {name}: CV MSE {models[name].cv_mse:.3g}"
                + (f", penalty {models[name].penalty:.3g}" if models[name].penalty is not None else "")
            )

        p_values = ols_p_values(StandardScaler().fit_transform(X), y)
        models["full"].p_values = dict(zip(PREDICTORS, p_values.tolist()))

        comparison = ModelComparison(models=models, n_observations=n, n_dropped=n_dropped)
        comparison.removal_candidates = self.removal_candidates(comparison)
        if comparison.removal_candidates:
            logger.info(f"Recommended for removal: {', '.join(comparison.removal_candidates)}")
        logger.info(f"Selected model: {comparison.best().name}")
        return comparison

    def _folds(self, n: int) -> tuple[KFold, KFold]:
        """
        Outer folds score the models; inner folds choose the penalty inside
        each outer training split, which holds at least n - ceil(n / outer) rows.
        """
        outer = min(self.cv_folds, n)
        inner = min(self.cv_folds, n - math.ceil(n / outer))
        if inner < 2:
            raise InsufficientData(
                f"{n} observations leave too few rows to tune penalties with {outer} folds"
            )
        return (
            KFold(n_splits=outer, shuffle=True, random_state=self.random_state),
            KFold(n_splits=inner, shuffle=True, random_state=self.random_state),
        )

    def _fit_one(
        self, name: str, X: np.ndarray, y: np.ndarray, cv: KFold, inner_cv: KFold
    ) -> FittedModel:
        pipeline = self._build(name, inner_cv)
        scores = cross_val_score(pipeline, X, y, cv=cv, scoring="neg_mean_squared_error")
        pipeline.fit(X, y)

        estimator = pipeline.named_steps[name]
        return FittedModel(
            name=name,
            pipeline=pipeline,
            cv_mse=float(-scores.mean()),
            coefficients=dict(zip(PREDICTORS, np.ravel(estimator.coef_).tolist())),
            intercept=float(estimator.intercept_),
            penalty=float(estimator.alpha_) if hasattr(estimator, "alpha_") else None,
        )

    def removal_candidates(self, comparison: ModelComparison) -> list[str]:
        """Predictors shrunk to near zero by every penalized model yet significant under OLS."""
        p_values = comparison.full.p_values or {}
        candidates = []
        for predictor in PREDICTORS:
            shrunk = all(
                abs(comparison.models[name].coefficients[predictor])
                < self.removal_threshold * comparison.models[name].largest_coefficient()
                or comparison.models[name].largest_coefficient() == 0
                for name in PENALIZED
            )
            p = p_values.get(predictor, np.nan)
            if shrunk and not np.isnan(p) and p < self.significance_level:
                candidates.append(predictor)
        return candidates

"""
Baseline Classifier
===================

Tree-ensemble baseline on top of the typed wide table.

Features:
    - HistGradientBoostingClassifier (native missing-value support) or
      RandomForestClassifier
    - Polars -> pandas feature matrix with categorical codes
    - Model persistence (save/load with joblib)
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import joblib
import numpy as np
import pandas as pd
import polars as pl
from sklearn.ensemble import HistGradientBoostingClassifier, RandomForestClassifier

logger = logging.getLogger(__name__)

MODEL_KINDS = ("hist_gradient_boosting", "random_forest")

# Random forests cannot take NaN on every supported scikit-learn release
RF_MISSING_VALUE = -1.0


def prepare_features(
    df: pl.DataFrame,
    exclude: Sequence[str] = (),
    categories: dict[str, list[str]] | None = None,
) -> tuple[pd.DataFrame, dict[str, list[str]]]:
    """
    Convert a typed wide table to a numeric pandas feature matrix.

    Categorical and string columns become integer codes over a fixed level
    list (unseen or missing -> NaN), booleans become 0/1, everything else is
    cast to float.

    Args:
        df: Typed wide table
        exclude: Columns that are not features (identifier, target)
        categories: Level lists learned on the training partition; None learns them from df

    Returns:
        (float feature matrix, level lists per categorical column)
    """
    learn = categories is None
    levels: dict[str, list[str]] = {} if learn else dict(categories)
    skip = set(exclude)
    columns: dict[str, np.ndarray] = {}

    for col in df.columns:
        if col in skip:
            continue
        series = df.get_column(col)
        if series.dtype in (pl.Categorical, pl.Utf8, pl.Enum):
            values = series.cast(pl.Utf8)
            if learn:
                levels[col] = sorted(values.drop_nulls().unique().to_list())
            codes = pd.Categorical(values.to_list(), categories=levels.get(col, [])).codes.astype(float)
            codes[codes < 0] = np.nan
            columns[col] = codes
        elif series.dtype in (pl.Boolean, pl.Null) or series.dtype.is_numeric():
            columns[col] = series.cast(pl.Float64).to_numpy()
        else:
            logger.warning(f"Dropping non-numeric feature '{col}' of type {series.dtype}")

    return pd.DataFrame(columns, index=pd.RangeIndex(df.height)), levels


class BaselineClassifier:
    """
    Binary classifier wrapper with a fixed, configurable set of hyperparameters.
    """

    def __init__(
        self,
        kind: str = "hist_gradient_boosting",
        max_iter: int = 200,
        max_depth: int | None = 8,
        learning_rate: float = 0.05,
        n_estimators: int = 300,
        random_state: int = 42,
    ):
        """
        Initialize the model with hyperparameters.

        Args:
            kind: 'hist_gradient_boosting' or 'random_forest'
            max_iter: Boosting iterations (gradient boosting only)
            max_depth: Maximum depth of each tree
            learning_rate: Learning rate (gradient boosting only)
            n_estimators: Number of trees (random forest only)
            random_state: Random seed for reproducibility
        """
        if kind not in MODEL_KINDS:
            raise ValueError(f"Unknown model kind '{kind}'. Choose from: {', '.join(MODEL_KINDS)}")

        self.kind = kind
        self.max_iter = max_iter
        self.max_depth = max_depth
        self.learning_rate = learning_rate
        self.n_estimators = n_estimators
        self.random_state = random_state

        self.model: Any = None
        self.feature_names_: list[str] | None = None
        self.categories_: dict[str, list[str]] = {}
        self.training_info: dict[str, Any] = {}
        self._is_fitted = False

    @classmethod
    def from_config(cls, model_config: dict[str, Any]) -> "BaselineClassifier":
        return cls(
            kind=model_config.get("kind", "hist_gradient_boosting"),
            max_iter=model_config.get("max_iter", 200),
            max_depth=model_config.get("max_depth", 8),
            learning_rate=model_config.get("learning_rate", 0.05),
            n_estimators=model_config.get("n_estimators", 300),
            random_state=model_config.get("random_state", 42),
        )

    def _create_estimator(self):
        if self.kind == "random_forest":
            return RandomForestClassifier(
                n_estimators=self.n_estimators,
                max_depth=self.max_depth,
                min_samples_leaf=5,
                class_weight="balanced",
                n_jobs=-1,
                random_state=self.random_state,
            )
        return HistGradientBoostingClassifier(
            max_iter=self.max_iter,
            max_depth=self.max_depth,
            learning_rate=self.learning_rate,
            random_state=self.random_state,
        )

    def _matrix(self, X: pd.DataFrame) -> pd.DataFrame:
        if self.kind == "random_forest":
            return X.fillna(RF_MISSING_VALUE)
        return X

    def fit(
        self,
        X: pd.DataFrame,
        y: np.ndarray,
        categories: dict[str, list[str]] | None = None,
    ) -> "BaselineClassifier":
        """
        Train the model.

        Args:
            X: Feature matrix from `prepare_features`
            y: Binary target
            categories: Level lists used to encode X, kept for scoring new partitions

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()
        logger.info(f"Training {self.kind} on X={X.shape}, positive rate={float(np.mean(y)):.4f}")

        self.feature_names_ = list(X.columns)
        self.categories_ = dict(categories or {})
        self.model = self._create_estimator()
        self.model.fit(self._matrix(X), y)

        duration = (datetime.now() - start_time).total_seconds()
        self.training_info = {
            "training_duration_seconds": duration,
            "n_samples": int(X.shape[0]),
            "n_features": int(X.shape[1]),
            "trained_at": datetime.now().isoformat(),
        }
        self._is_fitted = True
        logger.info(f"Training complete in {duration:.2f} seconds")
        return self

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        """
        Positive-class probability per row.

        Raises:
            ValueError: If the model is not fitted or the features do not match
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

        missing = [col for col in self.feature_names_ if col not in X.columns]
        if missing:
            raise ValueError(f"Missing features for prediction: {missing}")

        return self.model.predict_proba(self._matrix(X[self.feature_names_]))[:, 1]

    def feature_importances(self) -> pd.Series:
        """Impurity importances (random forest only); empty for gradient boosting."""
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")
        if not hasattr(self.model, "feature_importances_"):
            return pd.Series(dtype=float)
        return pd.Series(self.model.feature_importances_, index=self.feature_names_).sort_values(ascending=False)

    def save(self, filepath: str | Path) -> None:
        """Save the trained model to disk."""
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        state = {
            "model": self.model,
            "hyperparameters": {
                "kind": self.kind,
                "max_iter": self.max_iter,
                "max_depth": self.max_depth,
                "learning_rate": self.learning_rate,
                "n_estimators": self.n_estimators,
                "random_state": self.random_state,
            },
            "feature_names_": self.feature_names_,
            "categories_": self.categories_,
            "training_info": self.training_info,
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str | Path) -> "BaselineClassifier":
        """Load a trained model from disk."""
        state = joblib.load(filepath)

        model = cls(**state["hyperparameters"])
        model.model = state["model"]
        model.feature_names_ = state["feature_names_"]
        model.categories_ = state.get("categories_", {})
        model.training_info = state["training_info"]
        model._is_fitted = True

        logger.info(f"Model loaded from {filepath}")
        return model

"""
Baseline training and evaluation on the typed wide tables.

The training partition is split into fit/validation sets (stratified on the
target), the validation split is scored, and the evaluation partition is
scored with the same feature encoding.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import polars as pl
from sklearn.metrics import accuracy_score, log_loss, roc_auc_score
from sklearn.model_selection import train_test_split

from feature_warehouse.modeling.classifier import BaselineClassifier, prepare_features

logger = logging.getLogger(__name__)

SCORE_COLUMN = "score"


def train_validation_split(
    df: pl.DataFrame,
    target: str,
    validation_fraction: float = 0.2,
    random_state: int = 42,
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """
    Split a labelled table into fit and validation rows.

    Stratifies on the target when every class has at least two rows and both
    splits can hold one row of each class.

    Raises:
        ValueError: If the target column is missing or the fraction is out of (0, 1)
    """
    if target not in df.columns:
        raise ValueError(f"Target column '{target}' not found. Available columns: {df.columns}")
    if not 0 < validation_fraction < 1:
        raise ValueError(f"validation_fraction must be in (0, 1), got {validation_fraction}")

    y = df.get_column(target).to_numpy()
    classes, counts = np.unique(y, return_counts=True)
    n_val = math.ceil(validation_fraction * df.height)
    can_stratify = counts.min() >= 2 and len(classes) <= min(n_val, df.height - n_val)
    stratify = y if len(classes) > 1 and can_stratify else None

    fit_idx, val_idx = train_test_split(
        np.arange(df.height),
        test_size=validation_fraction,
        random_state=random_state,
        stratify=stratify,
    )
    return df[np.sort(fit_idx)], df[np.sort(val_idx)]


def evaluate_classifier(y_true: np.ndarray, scores: np.ndarray) -> dict[str, float]:
    """
    Standard binary metrics for positive-class scores.

    ROC AUC and Gini are NaN when y_true holds a single class.
    """
    y_true = np.asarray(y_true)
    scores = np.asarray(scores, dtype=float)

    if len(np.unique(y_true)) > 1:
        auc = float(roc_auc_score(y_true, scores))
    else:
        logger.warning("Only one class present in y_true, ROC AUC is undefined")
        auc = float("nan")

    return {
        "roc_auc": auc,
        "gini": 2 * auc - 1,
        "log_loss": float(log_loss(y_true, np.clip(scores, 1e-15, 1 - 1e-15), labels=[0, 1])),
        "accuracy": float(accuracy_score(y_true, (scores >= 0.5).astype(int))),
        "positive_rate": float(np.mean(y_true)),
    }


@dataclass
class TrainingResult:
    model: BaselineClassifier
    metrics: dict[str, float] = field(default_factory=dict)
    predictions: pl.DataFrame | None = None


def train_baseline(
    train_df: pl.DataFrame,
    test_df: pl.DataFrame | None,
    config: dict[str, Any],
) -> TrainingResult:
    """
    Fit the baseline model on the training partition and score the evaluation partition.

    Args:
        train_df: Typed wide table of the training partition (with target)
        test_df: Typed wide table of the evaluation partition, or None
        config: Pipeline config (identifier, target, model)

    Returns:
        TrainingResult with validation metrics and, when test_df is given,
        a frame of (identifier, score) for the evaluation partition
    """
    identifier = config["identifier"]
    target = config["target"]
    model_config = config.get("model", {})

    fit_df, val_df = train_validation_split(
        train_df,
        target,
        validation_fraction=model_config.get("validation_fraction", 0.2),
        random_state=model_config.get("random_state", 42),
    )

    exclude = [identifier, target]
    X_fit, levels = prepare_features(fit_df, exclude=exclude)
    X_val, _ = prepare_features(val_df, exclude=exclude, categories=levels)

    model = BaselineClassifier.from_config(model_config)
    model.fit(X_fit, fit_df.get_column(target).to_numpy(), categories=levels)

    metrics = evaluate_classifier(val_df.get_column(target).to_numpy(), model.predict_proba(X_val))
    logger.info(
        f"Validation: AUC={metrics['roc_auc']:.4f}, Gini={metrics['gini']:.4f}, "
        f"log loss={metrics['log_loss']:.4f} on {val_df.height:,} rows"
    )

    predictions = None
    if test_df is not None:
        X_test, _ = prepare_features(test_df, exclude=exclude, categories=levels)
        predictions = pl.DataFrame(
            {
                identifier: test_df.get_column(identifier),
                SCORE_COLUMN: model.predict_proba(X_test),
            }
        )
        logger.info(f"Scored {predictions.height:,} evaluation rows")

    return TrainingResult(model=model, metrics=metrics, predictions=predictions)

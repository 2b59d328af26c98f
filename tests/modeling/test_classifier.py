"""
Tests for the baseline classifier and feature preparation.
"""

import numpy as np
import polars as pl
import pytest

from feature_warehouse.modeling.classifier import BaselineClassifier, prepare_features


@pytest.fixture
def typed_frame():
    """Typed wide table with a learnable signal in amount_1A."""
    rng = np.random.default_rng(0)
    n = 200
    amount = rng.normal(size=n)
    target = (amount + rng.normal(scale=0.3, size=n) > 0).astype(int)
    return pl.DataFrame(
        {
            "case_id": np.arange(n),
            "target": target,
            "amount_1A": amount,
            "status_2M": pl.Series(["a", "b"] * (n // 2)).cast(pl.Categorical),
            "flag_3L": [True, False] * (n // 2),
        }
    )


class TestPrepareFeatures:
    def test_prepare_features_excludes_identifier_and_target(self, typed_frame):
        # Act
        X, levels = prepare_features(typed_frame, exclude=["case_id", "target"])

        # Assert
        assert list(X.columns) == ["amount_1A", "status_2M", "flag_3L"]
        assert levels == {"status_2M": ["a", "b"]}
        assert X["flag_3L"].tolist()[:2] == [1.0, 0.0]

    def test_prepare_features_unseen_category_becomes_nan(self):
        # Arrange
        df = pl.DataFrame({"status_2M": ["a", "z", None]})

        # Act
        X, _ = prepare_features(df, categories={"status_2M": ["a", "b"]})

        # Assert
        assert X["status_2M"].iloc[0] == 0.0
        assert np.isnan(X["status_2M"].iloc[1])
        assert np.isnan(X["status_2M"].iloc[2])

    def test_prepare_features_null_numeric_becomes_nan(self):
        # Act
        X, _ = prepare_features(pl.DataFrame({"amount_1A": [1.0, None]}))

        # Assert
        assert np.isnan(X["amount_1A"].iloc[1])


class TestBaselineClassifier:
    @pytest.mark.parametrize("kind", ["hist_gradient_boosting", "random_forest"])
    def test_fit_predict_proba_returns_probabilities(self, typed_frame, kind):
        # Arrange
        X, levels = prepare_features(typed_frame, exclude=["case_id", "target"])
        y = typed_frame["target"].to_numpy()
        model = BaselineClassifier(kind=kind, max_iter=50, n_estimators=20)

        # Act
        model.fit(X, y, categories=levels)
        scores = model.predict_proba(X)

        # Assert
        assert scores.shape == (len(X),)
        assert ((scores >= 0) & (scores <= 1)).all()
        assert model.training_info["n_features"] == 3

    def test_random_forest_handles_missing_values(self, typed_frame):
        # Arrange
        X, _ = prepare_features(typed_frame, exclude=["case_id", "target"])
        X.loc[:10, "amount_1A"] = np.nan
        model = BaselineClassifier(kind="random_forest", n_estimators=10)

        # Act
        model.fit(X, typed_frame["target"].to_numpy())

        # Assert
        assert len(model.feature_importances()) == 3

    def test_predict_before_fit_raises(self, typed_frame):
        X, _ = prepare_features(typed_frame, exclude=["case_id", "target"])
        with pytest.raises(ValueError, match="must be trained"):
            BaselineClassifier().predict_proba(X)

    def test_predict_missing_feature_raises(self, typed_frame):
        # Arrange
        X, _ = prepare_features(typed_frame, exclude=["case_id", "target"])
        model = BaselineClassifier(max_iter=10).fit(X, typed_frame["target"].to_numpy())

        # Act & Assert
        with pytest.raises(ValueError, match="Missing features"):
            model.predict_proba(X.drop(columns=["amount_1A"]))

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError, match="Unknown model kind"):
            BaselineClassifier(kind="svm")

    def test_save_and_load_round_trip_keeps_predictions(self, typed_frame, tmp_path):
        """A reloaded model should score identically and keep its category levels."""
        # Arrange
        X, levels = prepare_features(typed_frame, exclude=["case_id", "target"])
        model = BaselineClassifier(max_iter=20).fit(X, typed_frame["target"].to_numpy(), categories=levels)
        path = tmp_path / "models" / "baseline.joblib"

        # Act
        model.save(path)
        loaded = BaselineClassifier.load(path)

        # Assert
        np.testing.assert_allclose(loaded.predict_proba(X), model.predict_proba(X))
        assert loaded.categories_ == levels
        assert loaded.kind == "hist_gradient_boosting"

    def test_from_config_reads_hyperparameters(self):
        # Act
        model = BaselineClassifier.from_config({"kind": "random_forest", "n_estimators": 7, "max_depth": None})

        # Assert
        assert model.kind == "random_forest"
        assert model.n_estimators == 7
        assert model.max_depth is None

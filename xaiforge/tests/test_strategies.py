"""
Tests for the classification and regression training strategies.
"""
import pytest
import numpy as np
import pandas as pd

from xaiforge.core.exceptions import InvalidArgumentError, TrainingFailureError
from xaiforge.schemas.modeling import TaskType
from xaiforge.services.data_loader import inspect_csv, load_dataset
from xaiforge.services.strategies import (
    ClassificationStrategy,
    RegressionStrategy,
    TrainingOptions,
    get_strategy,
    parse_task_type,
)


@pytest.fixture
def load(write_csv):
    def _load(df, target, features, name="data.csv"):
        path = write_csv(name, df)
        headers, _ = inspect_csv(path)
        return load_dataset(path, headers, target, features)
    return _load


class TestStrategyRegistry:

    def test_lookup_by_task_type(self):
        assert isinstance(get_strategy(TaskType.CLASSIFICATION), ClassificationStrategy)
        assert isinstance(get_strategy("regression"), RegressionStrategy)

    def test_unknown_task_type(self):
        with pytest.raises(InvalidArgumentError):
            parse_task_type("CLUSTERING")


class TestClassificationStrategy:

    def test_train_reports_accuracy(self, load, sample_classification_df):
        dataset = load(sample_classification_df, "target", ["f1", "f2", "f3"])
        outcome = ClassificationStrategy().train(dataset, None, TrainingOptions(seed=42))

        assert outcome.algorithm == "LogisticRegression"
        assert outcome.evaluation.metric == "accuracy"
        assert outcome.evaluation.split == "holdout"
        assert 0.0 <= outcome.evaluation.value <= 1.0
        assert outcome.evaluation.value >= 0.7
        assert outcome.class_labels == [0, 1]
        assert outcome.train_rows + outcome.eval_rows == 50
        assert outcome.eval_rows == 10

    def test_deterministic_for_same_seed(self, load, sample_classification_df):
        dataset = load(sample_classification_df, "target", ["f1", "f2", "f3"])
        first = ClassificationStrategy().train(dataset, None, TrainingOptions(seed=5))
        second = ClassificationStrategy().train(dataset, None, TrainingOptions(seed=5))

        assert first.evaluation.value == second.evaluation.value
        frame = dataset.features.head(5)
        np.testing.assert_array_equal(
            first.predictor.predict_proba(frame), second.predictor.predict_proba(frame)
        )

    def test_small_dataset_is_scored_on_training_rows(self, load):
        df = pd.DataFrame({"x": [0.0, 1.0, 2.0, 3.0, 4.0, 5.0], "y": ["a", "a", "a", "b", "b", "b"]})
        dataset = load(df, "y", ["x"])
        outcome = ClassificationStrategy().train(dataset, None, TrainingOptions(min_rows_for_holdout=10))
        assert outcome.evaluation.split == "training"
        assert outcome.eval_rows == 6
        assert outcome.class_labels == ["a", "b"]

    def test_single_class_fails(self, load):
        df = pd.DataFrame({"x": [1.0, 2.0, 3.0, 4.0], "y": ["a", "a", "a", "a"]})
        dataset = load(df, "y", ["x"])
        with pytest.raises(TrainingFailureError):
            ClassificationStrategy().train(dataset, None, TrainingOptions())

    def test_categorical_features(self, load, sample_mixed_df):
        dataset = load(sample_mixed_df, "label", ["age", "color"])
        outcome = ClassificationStrategy().train(dataset, None, TrainingOptions())
        assert sorted(outcome.class_labels) == ["no", "yes"]
        unseen = pd.DataFrame({"age": [30.0], "color": ["purple"]})
        assert outcome.predictor.predict_proba(unseen).shape == (1, 2)

    def test_user_hyperparameters_override_defaults(self, load, sample_classification_df):
        dataset = load(sample_classification_df, "target", ["f1", "f2", "f3"])
        outcome = ClassificationStrategy().train(dataset, {"C": 0.5}, TrainingOptions(max_iter=200))
        assert outcome.hyperparameters["C"] == 0.5
        assert outcome.hyperparameters["max_iter"] == 200

    def test_unknown_hyperparameter(self):
        with pytest.raises(InvalidArgumentError, match="n_estimators"):
            ClassificationStrategy().validate_hyperparameters({"n_estimators": 10})


class TestDatasetValidation:

    def test_single_row_rejected(self, load):
        dataset = load(pd.DataFrame({"x": [1.0], "y": [0]}), "y", ["x"])
        with pytest.raises(InvalidArgumentError):
            ClassificationStrategy().validate_dataset(dataset)

    def test_empty_after_dropping_missing(self, load):
        dataset = load(pd.DataFrame({"x": [None, None], "y": [0, 1]}), "y", ["x"])
        assert len(dataset) == 0
        with pytest.raises(InvalidArgumentError):
            RegressionStrategy().validate_dataset(dataset)

    def test_regression_needs_numeric_target(self, load, sample_mixed_df):
        dataset = load(sample_mixed_df, "label", ["age"])
        with pytest.raises(InvalidArgumentError, match="numeric target"):
            RegressionStrategy().validate_dataset(dataset)

    def test_valid_dataset_passes(self, load, sample_linear_df):
        dataset = load(sample_linear_df, "y", ["x1", "x2"])
        RegressionStrategy().validate_dataset(dataset)
        ClassificationStrategy().validate_dataset(dataset)


class TestRegressionStrategy:

    def test_perfectly_linear_data(self, load, sample_linear_df):
        dataset = load(sample_linear_df, "y", ["x1", "x2"])
        outcome = RegressionStrategy().train(dataset, None, TrainingOptions())

        assert outcome.algorithm == "LinearRegression"
        assert outcome.evaluation.metric == "r2"
        assert outcome.evaluation.defined
        assert outcome.evaluation.value == pytest.approx(1.0, abs=1e-6)
        assert outcome.evaluation.extras["rmse"] == pytest.approx(0.0, abs=1e-6)
        assert outcome.class_labels is None

    def test_alpha_selects_ridge(self, load, sample_linear_df):
        dataset = load(sample_linear_df, "y", ["x1", "x2"])
        outcome = RegressionStrategy().train(dataset, {"alpha": 0.1}, TrainingOptions())
        assert outcome.algorithm == "Ridge"
        assert outcome.hyperparameters["alpha"] == 0.1

    def test_constant_target_metric_is_undefined(self, load, sample_constant_target_df):
        dataset = load(sample_constant_target_df, "y", ["x1", "x2"])
        outcome = RegressionStrategy().train(dataset, None, TrainingOptions())

        assert outcome.evaluation.value is None
        assert outcome.evaluation.defined is False
        assert "zero variance" in outcome.evaluation.detail

    def test_linear_regression_rejects_alpha_free_unknown_keys(self):
        with pytest.raises(InvalidArgumentError):
            RegressionStrategy().validate_hyperparameters({"max_depth": 3})

"""
Tests for the perturbation-based explanation engine.
"""
import numpy as np
import pandas as pd
import pytest

from xaiforge.config.settings import Settings, XaiSettings
from xaiforge.core.exceptions import InvalidArgumentError, NotFoundError
from xaiforge.services.data_loader import CATEGORICAL, NUMERIC, FeatureProfile
from xaiforge.services.explanation import (
    NEUTRAL,
    ExplanationEngine,
    FeatureContribution,
    build_summary,
    get_thread_pool,
    neighbour_design,
    rank_contributions,
    sample_neighbours,
)
from xaiforge.services.prediction import PredictionResult
from xaiforge.schemas.modeling import TaskType
from xaiforge.tests.conftest import OTHER_OWNER, OWNER

CLASSIFICATION_INPUT = {"f1": "0.8", "f2": "-0.2", "f3": "1.1"}


@pytest.fixture
def profiles():
    return [
        FeatureProfile(name="x", kind=NUMERIC, mean=0.0, std=1.0, minimum=-2.0, maximum=2.0),
        FeatureProfile(name="c", kind=CATEGORICAL, categories=["a", "b"], frequencies=[0.75, 0.25]),
        FeatureProfile(name="k", kind=NUMERIC, mean=3.0, std=0.0, minimum=3.0, maximum=3.0),
    ]


class TestSampling:

    def test_first_row_is_instance(self, profiles):
        instance = {"x": 0.5, "c": "b", "k": 3.0}
        neighbours = sample_neighbours(profiles, instance, 200, np.random.default_rng(0))

        assert list(neighbours.columns) == ["x", "c", "k"]
        assert len(neighbours) == 200
        assert neighbours.iloc[0].to_dict() == instance

    def test_values_stay_in_widened_range(self, profiles):
        instance = {"x": 5.0, "c": "a", "k": 3.0}
        neighbours = sample_neighbours(profiles, instance, 500, np.random.default_rng(1))

        assert neighbours["x"].min() >= -2.0
        assert neighbours["x"].max() <= 5.0
        assert set(neighbours["c"]) <= {"a", "b"}
        assert (neighbours["k"] == 3.0).all()

    def test_same_seed_same_neighbours(self, profiles):
        instance = {"x": 0.0, "c": "a", "k": 3.0}
        first = sample_neighbours(profiles, instance, 100, np.random.default_rng(9))
        second = sample_neighbours(profiles, instance, 100, np.random.default_rng(9))
        pd.testing.assert_frame_equal(first, second)

    def test_design_skips_constant_features(self, profiles):
        instance = {"x": 0.0, "c": "a", "k": 3.0}
        neighbours = pd.DataFrame({"x": [0.0, 2.0], "c": ["a", "b"], "k": [3.0, 3.0]})
        design, weights = neighbour_design(profiles, instance, neighbours, kernel_width=1.0)

        assert design.shape == (2, 2)
        np.testing.assert_allclose(design[:, 0], [0.0, 2.0 / 4.0])
        np.testing.assert_allclose(design[:, 1], [1.0, 0.0])
        assert weights[0] == pytest.approx(1.0)
        # squared distance 2² + 1 = 5
        assert weights[1] == pytest.approx(np.sqrt(np.exp(-5.0)))


class TestRanking:

    def test_rank_by_magnitude_then_feature_order(self):
        ranked = rank_contributions(["a", "b", "c", "d"], {"a": 0.1, "b": -0.5, "c": 0.1, "d": 0.0})
        assert [c.feature for c in ranked] == ["b", "a", "c", "d"]
        assert [c.direction for c in ranked] == ["negative", "positive", "positive", "neutral"]

    def test_summary_text(self):
        prediction = PredictionResult(task_type=TaskType.CLASSIFICATION, label="yes",
                                      probabilities={"yes": 0.8, "no": 0.2}, confidence=0.8)
        contributions = [
            FeatureContribution("age", 0.42, "positive"),
            FeatureContribution("income", -0.1, "negative"),
            FeatureContribution("zip", 0.0, NEUTRAL),
        ]
        summary = build_summary(prediction, contributions, limit=10)
        assert summary == (
            "Predicted 'yes' with confidence 0.80. The model's prediction is primarily influenced by: "
            "age (positive impact: 0.420), income (negative impact: -0.100)."
        )

    def test_summary_respects_limit(self):
        prediction = PredictionResult(task_type=TaskType.REGRESSION, value=1.5)
        contributions = [FeatureContribution(f"f{i}", 1.0 / (i + 1), "positive") for i in range(5)]
        summary = build_summary(prediction, contributions, limit=2)
        assert "f0" in summary and "f1" in summary
        assert "f2" not in summary


class TestExplain:

    def test_three_feature_classification(self, services, classification_model):
        explanation = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=7)

        assert set(explanation.attributions) == {"f1", "f2", "f3"}
        assert len(explanation.contributions) == 3
        magnitudes = [abs(c.attribution) for c in explanation.contributions]
        assert magnitudes == sorted(magnitudes, reverse=True)
        assert explanation.prediction.label in (0, 1)
        assert explanation.explained_quantity == f"probability of class '{explanation.prediction.label}'"
        assert explanation.num_samples == services.settings.xai.num_samples
        assert explanation.kernel_width == pytest.approx(0.75 * np.sqrt(3))
        assert explanation.surrogate_score is not None
        assert "primarily influenced by" in explanation.summary

    def test_strong_feature_outweighs_weak_one(self, services, classification_model):
        explanation = services.explanation.explain(
            classification_model.id, OWNER, {"f1": "0.0", "f2": "0.0", "f3": "0.0"}, seed=1
        )
        assert abs(explanation.attributions["f1"]) > abs(explanation.attributions["f3"])
        predicted_one = explanation.prediction.label == 1
        assert (explanation.attributions["f1"] > 0) == predicted_one

    def test_pinned_seed_is_deterministic(self, services, classification_model):
        first = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=123)
        second = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=123)
        assert first.attributions == second.attributions
        assert first.summary == second.summary

    def test_default_seed_is_deterministic(self, services, classification_model):
        first = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT)
        second = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT)
        assert first.seed == services.settings.xai.default_seed
        assert first.attributions == second.attributions

    def test_different_seeds_differ(self, services, classification_model):
        first = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=1)
        second = services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=2)
        assert first.attributions != second.attributions

    def test_regression_signs_follow_coefficients(self, services, regression_model):
        explanation = services.explanation.explain(
            regression_model.id, OWNER, {"x1": "0", "x2": "5"}, seed=3, num_samples=1000
        )
        assert explanation.attributions["x1"] > 0
        assert explanation.attributions["x2"] < 0
        assert explanation.surrogate_score == pytest.approx(1.0, abs=1e-2)
        assert explanation.explained_quantity == "predicted value of 'y'"

    def test_constant_feature_is_neutral(self, services, write_csv):
        np.random.seed(5)
        x = np.random.uniform(0, 10, 30)
        df = pd.DataFrame({"x": x, "k": np.full(30, 2.0), "y": 2.0 * x + 1.0})
        dataset = services.datasets.register(OWNER, write_csv("k.csv", df))
        model = services.orchestrator.train_model(dataset.id, OWNER, "m", "REGRESSION", "y", ["x", "k"])

        explanation = services.explanation.explain(model.id, OWNER, {"x": "4", "k": "2"})
        assert explanation.attributions["k"] == 0.0
        assert explanation.held_constant == ["k"]
        neutral = [c for c in explanation.contributions if c.feature == "k"][0]
        assert neutral.direction == NEUTRAL
        assert explanation.attributions["x"] > 0

    def test_constant_model_output(self, services, write_csv, sample_constant_target_df):
        dataset = services.datasets.register(OWNER, write_csv("flat.csv", sample_constant_target_df))
        model = services.orchestrator.train_model(dataset.id, OWNER, "flat", "REGRESSION", "y", ["x1", "x2"])

        explanation = services.explanation.explain(model.id, OWNER, {"x1": "0", "x2": "5"})
        assert explanation.attributions == {"x1": 0.0, "x2": 0.0}
        assert explanation.surrogate_score is None
        assert "No feature had a measurable influence" in explanation.summary

    def test_categorical_features(self, services, write_csv, sample_mixed_df):
        dataset = services.datasets.register(OWNER, write_csv("mixed.csv", sample_mixed_df))
        model = services.orchestrator.train_model(
            dataset.id, OWNER, "m", "CLASSIFICATION", "label", ["age", "color"]
        )
        explanation = services.explanation.explain(model.id, OWNER, {"age": "45", "color": "red"}, seed=4)
        assert set(explanation.attributions) == {"age", "color"}
        assert explanation.attributions["color"] != 0.0


class TestChunkedScoring:

    @staticmethod
    def engine(services, chunk_size, max_workers):
        xai = XaiSettings(chunk_size=chunk_size, max_workers=max_workers)
        return ExplanationEngine(services.prediction, settings=Settings(xai=xai))

    def test_small_chunks_match_single_chunk(self, services, classification_model):
        chunked = self.engine(services, chunk_size=7, max_workers=3)
        whole = self.engine(services, chunk_size=5000, max_workers=1)

        first = chunked.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=5, num_samples=500)
        second = whole.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=5, num_samples=500)

        assert set(first.attributions) == set(second.attributions)
        for name, value in second.attributions.items():
            assert first.attributions[name] == pytest.approx(value, rel=1e-9, abs=1e-12)
        assert first.surrogate_score == pytest.approx(second.surrogate_score, rel=1e-9)
        assert [c.feature for c in first.contributions] == [c.feature for c in second.contributions]

    def test_regression_chunks_keep_row_order(self, services, regression_model):
        chunked = self.engine(services, chunk_size=3, max_workers=4)
        whole = self.engine(services, chunk_size=5000, max_workers=1)
        inputs = {"x1": "1", "x2": "2"}

        first = chunked.explain(regression_model.id, OWNER, inputs, seed=8, num_samples=101)
        second = whole.explain(regression_model.id, OWNER, inputs, seed=8, num_samples=101)

        assert first.surrogate_intercept == pytest.approx(second.surrogate_intercept, rel=1e-9)
        for name, value in second.attributions.items():
            assert first.attributions[name] == pytest.approx(value, rel=1e-9, abs=1e-12)

    def test_pool_per_worker_count(self):
        assert get_thread_pool(2) is get_thread_pool(2)
        assert get_thread_pool(2) is not get_thread_pool(3)
        assert get_thread_pool(3)._max_workers == 3


class TestExplainValidation:

    @pytest.mark.parametrize("seed", [-1, -5])
    def test_negative_seed(self, services, classification_model, seed):
        with pytest.raises(InvalidArgumentError, match="seed"):
            services.explanation.explain(classification_model.id, OWNER, CLASSIFICATION_INPUT, seed=seed)

    @pytest.mark.parametrize("num_samples", [1, 99, 5001])
    def test_sample_count_bounds(self, services, classification_model, num_samples):
        with pytest.raises(InvalidArgumentError):
            services.explanation.explain(
                classification_model.id, OWNER, CLASSIFICATION_INPUT, num_samples=num_samples
            )

    @pytest.mark.parametrize("width", [0.0, -1.0, float("nan")])
    def test_kernel_width_must_be_positive(self, services, classification_model, width):
        with pytest.raises(InvalidArgumentError):
            services.explanation.explain(
                classification_model.id, OWNER, CLASSIFICATION_INPUT, kernel_width=width
            )

    def test_input_keys_must_match(self, services, classification_model):
        with pytest.raises(InvalidArgumentError):
            services.explanation.explain(classification_model.id, OWNER, {"f1": "1"})

    def test_model_of_other_owner(self, services, classification_model):
        with pytest.raises(NotFoundError):
            services.explanation.explain(classification_model.id, OTHER_OWNER, CLASSIFICATION_INPUT)

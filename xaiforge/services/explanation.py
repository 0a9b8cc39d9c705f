"""
Local explanations by perturbation.

Around the instance being explained, neighbours are drawn from the training
distribution of each feature, scored by the model, weighted by proximity and
approximated with a weighted ridge regression. The surrogate's coefficients
on range-scaled feature deltas are the attributions.
"""
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import Ridge

from xaiforge.config.settings import Settings, settings as default_settings
from xaiforge.core.exceptions import InvalidArgumentError
from xaiforge.services.data_loader import FeatureProfile
from xaiforge.services.model_store import TrainedModel
from xaiforge.services.prediction import (
    LoadedModel,
    PredictionResult,
    PredictionService,
    coerce_input,
    to_frame,
)

logger = logging.getLogger(__name__)

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"

# Thread executors for neighbour predictions, one per pool size
_thread_pools: Dict[int, ThreadPoolExecutor] = {}
_thread_pool_lock = threading.Lock()


def get_thread_pool(max_workers: int) -> ThreadPoolExecutor:
    """Get or create the thread pool with ``max_workers`` threads used to score neighbour chunks."""
    pool = _thread_pools.get(max_workers)
    if pool is None:
        with _thread_pool_lock:
            pool = _thread_pools.get(max_workers)
            if pool is None:
                pool = ThreadPoolExecutor(
                    max_workers=max_workers,
                    thread_name_prefix=f"explanation-{max_workers}"
                )
                _thread_pools[max_workers] = pool
    return pool


def shutdown_thread_pool() -> None:
    with _thread_pool_lock:
        for pool in _thread_pools.values():
            pool.shutdown(wait=True)
        _thread_pools.clear()


@dataclass(frozen=True)
class FeatureContribution:
    feature: str
    attribution: float
    direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {"feature": self.feature, "attribution": self.attribution, "direction": self.direction}


@dataclass
class Explanation:
    """A prediction together with its local feature attributions."""
    model_id: str
    prediction: PredictionResult
    attributions: Dict[str, float]
    contributions: List[FeatureContribution]
    summary: str
    explained_quantity: str
    seed: int
    num_samples: int
    kernel_width: float
    surrogate_intercept: float
    surrogate_score: Optional[float] = None
    held_constant: List[str] = field(default_factory=list)


def direction_of(attribution: float) -> str:
    if attribution > 0:
        return POSITIVE
    if attribution < 0:
        return NEGATIVE
    return NEUTRAL


def sample_neighbours(profiles: List[FeatureProfile],
                      instance: Mapping[str, Any],
                      num_samples: int,
                      rng: np.random.Generator) -> pd.DataFrame:
    """
    Draw ``num_samples`` rows around ``instance``; row 0 is the instance itself.

    Numeric features get Gaussian noise with the training standard deviation,
    clipped to the training range widened to include the original value.
    Categorical features are drawn from their training frequencies. Features
    without variance keep their original value.
    """
    columns = {}
    for profile in profiles:
        original = instance[profile.name]
        if not profile.has_variance:
            values = np.full(num_samples, original, dtype=float if profile.is_numeric else object)
        elif profile.is_numeric:
            low = min(profile.minimum, original)
            high = max(profile.maximum, original)
            values = np.clip(original + rng.normal(0.0, profile.std, num_samples), low, high)
        else:
            p = np.asarray(profile.frequencies, dtype=float)
            values = rng.choice(np.asarray(profile.categories, dtype=object), size=num_samples, p=p / p.sum())
        values[0] = original
        columns[profile.name] = values
    return pd.DataFrame(columns, columns=[p.name for p in profiles])


def neighbour_design(profiles: List[FeatureProfile],
                     instance: Mapping[str, Any],
                     neighbours: pd.DataFrame,
                     kernel_width: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Surrogate design matrix and proximity weights.

    Only features with variance get a column. Numeric columns hold
    ``(z - x) / range``, categorical columns ``1`` when the neighbour keeps the
    original category.
    """
    n = len(neighbours)
    design = []
    squared_distance = np.zeros(n)
    for profile in profiles:
        if not profile.has_variance:
            continue
        original = instance[profile.name]
        column = neighbours[profile.name]
        if profile.is_numeric:
            delta = column.to_numpy(dtype=float) - original
            squared_distance += (delta / profile.std) ** 2
            design.append(delta / profile.value_range)
        else:
            same = (column.astype(str) == str(original)).to_numpy(dtype=float)
            squared_distance += 1.0 - same
            design.append(same)

    weights = np.sqrt(np.exp(-squared_distance / kernel_width ** 2))
    matrix = np.column_stack(design) if design else np.empty((n, 0))
    return matrix, weights


def rank_contributions(feature_names: List[str], attributions: Dict[str, float]) -> List[FeatureContribution]:
    """Order by descending absolute attribution, ties by the model's feature order."""
    order = sorted(range(len(feature_names)), key=lambda i: (-abs(attributions[feature_names[i]]), i))
    return [
        FeatureContribution(
            feature=feature_names[i],
            attribution=attributions[feature_names[i]],
            direction=direction_of(attributions[feature_names[i]]),
        )
        for i in order
    ]


def build_summary(prediction: PredictionResult,
                  contributions: List[FeatureContribution],
                  limit: int) -> str:
    if prediction.label is not None:
        head = f"Predicted '{prediction.label}' with confidence {prediction.confidence:.2f}."
    else:
        head = f"Predicted value {prediction.value:.4f}."

    influential = [c for c in contributions if c.direction != NEUTRAL][:limit]
    if not influential:
        return f"{head} No feature had a measurable influence on this prediction."

    parts = [f"{c.feature} ({c.direction} impact: {c.attribution:.3f})" for c in influential]
    return f"{head} The model's prediction is primarily influenced by: " + ", ".join(parts) + "."


class ExplanationEngine:
    """Explains single predictions of stored models."""

    def __init__(self, prediction_service: PredictionService, settings: Optional[Settings] = None):
        self.prediction_service = prediction_service
        self.settings = settings or default_settings

    def _resolve_num_samples(self, num_samples: Optional[int]) -> int:
        xai = self.settings.xai
        n = xai.num_samples if num_samples is None else int(num_samples)
        if n < xai.min_samples or n > xai.max_samples:
            raise InvalidArgumentError(
                f"num_samples must be between {xai.min_samples} and {xai.max_samples}"
            )
        return n

    def _resolve_kernel_width(self, kernel_width: Optional[float], n_features: int) -> float:
        if kernel_width is not None:
            if not math.isfinite(kernel_width) or kernel_width <= 0:
                raise InvalidArgumentError("kernel_width must be a positive number")
            return float(kernel_width)
        if self.settings.xai.kernel_width > 0:
            return float(self.settings.xai.kernel_width)
        return 0.75 * math.sqrt(n_features)

    def _score_neighbours(self, loaded: LoadedModel, neighbours: pd.DataFrame) -> np.ndarray:
        chunk_size = self.settings.xai.chunk_size
        frame = to_frame(loaded.model, neighbours.to_dict(orient="records"))
        chunks = [frame.iloc[start:start + chunk_size] for start in range(0, len(frame), chunk_size)]
        pool = get_thread_pool(self.settings.xai.max_workers)
        # map keeps chunk order
        outputs = list(pool.map(lambda chunk: self.prediction_service.predict_frame(loaded, chunk), chunks))
        return np.concatenate(outputs, axis=0)

    @staticmethod
    def _explained_quantity(model: TrainedModel, prediction: PredictionResult) -> Tuple[str, Optional[int]]:
        if prediction.label is None:
            return f"predicted value of '{model.target}'", None
        labels = [str(label) for label in model.class_labels]
        return f"probability of class '{prediction.label}'", labels.index(str(prediction.label))

    def explain(self,
                model_id: str,
                owner_id: str,
                raw_input: Mapping[str, Any],
                seed: Optional[int] = None,
                num_samples: Optional[int] = None,
                kernel_width: Optional[float] = None) -> Explanation:
        """
        Explain one prediction.

        Args:
            model_id: Model to explain
            owner_id: Caller; must own the model
            raw_input: Feature name to raw value
            seed: Random seed; identical seeds give identical attributions
            num_samples: Number of neighbours including the instance
            kernel_width: Width of the proximity kernel

        Raises:
            NotFoundError: model missing or not owned by the caller
            InvalidArgumentError: bad input or sampling controls
        """
        n = self._resolve_num_samples(num_samples)
        seed = self.settings.xai.default_seed if seed is None else int(seed)
        if seed < 0:
            raise InvalidArgumentError("seed must be a non-negative integer")

        loaded = self.prediction_service.load(model_id, owner_id)
        model = loaded.model
        width = self._resolve_kernel_width(kernel_width, len(model.feature_names))

        prediction = self.prediction_service.predict_loaded(loaded, raw_input)
        instance = coerce_input(model, raw_input)
        quantity, class_index = self._explained_quantity(model, prediction)

        rng = np.random.default_rng(seed)
        neighbours = sample_neighbours(model.feature_profiles, instance, n, rng)
        outputs = self._score_neighbours(loaded, neighbours)
        target = outputs[:, class_index] if class_index is not None else outputs

        design, weights = neighbour_design(model.feature_profiles, instance, neighbours, width)
        varying = [p.name for p in model.feature_profiles if p.has_variance]
        held = [p.name for p in model.feature_profiles if not p.has_variance]
        attributions = {name: 0.0 for name in model.feature_names}

        if design.shape[1] == 0 or np.ptp(target) <= 1e-12:
            logger.info(f"Surrogate target or design is constant for model {model.id}, attributions are zero")
            intercept = float(target[0])
            score = None
        else:
            surrogate = Ridge(alpha=self.settings.xai.ridge_alpha)
            surrogate.fit(design, target, sample_weight=weights)
            for name, coef in zip(varying, surrogate.coef_):
                attributions[name] = float(coef)
            intercept = float(surrogate.intercept_)
            score = float(surrogate.score(design, target, sample_weight=weights))

        contributions = rank_contributions(model.feature_names, attributions)
        summary = build_summary(prediction, contributions, self.settings.xai.max_features_in_summary)

        logger.info(
            f"Explained model {model.id}: seed={seed}, samples={n}, width={width:.3f}, "
            f"fidelity={score}, held constant={held}"
        )
        return Explanation(
            model_id=model.id,
            prediction=prediction,
            attributions=attributions,
            contributions=contributions,
            summary=summary,
            explained_quantity=quantity,
            seed=seed,
            num_samples=n,
            kernel_width=width,
            surrogate_intercept=intercept,
            surrogate_score=score,
            held_constant=held,
        )

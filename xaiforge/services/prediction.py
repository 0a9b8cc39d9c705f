"""
Single-instance prediction against a stored model.

Raw inputs arrive as strings keyed by feature name. They are checked against
the model's feature list, coerced with the training-time feature profiles and
fed to the deserialized predictor as a one-row frame.
"""
import logging
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from xaiforge.config.settings import settings
from xaiforge.core.exceptions import InvalidArgumentError
from xaiforge.schemas.modeling import TaskType
from xaiforge.services.model_store import ModelStore, TrainedModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionResult:
    """Outcome of one prediction. Classification fills label/probabilities/confidence, regression fills value."""
    task_type: TaskType
    label: Any = None
    probabilities: Optional[Dict[str, float]] = None
    confidence: Optional[float] = None
    value: Optional[float] = None


@dataclass(frozen=True)
class LoadedModel:
    """Read-only handle pairing model metadata with its predictor."""
    model: TrainedModel
    predictor: Any

    @property
    def is_classifier(self) -> bool:
        return self.model.task_type == TaskType.CLASSIFICATION


class PredictorCache:
    """Bounded LRU of deserialized predictors keyed by artifact reference."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._items: "OrderedDict[str, Any]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            predictor = self._items.get(key)
            if predictor is not None:
                self._items.move_to_end(key)
            return predictor

    def put(self, key: str, predictor: Any) -> None:
        if self.max_size <= 0:
            return
        with self._lock:
            self._items[key] = predictor
            self._items.move_to_end(key)
            while len(self._items) > self.max_size:
                evicted, _ = self._items.popitem(last=False)
                logger.debug(f"Evicted predictor {evicted} from cache")

    def __len__(self) -> int:
        return len(self._items)


def _native(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


def coerce_input(model: TrainedModel, raw_input: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate the key set and convert each raw value to its training type.

    Raises:
        InvalidArgumentError: missing or extra features, or a value that does
            not fit a numeric feature
    """
    if raw_input is None:
        raise InvalidArgumentError("Prediction input cannot be empty")

    expected = set(model.feature_names)
    provided = set(raw_input.keys())
    missing = [f for f in model.feature_names if f not in provided]
    extra = sorted(provided - expected)
    if missing or extra:
        parts = []
        if missing:
            parts.append(f"missing features: {missing}")
        if extra:
            parts.append(f"unexpected features: {extra}")
        raise InvalidArgumentError("Input does not match the model's features (" + "; ".join(parts) + ")")

    coerced = {}
    for name in model.feature_names:
        raw = raw_input[name]
        if raw is None:
            raise InvalidArgumentError(f"Feature '{name}' has no value")
        if model.profile(name).is_numeric:
            if isinstance(raw, bool):
                raise InvalidArgumentError(f"Feature '{name}' expects a numeric value")
            try:
                value = float(str(raw).strip())
            except ValueError:
                raise InvalidArgumentError(f"Feature '{name}' expects a numeric value")
            if not math.isfinite(value):
                raise InvalidArgumentError(f"Feature '{name}' must be a finite number")
            coerced[name] = value
        else:
            coerced[name] = str(raw).strip()
    return coerced


def to_frame(model: TrainedModel, rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Rows of coerced values as a frame in the model's feature order."""
    frame = pd.DataFrame(rows, columns=model.feature_names)
    for profile in model.feature_profiles:
        if profile.is_numeric:
            frame[profile.name] = frame[profile.name].astype(float)
        else:
            frame[profile.name] = frame[profile.name].astype(str)
    return frame


class PredictionService:
    """Predictions from stored models, with a small in-memory predictor cache."""

    def __init__(self, model_store: ModelStore, cache_size: Optional[int] = None):
        self.model_store = model_store
        if cache_size is None:
            cache_size = settings.ml.predictor_cache_size
        self._cache = PredictorCache(cache_size)

    def load(self, model_id: str, owner_id: str) -> LoadedModel:
        """Retrieve a model and its predictor (cached by artifact reference)."""
        model = self.model_store.retrieve(model_id, owner_id)
        predictor = self._cache.get(model.artifact_ref)
        if predictor is None:
            predictor = self.model_store.load_predictor(model)
            self._cache.put(model.artifact_ref, predictor)
            logger.debug(f"Loaded predictor for model {model.id}")
        return LoadedModel(model=model, predictor=predictor)

    def predict_frame(self, loaded: LoadedModel, frame: pd.DataFrame) -> np.ndarray:
        """
        Predict many coerced rows at once.

        Returns:
            Probability matrix with columns in ``class_labels`` order for
            classifiers, a vector of estimates for regressors.
        """
        if loaded.is_classifier:
            return np.asarray(loaded.predictor.predict_proba(frame), dtype=float)
        return np.asarray(loaded.predictor.predict(frame), dtype=float)

    def predict_loaded(self, loaded: LoadedModel, raw_input: Mapping[str, Any]) -> PredictionResult:
        model = loaded.model
        frame = to_frame(model, [coerce_input(model, raw_input)])
        output = self.predict_frame(loaded, frame)

        if loaded.is_classifier:
            row = output[0]
            labels = list(model.class_labels or loaded.predictor.classes_)
            best = int(np.argmax(row))
            probabilities = {str(label): float(p) for label, p in zip(labels, row)}
            return PredictionResult(
                task_type=model.task_type,
                label=_native(labels[best]),
                probabilities=probabilities,
                confidence=float(row[best]),
            )

        return PredictionResult(task_type=model.task_type, value=float(output[0]))

    def predict(self, model_id: str, owner_id: str, raw_input: Mapping[str, Any]) -> PredictionResult:
        """
        Predict one instance.

        Raises:
            NotFoundError: model missing or not owned by the caller
            InvalidArgumentError: input keys or values do not fit the model
        """
        loaded = self.load(model_id, owner_id)
        result = self.predict_loaded(loaded, raw_input)
        logger.info(f"Prediction with model {loaded.model.id}: {result.label if result.label is not None else result.value}")
        return result

"""
Training strategies, one per task type.

Strategies are stateless: the dataset, hyperparameters and training options
all arrive as arguments, so two calls with the same inputs and seed produce
the same predictor and the same evaluation.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.linear_model import LinearRegression, LogisticRegression, Ridge
from sklearn.metrics import accuracy_score, mean_absolute_error, mean_squared_error, r2_score
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from xaiforge.core.exceptions import InvalidArgumentError, TrainingFailureError
from xaiforge.schemas.modeling import TaskType
from xaiforge.services.data_loader import NUMERIC, TabularDataset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingOptions:
    """Everything a strategy needs besides the data and the hyperparameters."""
    seed: int = 42
    test_size: float = 0.2
    min_rows_for_holdout: int = 10
    max_iter: int = 1000


@dataclass
class EvaluationResult:
    """
    Evaluation of a trained predictor.

    ``value`` is ``None`` and ``defined`` is ``False`` when the metric has no
    meaning for the evaluation rows (R² of a constant target). ``detail``
    then says why.
    """
    metric: str
    value: Optional[float]
    defined: bool = True
    split: str = "holdout"
    detail: Optional[str] = None
    extras: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "value": self.value,
            "defined": self.defined,
            "split": self.split,
            "detail": self.detail,
            "extras": dict(self.extras),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationResult":
        return cls(
            metric=data["metric"],
            value=data.get("value"),
            defined=data.get("defined", data.get("value") is not None),
            split=data.get("split", "holdout"),
            detail=data.get("detail"),
            extras=dict(data.get("extras", {})),
        )


@dataclass
class TrainingOutcome:
    """What a strategy hands back to the orchestrator."""
    predictor: Pipeline
    evaluation: EvaluationResult
    algorithm: str
    hyperparameters: Dict[str, Any]
    train_rows: int
    eval_rows: int
    class_labels: Optional[List[Any]] = None
    training_time: float = 0.0


def build_pipeline(dataset: TabularDataset, estimator) -> Pipeline:
    """Scale numeric features, one-hot encode categorical ones, then fit ``estimator``."""
    transformers = []
    if dataset.numeric_features:
        transformers.append(("numeric", StandardScaler(), dataset.numeric_features))
    if dataset.categorical_features:
        transformers.append((
            "categorical",
            OneHotEncoder(handle_unknown="ignore", sparse_output=False),
            dataset.categorical_features,
        ))
    preprocessor = ColumnTransformer(transformers, remainder="drop")
    return Pipeline([("preprocess", preprocessor), ("estimator", estimator)])


def _to_native(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


class TrainingStrategy(ABC):
    """Interface shared by the task-specific strategies."""
    task_type: TaskType
    metric_name: str

    @abstractmethod
    def estimator_class(self, hyperparameters: Dict[str, Any]) -> type:
        """Estimator used for the given hyperparameters."""

    @abstractmethod
    def default_hyperparameters(self, options: TrainingOptions) -> Dict[str, Any]:
        """Defaults merged under user hyperparameters."""

    @abstractmethod
    def evaluate(self, y_true: pd.Series, y_pred: np.ndarray, split: str) -> EvaluationResult:
        """Score predictions on the evaluation rows."""

    def validate_dataset(self, dataset: TabularDataset) -> None:
        """Reject datasets this strategy cannot learn from."""
        if dataset is None or len(dataset) == 0:
            raise InvalidArgumentError("The dataset has no usable rows")
        if len(dataset) == 1:
            raise InvalidArgumentError("Training requires at least 2 rows without missing values")
        if dataset.target is None or dataset.target_kind is None:
            raise InvalidArgumentError("The dataset does not describe an output column")
        if not dataset.profiles:
            raise InvalidArgumentError("The dataset must have at least one feature")
        logger.debug(f"Dataset validation passed for {self.task_type.value}")

    def validate_hyperparameters(self, hyperparameters: Optional[Dict[str, Any]]) -> None:
        if not hyperparameters:
            return
        accepted = set(self.estimator_class(hyperparameters)().get_params().keys())
        unknown = sorted(set(hyperparameters) - accepted)
        if unknown:
            raise InvalidArgumentError(
                f"Unsupported hyperparameters for {self.task_type.value.lower()}: {unknown}"
            )

    def _resolve_hyperparameters(self, hyperparameters: Optional[Dict[str, Any]],
                                 options: TrainingOptions) -> Dict[str, Any]:
        estimator_cls = self.estimator_class(hyperparameters or {})
        accepted = set(estimator_cls().get_params().keys())
        params = {k: v for k, v in self.default_hyperparameters(options).items() if k in accepted}
        params.update(hyperparameters or {})
        return params

    def _stratify(self, y: pd.Series) -> Optional[pd.Series]:
        return None

    def _split(self, dataset: TabularDataset,
               options: TrainingOptions) -> Tuple[pd.DataFrame, pd.DataFrame, pd.Series, pd.Series, str]:
        X, y = dataset.features, dataset.target
        if len(X) < options.min_rows_for_holdout:
            logger.info(f"{len(X)} rows is below the hold-out minimum, evaluating on training rows")
            return X, X, y, y, "training"

        try:
            X_train, X_eval, y_train, y_eval = train_test_split(
                X, y,
                test_size=options.test_size,
                random_state=options.seed,
                stratify=self._stratify(y),
            )
        except ValueError as e:
            if "stratif" not in str(e) and "least populated class" not in str(e):
                raise
            X_train, X_eval, y_train, y_eval = train_test_split(
                X, y, test_size=options.test_size, random_state=options.seed
            )
            logger.warning("Disabled stratification due to insufficient samples per class")
        return X_train, X_eval, y_train, y_eval, "holdout"

    def _check_trainable(self, y_train: pd.Series) -> None:
        pass

    def train(self, dataset: TabularDataset,
              hyperparameters: Optional[Dict[str, Any]] = None,
              options: Optional[TrainingOptions] = None) -> TrainingOutcome:
        """
        Fit a predictor and evaluate it.

        Raises:
            TrainingFailureError: the estimator could not be fitted or evaluated
        """
        options = options or TrainingOptions()
        start_time = time.time()
        params = self._resolve_hyperparameters(hyperparameters, options)
        estimator_cls = self.estimator_class(hyperparameters or {})

        logger.info(
            f"Starting {self.task_type.value.lower()} training with {estimator_cls.__name__}: "
            f"{len(dataset)} rows, {len(dataset.profiles)} features"
        )

        X_train, X_eval, y_train, y_eval, split = self._split(dataset, options)
        self._check_trainable(y_train)

        try:
            predictor = build_pipeline(dataset, estimator_cls(**params))
            predictor.fit(X_train, y_train)
            y_pred = predictor.predict(X_eval)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.error(f"{estimator_cls.__name__} training failed: {e}")
            raise TrainingFailureError(f"Training failed: {e}")

        evaluation = self.evaluate(y_eval, y_pred, split)
        training_time = time.time() - start_time
        logger.info(
            f"Completed {estimator_cls.__name__} - {evaluation.metric}: {evaluation.value}, "
            f"Time: {training_time:.2f}s"
        )

        classes = getattr(predictor, "classes_", None)
        return TrainingOutcome(
            predictor=predictor,
            evaluation=evaluation,
            algorithm=estimator_cls.__name__,
            hyperparameters=params,
            train_rows=len(X_train),
            eval_rows=len(X_eval),
            class_labels=[_to_native(c) for c in classes] if classes is not None else None,
            training_time=training_time,
        )


class ClassificationStrategy(TrainingStrategy):
    """Logistic regression over a discrete label; scored by accuracy."""
    task_type = TaskType.CLASSIFICATION
    metric_name = "accuracy"

    def estimator_class(self, hyperparameters: Dict[str, Any]) -> type:
        return LogisticRegression

    def default_hyperparameters(self, options: TrainingOptions) -> Dict[str, Any]:
        return {"max_iter": options.max_iter, "random_state": options.seed}

    def _stratify(self, y: pd.Series) -> Optional[pd.Series]:
        counts = y.value_counts()
        return y if len(counts) > 1 and counts.min() >= 2 else None

    def _check_trainable(self, y_train: pd.Series) -> None:
        if y_train.nunique() < 2:
            raise TrainingFailureError(
                "The target column has a single class; classification needs at least two"
            )

    def evaluate(self, y_true: pd.Series, y_pred: np.ndarray, split: str) -> EvaluationResult:
        return EvaluationResult(
            metric=self.metric_name,
            value=float(accuracy_score(y_true, y_pred)),
            split=split,
        )


class RegressionStrategy(TrainingStrategy):
    """Least squares over a numeric target; scored by R²."""
    task_type = TaskType.REGRESSION
    metric_name = "r2"

    def estimator_class(self, hyperparameters: Dict[str, Any]) -> type:
        return Ridge if "alpha" in hyperparameters else LinearRegression

    def default_hyperparameters(self, options: TrainingOptions) -> Dict[str, Any]:
        return {"random_state": options.seed}

    def validate_dataset(self, dataset: TabularDataset) -> None:
        super().validate_dataset(dataset)
        if dataset.target_kind != NUMERIC:
            raise InvalidArgumentError("Regression requires a numeric target column")

    def evaluate(self, y_true: pd.Series, y_pred: np.ndarray, split: str) -> EvaluationResult:
        y_values = np.asarray(y_true, dtype=float)
        mse = float(mean_squared_error(y_values, y_pred))
        extras = {
            "mse": mse,
            "rmse": float(np.sqrt(mse)),
            "mae": float(mean_absolute_error(y_values, y_pred)),
        }

        if len(y_values) < 2 or float(np.var(y_values)) == 0.0:
            logger.warning("R² is undefined: evaluation targets have zero variance")
            return EvaluationResult(
                metric=self.metric_name,
                value=None,
                defined=False,
                split=split,
                detail="R² is undefined because the evaluation targets have zero variance",
                extras=extras,
            )

        return EvaluationResult(
            metric=self.metric_name,
            value=float(r2_score(y_values, y_pred)),
            split=split,
            extras=extras,
        )


STRATEGIES: Dict[TaskType, TrainingStrategy] = {
    TaskType.CLASSIFICATION: ClassificationStrategy(),
    TaskType.REGRESSION: RegressionStrategy(),
}


def parse_task_type(task_type: Union[str, TaskType]) -> TaskType:
    if isinstance(task_type, TaskType):
        return task_type
    try:
        return TaskType(str(task_type).strip().upper())
    except ValueError:
        raise InvalidArgumentError(
            f"Unknown task type: {task_type}. Expected one of {[t.value for t in TaskType]}"
        )


def get_strategy(task_type: Union[str, TaskType]) -> TrainingStrategy:
    """Return the strategy registered for ``task_type``."""
    return STRATEGIES[parse_task_type(task_type)]

"""
Training orchestration.

Validates a training request against the registered dataset, enforces the
one-model-per-dataset rule, runs the task's strategy and persists the result.
Nothing is written before the strategy has returned successfully.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from xaiforge.config.settings import Settings, settings as default_settings
from xaiforge.core.exceptions import (
    ConflictError,
    DatasetParsingError,
    InvalidArgumentError,
    TrainingFailureError,
    XaiForgeError,
)
from xaiforge.services.data_loader import load_dataset
from xaiforge.services.datasets import Dataset, DatasetRegistry
from xaiforge.services.model_store import CONFLICT_MESSAGE, ModelStore, TrainedModel
from xaiforge.services.strategies import TrainingOptions, get_strategy, parse_task_type

logger = logging.getLogger(__name__)


def validate_selection(dataset: Dataset, target: str, features: Sequence[str]) -> None:
    """Check the target and feature selection against the dataset headers."""
    if not features:
        raise InvalidArgumentError("At least one feature column must be specified")

    duplicates = sorted({f for f in features if list(features).count(f) > 1})
    if duplicates:
        raise InvalidArgumentError(f"Duplicate feature columns: {duplicates}")

    if not target or target not in dataset.headers:
        raise InvalidArgumentError(f"Target column '{target}' is not a column of the dataset")

    missing = [f for f in features if f not in dataset.headers]
    if missing:
        raise InvalidArgumentError(f"Feature columns not found in dataset: {missing}")

    if target in features:
        raise InvalidArgumentError("The target column cannot also be a feature")


class TrainingOrchestrator:
    """Runs training requests end to end."""

    def __init__(self,
                 datasets: DatasetRegistry,
                 model_store: ModelStore,
                 settings: Optional[Settings] = None):
        self.datasets = datasets
        self.model_store = model_store
        self.settings = settings or default_settings

    def _options(self) -> TrainingOptions:
        ml = self.settings.ml
        return TrainingOptions(
            seed=ml.random_seed,
            test_size=ml.test_size,
            min_rows_for_holdout=ml.min_rows_for_holdout,
            max_iter=ml.max_iter,
        )

    def train_model(self,
                    dataset_id: str,
                    owner_id: str,
                    name: str,
                    task_type: str,
                    target: str,
                    features: List[str],
                    hyperparameters: Optional[Dict[str, Any]] = None) -> TrainedModel:
        """
        Train and persist a model for a dataset.

        Raises:
            NotFoundError: dataset missing or owned by someone else
            InvalidArgumentError: the request does not fit the dataset
            ConflictError: the dataset already has a model
            TrainingFailureError: the strategy failed
        """
        dataset = self.datasets.get(dataset_id, owner_id)

        if not name or not name.strip():
            raise InvalidArgumentError("Model name cannot be empty")
        task = parse_task_type(task_type)
        features = list(features or [])
        validate_selection(dataset, target, features)

        strategy = get_strategy(task)
        strategy.validate_hyperparameters(hyperparameters)

        if self.model_store.find_by_dataset(dataset.id) is not None:
            raise ConflictError(CONFLICT_MESSAGE)

        try:
            tabular = load_dataset(dataset.file_path, dataset.headers, target, features)
        except DatasetParsingError as e:
            raise InvalidArgumentError(e.detail)

        strategy.validate_dataset(tabular)

        try:
            outcome = strategy.train(tabular, hyperparameters, self._options())
        except XaiForgeError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure training on dataset {dataset.id}")
            raise TrainingFailureError(f"Training failed: {e}")

        model = TrainedModel(
            name=name.strip(),
            task_type=task,
            target=target,
            feature_names=features,
            dataset_id=dataset.id,
            owner_id=str(owner_id),
            algorithm=outcome.algorithm,
            evaluation=outcome.evaluation,
            feature_profiles=tabular.profiles,
            hyperparameters=outcome.hyperparameters,
            class_labels=outcome.class_labels,
            train_rows=outcome.train_rows,
            eval_rows=outcome.eval_rows,
        )
        model = self.model_store.store(model, outcome.predictor)
        logger.info(
            f"Trained model {model.id} ({task.value}, {outcome.algorithm}) on dataset {dataset.id}: "
            f"{model.evaluation.metric}={model.evaluation.value}"
        )
        return model

    def list_models(self, owner_id: str) -> List[TrainedModel]:
        return self.model_store.list_models(owner_id)

    def get_model(self, model_id: str, owner_id: str) -> TrainedModel:
        return self.model_store.retrieve(model_id, owner_id)

    def delete_model(self, model_id: str, owner_id: str) -> None:
        self.model_store.delete(model_id, owner_id)

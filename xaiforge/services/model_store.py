"""
Persistent model store.

One metadata record per model in ``<storage_dir>/models/registry.json`` and
one joblib artifact per model next to it. A dataset has at most one model;
the check and the insert happen under the same lock so a concurrent second
writer gets a ConflictError and the first model stays intact.
"""
import io
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import joblib

from xaiforge.config.settings import settings
from xaiforge.core.exceptions import ConflictError, NotFoundError
from xaiforge.schemas.modeling import TaskType
from xaiforge.services.data_loader import FeatureProfile
from xaiforge.services.strategies import EvaluationResult
from xaiforge.utils.registry_file import RegistryFile

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "A model already exists for this dataset. Please delete the existing model first"


@dataclass
class TrainedModel:
    """Metadata of a trained predictor. The predictor itself lives in the artifact."""
    name: str
    task_type: TaskType
    target: str
    feature_names: List[str]
    dataset_id: str
    owner_id: str
    algorithm: str
    evaluation: EvaluationResult
    feature_profiles: List[FeatureProfile] = field(default_factory=list)
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    class_labels: Optional[List[Any]] = None
    train_rows: int = 0
    eval_rows: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    artifact_ref: str = ""
    trained_at: datetime = field(default_factory=datetime.utcnow)

    def profile(self, feature: str) -> FeatureProfile:
        for p in self.feature_profiles:
            if p.name == feature:
                return p
        raise KeyError(feature)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "task_type": self.task_type.value,
            "target": self.target,
            "feature_names": list(self.feature_names),
            "dataset_id": self.dataset_id,
            "owner_id": self.owner_id,
            "algorithm": self.algorithm,
            "evaluation": self.evaluation.to_dict(),
            "feature_profiles": [p.to_dict() for p in self.feature_profiles],
            "hyperparameters": dict(self.hyperparameters),
            "class_labels": list(self.class_labels) if self.class_labels is not None else None,
            "train_rows": self.train_rows,
            "eval_rows": self.eval_rows,
            "artifact_ref": self.artifact_ref,
            "trained_at": self.trained_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainedModel":
        return cls(
            id=data["id"],
            name=data["name"],
            task_type=TaskType(data["task_type"]),
            target=data["target"],
            feature_names=list(data["feature_names"]),
            dataset_id=data["dataset_id"],
            owner_id=data["owner_id"],
            algorithm=data.get("algorithm", ""),
            evaluation=EvaluationResult.from_dict(data["evaluation"]),
            feature_profiles=[FeatureProfile.from_dict(p) for p in data.get("feature_profiles", [])],
            hyperparameters=dict(data.get("hyperparameters") or {}),
            class_labels=data.get("class_labels"),
            train_rows=int(data.get("train_rows", 0)),
            eval_rows=int(data.get("eval_rows", 0)),
            artifact_ref=data.get("artifact_ref", ""),
            trained_at=datetime.fromisoformat(data["trained_at"]),
        )


def serialize_predictor(predictor: Any) -> bytes:
    """Serialize a fitted predictor to opaque bytes."""
    buffer = io.BytesIO()
    joblib.dump(predictor, buffer)
    return buffer.getvalue()


def deserialize_predictor(payload: bytes) -> Any:
    """Inverse of :func:`serialize_predictor`."""
    return joblib.load(io.BytesIO(payload))


class ModelStore:
    """Trained model metadata and artifacts on the local filesystem."""

    def __init__(self, storage_dir: Optional[Union[str, Path]] = None):
        """
        Args:
            storage_dir: Root storage directory; models go to ``<storage_dir>/models``
        """
        self.model_dir = Path(storage_dir or settings.storage_dir) / "models"
        self.model_dir.mkdir(parents=True, exist_ok=True)
        self._registry = RegistryFile(self.model_dir / "registry.json")
        self._lock = threading.RLock()

    def _artifact_path(self, artifact_ref: str) -> Path:
        return self.model_dir / artifact_ref

    def store(self, model: TrainedModel, predictor: Any) -> TrainedModel:
        """
        Persist a model and its predictor.

        Raises:
            ConflictError: the dataset already has a model
        """
        payload = serialize_predictor(predictor)
        model = replace(model, artifact_ref=f"{model.id}.joblib")
        artifact_path = self._artifact_path(model.artifact_ref)

        with self._lock:
            registry = self._registry.load()
            if any(r.get("dataset_id") == model.dataset_id for r in registry.values()):
                logger.warning(f"Rejected second model for dataset {model.dataset_id}")
                raise ConflictError(CONFLICT_MESSAGE)

            artifact_path.write_bytes(payload)
            registry[model.id] = model.to_dict()
            try:
                self._registry.save(registry)
            except Exception:
                artifact_path.unlink(missing_ok=True)
                logger.error(f"Failed to record model {model.id}, artifact removed")
                raise

        logger.info(f"Model {model.id} stored ({len(payload)} bytes) for dataset {model.dataset_id}")
        return model

    def retrieve(self, model_id: str, owner_id: str) -> TrainedModel:
        record = self._registry.load().get(str(model_id))
        if record is None or record.get("owner_id") != str(owner_id):
            logger.info(f"Model {model_id} not found for owner {owner_id}")
            raise NotFoundError("Model not found")
        return TrainedModel.from_dict(record)

    def load_predictor(self, model: TrainedModel) -> Any:
        """Read and deserialize the artifact of ``model``."""
        artifact_path = self._artifact_path(model.artifact_ref)
        try:
            payload = artifact_path.read_bytes()
        except FileNotFoundError:
            logger.error(f"Artifact missing for model {model.id}: {artifact_path}")
            raise NotFoundError("The model artifact is no longer available")
        return deserialize_predictor(payload)

    def find_by_dataset(self, dataset_id: str) -> Optional[TrainedModel]:
        for record in self._registry.load().values():
            if record.get("dataset_id") == str(dataset_id):
                return TrainedModel.from_dict(record)
        return None

    def list_models(self, owner_id: str) -> List[TrainedModel]:
        models = [
            TrainedModel.from_dict(r) for r in self._registry.load().values()
            if r.get("owner_id") == str(owner_id)
        ]
        models.sort(key=lambda m: m.trained_at, reverse=True)
        return models

    def _remove(self, model_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            registry = self._registry.load()
            record = registry.pop(model_id, None)
            if record is None:
                return None
            self._registry.save(registry)

        artifact_path = self._artifact_path(record.get("artifact_ref", ""))
        if record.get("artifact_ref") and artifact_path.exists():
            artifact_path.unlink()
        else:
            logger.warning(f"Artifact for model {model_id} was already gone")
        return record

    def delete(self, model_id: str, owner_id: str) -> None:
        """Delete a model and its artifact."""
        model = self.retrieve(model_id, owner_id)
        if self._remove(model.id) is None:
            raise NotFoundError("Model not found")
        logger.info(f"Model {model.id} deleted")

    def delete_for_dataset(self, dataset_id: str) -> Optional[str]:
        """Delete the model trained on ``dataset_id`` if there is one. Returns its id."""
        model = self.find_by_dataset(dataset_id)
        if model is None:
            return None
        self._remove(model.id)
        logger.info(f"Model {model.id} deleted together with dataset {dataset_id}")
        return model.id

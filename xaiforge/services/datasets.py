"""
Dataset registry.

Keeps one metadata record per uploaded CSV. Datasets are read-only once
registered; deleting one also deletes the model trained on it.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from xaiforge.config.settings import settings
from xaiforge.core.exceptions import NotFoundError
from xaiforge.services.data_loader import inspect_csv
from xaiforge.utils.registry_file import RegistryFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dataset:
    """An uploaded tabular file owned by one user."""
    id: str
    owner_id: str
    file_path: str
    file_name: str
    headers: List[str] = field(default_factory=list)
    row_count: int = 0
    uploaded_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "headers": list(self.headers),
            "row_count": self.row_count,
            "uploaded_at": self.uploaded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dataset":
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            file_path=data["file_path"],
            file_name=data.get("file_name", Path(data["file_path"]).name),
            headers=list(data.get("headers", [])),
            row_count=int(data.get("row_count", 0)),
            uploaded_at=datetime.fromisoformat(data["uploaded_at"]),
        )


class DatasetRegistry:
    """JSON-backed registry of uploaded datasets."""

    def __init__(self, storage_dir: Optional[Union[str, Path]] = None, model_store=None):
        """
        Args:
            storage_dir: Directory holding ``datasets.json``
            model_store: ModelStore used to cascade model deletion
        """
        self.storage_dir = Path(storage_dir or settings.storage_dir)
        self._registry = RegistryFile(self.storage_dir / "datasets.json")
        self._lock = threading.RLock()
        self.model_store = model_store

    def register(self, owner_id: str, file_path: Union[str, Path], file_name: Optional[str] = None) -> Dataset:
        """Parse headers and row count of a stored CSV and record it."""
        file_path = Path(file_path)
        headers, row_count = inspect_csv(file_path)

        dataset = Dataset(
            id=str(uuid.uuid4()),
            owner_id=str(owner_id),
            file_path=str(file_path),
            file_name=file_name or file_path.name,
            headers=headers,
            row_count=row_count,
        )
        with self._lock:
            registry = self._registry.load()
            registry[dataset.id] = dataset.to_dict()
            self._registry.save(registry)

        logger.info(f"Registered dataset {dataset.id}: {row_count} rows, {len(headers)} columns")
        return dataset

    def get(self, dataset_id: str, owner_id: str) -> Dataset:
        """Return the dataset if it exists and belongs to ``owner_id``."""
        record = self._registry.load().get(str(dataset_id))
        if record is None or record.get("owner_id") != str(owner_id):
            logger.info(f"Dataset {dataset_id} not found for owner {owner_id}")
            raise NotFoundError("Dataset not found")
        return Dataset.from_dict(record)

    def list_datasets(self, owner_id: str) -> List[Dataset]:
        records = self._registry.load().values()
        datasets = [Dataset.from_dict(r) for r in records if r.get("owner_id") == str(owner_id)]
        datasets.sort(key=lambda d: d.uploaded_at, reverse=True)
        return datasets

    def delete(self, dataset_id: str, owner_id: str) -> None:
        """Delete a dataset, its file, and the model trained on it."""
        dataset = self.get(dataset_id, owner_id)

        if self.model_store is not None:
            self.model_store.delete_for_dataset(dataset.id)

        with self._lock:
            registry = self._registry.load()
            registry.pop(dataset.id, None)
            self._registry.save(registry)

        file_path = Path(dataset.file_path)
        try:
            file_path.unlink()
        except FileNotFoundError:
            logger.warning(f"Dataset file not found during deletion: {file_path}")

        logger.info(f"Dataset {dataset.id} deleted")

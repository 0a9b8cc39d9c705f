"""
Service wiring for the HTTP layer.

The routers depend on :func:`get_services`; tests replace it through
``app.dependency_overrides`` to point the services at temporary storage.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from xaiforge.config.settings import Settings, get_settings
from xaiforge.services.datasets import DatasetRegistry
from xaiforge.services.explanation import ExplanationEngine
from xaiforge.services.model_store import ModelStore
from xaiforge.services.prediction import PredictionService
from xaiforge.services.training import TrainingOrchestrator


@dataclass
class ServiceContainer:
    settings: Settings
    model_store: ModelStore
    datasets: DatasetRegistry
    orchestrator: TrainingOrchestrator
    prediction: PredictionService
    explanation: ExplanationEngine


def build_services(settings: Optional[Settings] = None) -> ServiceContainer:
    """Create the full service graph for one storage directory."""
    settings = settings or get_settings()
    model_store = ModelStore(settings.storage_dir)
    datasets = DatasetRegistry(settings.storage_dir, model_store=model_store)
    prediction = PredictionService(model_store, cache_size=settings.ml.predictor_cache_size)
    return ServiceContainer(
        settings=settings,
        model_store=model_store,
        datasets=datasets,
        orchestrator=TrainingOrchestrator(datasets, model_store, settings=settings),
        prediction=prediction,
        explanation=ExplanationEngine(prediction, settings=settings),
    )


@lru_cache()
def get_services() -> ServiceContainer:
    return build_services()

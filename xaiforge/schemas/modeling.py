from typing import List, Optional, Dict, Any, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum
from datetime import datetime


class BaseSchema(BaseModel):
    """Base schema class with common configuration."""

    # model_id / model_name are domain fields, not pydantic internals
    model_config = ConfigDict(protected_namespaces=())


class TaskType(str, Enum):
    """Supported learning tasks."""
    CLASSIFICATION = "CLASSIFICATION"
    REGRESSION = "REGRESSION"


class TrainRequest(BaseSchema):
    """Request body for training a model on an uploaded dataset."""
    dataset_id: str = Field(..., description="Dataset to train on")
    name: str = Field(..., description="Human readable model name")
    task_type: str = Field(..., description="CLASSIFICATION or REGRESSION")
    target: str = Field(..., description="Target column name")
    features: List[str] = Field(..., description="Ordered feature column names")
    hyperparameters: Optional[Dict[str, Union[int, float, str, bool, None]]] = Field(
        None,
        description="Estimator hyperparameters. Merged over the defaults"
    )

    @field_validator('target')
    @classmethod
    def strip_target(cls, v):
        return v.strip()


class EvaluationInfo(BaseSchema):
    """Evaluation recorded when the model was trained."""
    metric: str = Field(..., description="accuracy for classification, r2 for regression")
    value: Optional[float] = Field(None, description="Metric value, null when undefined")
    defined: bool = Field(..., description="Whether the metric is defined for the evaluation rows")
    split: str = Field(..., description="holdout or training")
    detail: Optional[str] = Field(None, description="Why the metric is undefined")
    extras: Dict[str, float] = Field(default_factory=dict, description="Additional diagnostics")


class FeatureProfileInfo(BaseSchema):
    """Training statistics of one feature."""
    name: str
    kind: str = Field(..., description="numeric or categorical")
    mean: Optional[float] = None
    std: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    categories: List[str] = Field(default_factory=list)


class ModelResponse(BaseSchema):
    """A trained model's metadata."""
    id: str = Field(..., description="Unique model identifier")
    name: str = Field(..., description="Model name")
    task_type: TaskType = Field(..., description="Learning task")
    dataset_id: str = Field(..., description="Dataset the model was trained on")
    target: str = Field(..., description="Target column name")
    feature_names: List[str] = Field(..., description="Ordered feature column names")
    algorithm: str = Field(..., description="Estimator class name")
    hyperparameters: Dict[str, Any] = Field(default_factory=dict)
    evaluation: EvaluationInfo = Field(..., description="Evaluation metric")
    class_labels: Optional[List[Any]] = Field(None, description="Label domain (classification only)")
    train_rows: int = Field(..., ge=0, description="Rows used for fitting")
    eval_rows: int = Field(..., ge=0, description="Rows used for evaluation")
    feature_profiles: List[FeatureProfileInfo] = Field(default_factory=list)
    trained_at: datetime = Field(..., description="Training timestamp")


class ModelListResponse(BaseSchema):
    """Response for listing models."""
    models: List[ModelResponse] = Field(..., description="Models owned by the caller")
    total: int = Field(..., ge=0)


class PredictionRequest(BaseSchema):
    """Raw feature values keyed by feature name."""
    inputs: Dict[str, Any] = Field(..., description="Feature name to raw value")


class PredictionResponse(BaseSchema):
    """Response from a single prediction."""
    model_id: str = Field(..., description="ID of the model used")
    task_type: TaskType = Field(..., description="Learning task")
    label: Optional[Any] = Field(None, description="Predicted label (classification only)")
    probabilities: Optional[Dict[str, float]] = Field(
        None,
        description="Probability of every known label (classification only)"
    )
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0, description="Probability of the predicted label")
    value: Optional[float] = Field(None, description="Predicted value (regression only)")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Prediction timestamp")

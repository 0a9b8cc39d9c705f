from typing import Any, Dict, List, Optional

from pydantic import Field

from xaiforge.schemas.modeling import BaseSchema, PredictionResponse


class ExplanationRequest(BaseSchema):
    """Instance to explain plus optional sampling controls."""
    inputs: Dict[str, Any] = Field(..., description="Feature name to raw value")
    seed: Optional[int] = Field(None, ge=0, description="Random seed; the configured default when omitted")
    num_samples: Optional[int] = Field(None, description="Number of perturbed neighbours")
    kernel_width: Optional[float] = Field(None, gt=0.0, description="Proximity kernel width")


class FeatureContribution(BaseSchema):
    feature: str = Field(..., description="Feature name")
    attribution: float = Field(..., description="Signed local importance")
    direction: str = Field(..., description="positive, negative or neutral")


class ExplanationResponse(BaseSchema):
    """Local explanation of one prediction."""
    model_id: str
    prediction: PredictionResponse = Field(..., description="Prediction being explained")
    attributions: Dict[str, float] = Field(..., description="Feature name to signed attribution")
    contributions: List[FeatureContribution] = Field(
        ...,
        description="Features ranked by absolute attribution"
    )
    summary: str = Field(..., description="Human readable explanation")
    explained_quantity: str = Field(..., description="Which model output the surrogate approximates")
    seed: int
    num_samples: int
    kernel_width: float
    surrogate_intercept: float
    surrogate_score: Optional[float] = Field(None, description="Weighted R² of the surrogate fit")
    held_constant: List[str] = Field(
        default_factory=list,
        description="Features without training variance; never perturbed and always neutral"
    )

from fastapi import APIRouter, Depends, Path, Response, status
from starlette.concurrency import run_in_threadpool
import logging

from xaiforge.core.auth import User, verify_token
from xaiforge.core.dependencies import ServiceContainer, get_services
from xaiforge.schemas.explanation import (
    ExplanationRequest,
    ExplanationResponse,
    FeatureContribution,
)
from xaiforge.schemas.modeling import (
    EvaluationInfo,
    FeatureProfileInfo,
    ModelListResponse,
    ModelResponse,
    PredictionRequest,
    PredictionResponse,
    TrainRequest,
)
from xaiforge.services.model_store import TrainedModel
from xaiforge.services.prediction import PredictionResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/models", tags=["Models"])


def to_response(model: TrainedModel) -> ModelResponse:
    return ModelResponse(
        id=model.id,
        name=model.name,
        task_type=model.task_type,
        dataset_id=model.dataset_id,
        target=model.target,
        feature_names=model.feature_names,
        algorithm=model.algorithm,
        hyperparameters=model.hyperparameters,
        evaluation=EvaluationInfo(**model.evaluation.to_dict()),
        class_labels=model.class_labels,
        train_rows=model.train_rows,
        eval_rows=model.eval_rows,
        feature_profiles=[
            FeatureProfileInfo(
                name=p.name,
                kind=p.kind,
                mean=p.mean,
                std=p.std,
                minimum=p.minimum,
                maximum=p.maximum,
                categories=p.categories,
            )
            for p in model.feature_profiles
        ],
        trained_at=model.trained_at,
    )


def to_prediction_response(model_id: str, result: PredictionResult) -> PredictionResponse:
    return PredictionResponse(
        model_id=model_id,
        task_type=result.task_type,
        label=result.label,
        probabilities=result.probabilities,
        confidence=result.confidence,
        value=result.value,
    )


@router.post(
    "/train",
    response_model=ModelResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Train a model on a dataset",
    description="Train a classification or regression model; a dataset can have one model at a time"
)
async def train_model(
    request: TrainRequest,
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    """
    Train a new model.

    Raises:
        NotFoundError: 404 if the dataset does not exist
        InvalidArgumentError: 422 if the request does not fit the dataset
        ConflictError: 409 if the dataset already has a model
        TrainingFailureError: 500 if the estimator failed
    """
    logger.info(f"Training request from {user.user_id} on dataset {request.dataset_id} ({request.task_type})")
    model = await run_in_threadpool(
        services.orchestrator.train_model,
        request.dataset_id,
        user.user_id,
        request.name,
        request.task_type,
        request.target,
        request.features,
        request.hyperparameters,
    )
    return to_response(model)


@router.get(
    "",
    response_model=ModelListResponse,
    summary="List trained models"
)
async def list_models(
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    models = await run_in_threadpool(services.orchestrator.list_models, user.user_id)
    return ModelListResponse(models=[to_response(m) for m in models], total=len(models))


@router.get(
    "/{model_id}",
    response_model=ModelResponse,
    summary="Get information about a specific model"
)
async def get_model(
    model_id: str = Path(..., description="ID of the model"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    model = await run_in_threadpool(services.orchestrator.get_model, model_id, user.user_id)
    return to_response(model)


@router.delete(
    "/{model_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a trained model"
)
async def delete_model(
    model_id: str = Path(..., description="ID of the model to delete"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    await run_in_threadpool(services.orchestrator.delete_model, model_id, user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{model_id}/predict",
    response_model=PredictionResponse,
    summary="Predict one instance"
)
async def predict(
    request: PredictionRequest,
    model_id: str = Path(..., description="ID of the trained model to use for prediction"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    result = await run_in_threadpool(services.prediction.predict, model_id, user.user_id, request.inputs)
    return to_prediction_response(model_id, result)


@router.post(
    "/{model_id}/explain",
    response_model=ExplanationResponse,
    summary="Explain one prediction",
    description="Perturbation-based local explanation of a single prediction"
)
async def explain(
    request: ExplanationRequest,
    model_id: str = Path(..., description="ID of the trained model to explain"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    explanation = await run_in_threadpool(
        services.explanation.explain,
        model_id,
        user.user_id,
        request.inputs,
        request.seed,
        request.num_samples,
        request.kernel_width,
    )
    return ExplanationResponse(
        model_id=explanation.model_id,
        prediction=to_prediction_response(explanation.model_id, explanation.prediction),
        attributions=explanation.attributions,
        contributions=[FeatureContribution(**c.to_dict()) for c in explanation.contributions],
        summary=explanation.summary,
        explained_quantity=explanation.explained_quantity,
        seed=explanation.seed,
        num_samples=explanation.num_samples,
        kernel_width=explanation.kernel_width,
        surrogate_intercept=explanation.surrogate_intercept,
        surrogate_score=explanation.surrogate_score,
        held_constant=explanation.held_constant,
    )

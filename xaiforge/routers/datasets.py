from fastapi import APIRouter, Depends, File, Path, Response, UploadFile, status
from starlette.concurrency import run_in_threadpool
import logging

from xaiforge.core.auth import User, verify_token
from xaiforge.core.dependencies import ServiceContainer, get_services
from xaiforge.core.exceptions import XaiForgeError
from xaiforge.schemas.dataset import DatasetListResponse, DatasetResponse
from xaiforge.services.datasets import Dataset
from xaiforge.utils.file_io import cleanup_file, save_upload

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/datasets", tags=["Datasets"])


def to_response(dataset: Dataset) -> DatasetResponse:
    return DatasetResponse(
        id=dataset.id,
        file_name=dataset.file_name,
        headers=dataset.headers,
        row_count=dataset.row_count,
        uploaded_at=dataset.uploaded_at,
    )


@router.post(
    "",
    response_model=DatasetResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a CSV dataset",
    description="Store an uploaded CSV file and record its header row and row count"
)
async def upload_dataset(
    file: UploadFile = File(..., description="CSV file with a header row"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    """
    Upload and register a dataset.

    Raises:
        HTTPException: 413/415 for oversized or unsupported files
        DatasetParsingError: 422 if the CSV is empty, headerless or ragged
    """
    path = await save_upload(file, services.settings)
    try:
        dataset = await run_in_threadpool(services.datasets.register, user.user_id, path, file.filename)
    except XaiForgeError:
        cleanup_file(path)
        raise
    logger.info(f"User {user.user_id} uploaded dataset {dataset.id}")
    return to_response(dataset)


@router.get(
    "",
    response_model=DatasetListResponse,
    summary="List datasets",
    description="List the caller's datasets, newest first"
)
async def list_datasets(
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    datasets = await run_in_threadpool(services.datasets.list_datasets, user.user_id)
    return DatasetListResponse(datasets=[to_response(d) for d in datasets], total=len(datasets))


@router.get(
    "/{dataset_id}",
    response_model=DatasetResponse,
    summary="Get a dataset"
)
async def get_dataset(
    dataset_id: str = Path(..., description="ID of the dataset"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    dataset = await run_in_threadpool(services.datasets.get, dataset_id, user.user_id)
    return to_response(dataset)


@router.delete(
    "/{dataset_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a dataset",
    description="Delete a dataset, its file and the model trained on it"
)
async def delete_dataset(
    dataset_id: str = Path(..., description="ID of the dataset to delete"),
    user: User = Depends(verify_token),
    services: ServiceContainer = Depends(get_services),
):
    await run_in_threadpool(services.datasets.delete, dataset_id, user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

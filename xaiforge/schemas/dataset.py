from datetime import datetime
from typing import List

from pydantic import Field

from xaiforge.schemas.modeling import BaseSchema


class DatasetResponse(BaseSchema):
    """An uploaded dataset."""
    id: str = Field(..., description="Unique dataset identifier")
    file_name: str = Field(..., description="Original file name")
    headers: List[str] = Field(..., description="Ordered column names")
    row_count: int = Field(..., ge=0, description="Number of data rows")
    uploaded_at: datetime = Field(..., description="Upload timestamp")


class DatasetListResponse(BaseSchema):
    datasets: List[DatasetResponse]
    total: int = Field(..., ge=0)

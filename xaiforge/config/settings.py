"""
Application configuration.

Settings are read from environment variables and an optional ``.env`` file.
Nested groups use ``__`` as delimiter, e.g. ``XAI__NUM_SAMPLES=800``.
"""
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class MLSettings(BaseModel):
    """Training and prediction settings."""
    random_seed: int = Field(default=42, description="Seed used for splits and estimators")
    test_size: float = Field(default=0.2, gt=0.0, lt=1.0, description="Hold-out fraction for evaluation")
    min_rows_for_holdout: int = Field(
        default=10,
        ge=4,
        description="Below this row count the metric is computed on the training rows"
    )
    max_iter: int = Field(default=1000, ge=1, description="Iteration cap for LogisticRegression")
    predictor_cache_size: int = Field(default=16, ge=0, description="Deserialized predictors kept in memory")


class XaiSettings(BaseModel):
    """Local explanation settings."""
    default_seed: int = Field(default=42, ge=0, description="Seed used when a request does not pin one")
    num_samples: int = Field(default=500, description="Default number of perturbed neighbours")
    min_samples: int = Field(default=100, ge=10)
    max_samples: int = Field(default=5000, ge=10)
    kernel_width: float = Field(
        default=0.0,
        ge=0.0,
        description="Kernel width; 0 means 0.75 * sqrt(number of features)"
    )
    ridge_alpha: float = Field(default=1.0, gt=0.0, description="Regularisation of the surrogate fit")
    max_workers: int = Field(default=4, ge=1, description="Threads predicting neighbour chunks")
    chunk_size: int = Field(default=250, ge=1, description="Neighbours per prediction chunk")
    max_features_in_summary: int = Field(default=10, ge=1)


class SecuritySettings(BaseModel):
    """Bearer token settings."""
    secret_key: str = Field(default="change-me-in-production", description="JWT signing secret")
    algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=30, ge=1)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = Field(default="XAI Forge")
    environment: str = Field(default="development", description="development, test or production")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO", description="Application log level")

    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="List of allowed CORS origins"
    )

    storage_dir: str = Field(default="./storage", description="Dataset and model registries live here")
    upload_dir: str = Field(default="./uploads", description="Uploaded CSV files")
    max_upload_size_mb: int = Field(default=50, ge=1)
    supported_file_extensions: List[str] = Field(default=[".csv"])

    ml: MLSettings = Field(default_factory=MLSettings)
    xai: XaiSettings = Field(default_factory=XaiSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()

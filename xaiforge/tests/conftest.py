# Pytest fixtures and configuration
import pytest
import pandas as pd
import numpy as np
from fastapi.testclient import TestClient

from xaiforge.config.settings import Settings
from xaiforge.core.auth import User, create_user_token
from xaiforge.core.dependencies import build_services, get_services

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing every directory at a temporary location."""
    return Settings(
        storage_dir=str(tmp_path / "storage"),
        upload_dir=str(tmp_path / "uploads"),
        environment="test",
    )


@pytest.fixture
def services(test_settings):
    return build_services(test_settings)


@pytest.fixture
def write_csv(tmp_path):
    """Write a DataFrame (or raw text) to a CSV file and return its path."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(exist_ok=True)

    def _write(name, content):
        path = data_dir / name
        if isinstance(content, pd.DataFrame):
            content.to_csv(path, index=False)
        else:
            path.write_text(content)
        return path

    return _write


@pytest.fixture
def sample_classification_df():
    """50 rows, three numeric features, binary target."""
    np.random.seed(42)
    n_samples = 50

    f1 = np.random.normal(0, 1, n_samples)
    f2 = np.random.normal(0, 1, n_samples)
    f3 = np.random.normal(0, 1, n_samples)

    linear_combo = 1.5 * f1 + 0.8 * f2 - 0.3 * f3 + np.random.normal(0, 0.1, n_samples)
    target = (linear_combo > 0).astype(int)

    return pd.DataFrame({'f1': f1, 'f2': f2, 'f3': f3, 'target': target})


@pytest.fixture
def sample_linear_df():
    """Target is an exact linear function of the features."""
    np.random.seed(7)
    n_samples = 40
    x1 = np.random.uniform(-5, 5, n_samples)
    x2 = np.random.uniform(0, 10, n_samples)
    return pd.DataFrame({'x1': x1, 'x2': x2, 'y': 3.0 * x1 - 2.0 * x2 + 5.0})


@pytest.fixture
def sample_constant_target_df():
    np.random.seed(3)
    n_samples = 20
    return pd.DataFrame({
        'x1': np.random.normal(0, 1, n_samples),
        'x2': np.random.normal(5, 2, n_samples),
        'y': np.full(n_samples, 7.0),
    })


@pytest.fixture
def sample_mixed_df():
    """Numeric and categorical features with a string label."""
    np.random.seed(11)
    n_samples = 60
    age = np.random.randint(18, 70, n_samples)
    color = np.random.choice(["red", "green", "blue"], n_samples)
    score = age / 10.0 + np.where(color == "red", 3.0, 0.0)
    label = np.where(score > 6.0, "yes", "no")
    return pd.DataFrame({'age': age, 'color': color, 'label': label})


@pytest.fixture
def classification_dataset(services, write_csv, sample_classification_df):
    path = write_csv("classification.csv", sample_classification_df)
    return services.datasets.register(OWNER, path)


@pytest.fixture
def classification_model(services, classification_dataset):
    return services.orchestrator.train_model(
        classification_dataset.id, OWNER, "churn", "CLASSIFICATION", "target", ["f1", "f2", "f3"]
    )


@pytest.fixture
def linear_dataset(services, write_csv, sample_linear_df):
    path = write_csv("linear.csv", sample_linear_df)
    return services.datasets.register(OWNER, path)


@pytest.fixture
def regression_model(services, linear_dataset):
    return services.orchestrator.train_model(
        linear_dataset.id, OWNER, "price", "REGRESSION", "y", ["x1", "x2"]
    )


@pytest.fixture
def client(services):
    """TestClient with services bound to temporary storage."""
    from xaiforge.api import app

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = create_user_token(User(user_id=OWNER, username="alice"))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers():
    token = create_user_token(User(user_id=OTHER_OWNER, username="bob"))
    return {"Authorization": f"Bearer {token}"}

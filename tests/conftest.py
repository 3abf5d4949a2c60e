"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for gcp_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

import pytest  # noqa: E402
from gcp_mock import MockGcpClient  # noqa: E402
from gcp_mock.records import DISPLAY_NAME, PROJECT_ID  # noqa: E402

from wif_provisioner.config import ProvisionConfig  # noqa: E402

ENV_VARS = (
    "WIF_DISPLAY_NAME",
    "GCP_PROJECT_ID",
    "DRY_RUN",
    "OUTPUT_DIR",
    "BIND_FAILURE_POLICY",
    "IMPERSONATOR_SERVICE_ACCOUNT",
    "ALLOW_SERVICE_ACCOUNT_KEYS",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "OCM_URL",
    "OCM_TOKEN",
    "OCM_OFFLINE_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of configuration tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def client() -> MockGcpClient:
    return MockGcpClient()


@pytest.fixture
def config() -> ProvisionConfig:
    return ProvisionConfig(display_name=DISPLAY_NAME, project_id=PROJECT_ID)

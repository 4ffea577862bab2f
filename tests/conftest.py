from __future__ import annotations

import pytest
from faker import Faker

from capx.config.settings import get_settings
from capx.infra.result import reset_error_metrics
from capx.models.capacity_models import Credentials


@pytest.fixture
def faker() -> Faker:
    """Provide a Faker instance with Portuguese and English locales for test data generation."""
    return Faker(["pt_BR", "en_US"])


@pytest.fixture
def credentials() -> Credentials:
    return Credentials("test-token-0123456789")


@pytest.fixture(autouse=True)
def _isolate_process_state() -> None:
    get_settings.cache_clear()
    reset_error_metrics()

"""Shared test fixtures for pytest.

ENVIRONMENT is forced to ``test`` before the app is imported so settings load
without an env file and no real Gemini key is required.
"""

import os
from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient


os.environ["ENVIRONMENT"] = "test"

from api.v1.consulting import get_consulting_pipeline, get_generation_client  # noqa: E402
from core.config import get_settings  # noqa: E402
from main import app  # noqa: E402
from services.consulting.models import GenerationPayload  # noqa: E402
from services.consulting.pipeline import ConsultingPipeline  # noqa: E402
from tests.fixtures.generation import FakeGenerationService, make_payload  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    """Let tests that tweak env vars see fresh settings."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application."""
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture
async def async_client(
    fake_service: FakeGenerationService,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client whose consulting routes run against ``fake_service``."""
    app.dependency_overrides[get_consulting_pipeline] = lambda: ConsultingPipeline(
        fake_service
    )
    app.dependency_overrides[get_generation_client] = lambda: fake_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.pop(get_consulting_pipeline, None)
    app.dependency_overrides.pop(get_generation_client, None)


@pytest.fixture
def fake_service() -> FakeGenerationService:
    """Default service: a well-formed result split over two fragments."""
    return FakeGenerationService(['{"a":', "1}"])


@pytest.fixture
def payload() -> GenerationPayload:
    return make_payload()

import pytest
from fastapi.testclient import TestClient

from app.main import app, get_gemini_client
from config.settings import Settings, get_settings
from tests.fakes import FakeGemini


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        gemini_api_key="test-key",
        pro_password="s3cret",
        memory_token_budget=1000,
        memory_selection="flat",
        memory_recency_bonus=False,
        enable_topic_ranking=False,
        enable_canvas_extraction=False,
    )


@pytest.fixture
def fake_gemini() -> FakeGemini:
    return FakeGemini("Recursion is...")


@pytest.fixture
def api(settings, fake_gemini):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_gemini_client] = lambda: fake_gemini.client(settings)
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()

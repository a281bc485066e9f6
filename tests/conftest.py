"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from unittest.mock import patch

import pytest

from nudgeguard.config import Settings, get_settings
from tests.support import FakeClock, make_settings


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Block .env loading so a developer's local settings never leak into tests."""
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mock_settings(settings: Settings) -> Generator[Settings]:
    """Patch get_settings at every import site so cached references are overridden."""
    with (
        patch("nudgeguard.config.get_settings", return_value=settings),
        patch("nudgeguard.api.main.get_settings", return_value=settings),
        patch("nudgeguard.cli.get_settings", return_value=settings),
        patch("nudgeguard.orchestrator.get_settings", return_value=settings),
        patch("nudgeguard.ticker.get_settings", return_value=settings),
        patch("nudgeguard.interventions.notifier.get_settings", return_value=settings),
        patch("nudgeguard.knowledge.embeddings.get_settings", return_value=settings),
    ):
        yield settings

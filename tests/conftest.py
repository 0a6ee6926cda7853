import pytest

from idea_analysis.config import get_llm_settings

from fakes import FakeRegistry


@pytest.fixture(autouse=True)
def clear_llm_cache() -> None:
    """Ensure cached settings do not leak between tests."""

    get_llm_settings.cache_clear()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()

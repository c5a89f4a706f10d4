"""
Pytest fixtures for supplyjudge. Temp SQLite cache, zero-delay settings and
httpx mock transports so nothing touches the network.
"""

import httpx
import pytest

from supplyjudge.cache import ResultCache
from supplyjudge.config import Settings
from supplyjudge.llm_client import AnalysisClient


@pytest.fixture
def settings(tmp_path):
    return Settings(
        llm_provider="gemini",
        llm_api_key="test-key",
        llm_api_endpoint="https://llm.test",
        llm_model="test-model",
        use_mock_llm=False,
        min_request_interval_seconds=0,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        inter_unit_delay_seconds=0,
        call_timeout_seconds=5,
        unit_timeout_seconds=10,
        cache_enabled=True,
        cache_database_url=f"sqlite:///{tmp_path / 'cache' / 'scan_cache.db'}",
        cache_auto_cleanup=False,
        registry_lookups=False,
        registry_url_template="https://registry.test/api/v1/crates/{name}",
    )


@pytest.fixture
def mock_settings(settings):
    return settings.model_copy(update={"use_mock_llm": True})


@pytest.fixture
def cache(settings):
    c = ResultCache(settings.cache_database_url)
    yield c
    c.close()


@pytest.fixture
def make_client(settings):
    """Build an AnalysisClient whose HTTP traffic goes to `handler`."""

    def _make(handler, **overrides):
        s = settings.model_copy(update=overrides) if overrides else settings
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return AnalysisClient(s, http_client=http)

    return _make
